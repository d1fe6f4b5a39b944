'''
Holds all the configurations
'''
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    """
    Manages application configuration using environment variables.
    """
    # Application Metadata
    APP_NAME: str = "Coach Booking Backend"
    APP_VERSION: str = "0.1.0"
    APP_DESCRIPTION: str = "Booking lifecycle and credit-ledger engine for the coaching marketplace."
    TEST_MODE: bool = False

    # Database URL
    DATABASE_URL_PROD: str = "postgresql+asyncpg://localhost/coach_booking"
    DATABASE_URL_TEST: str = "sqlite+aiosqlite:///./coach_booking_test.db"
    @property
    def database_url(self) -> str:
        """
        Dynamically returns the correct database URL based on the test_mode flag.
        """
        if self.TEST_MODE:
            return self.DATABASE_URL_TEST
        return self.DATABASE_URL_PROD

    # JWT Settings
    SECRET_KEY: str = "change-me"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # Calendar day boundaries (credit expiry, booking timeouts) are evaluated here
    # unless a relationship carries its own timezone.
    DEFAULT_TIMEZONE: str = "Asia/Shanghai"

    # Timeout Sweeper
    SWEEP_ENABLED: bool = True
    SWEEP_INTERVAL_SECONDS: int = 300
    GROUP_SESSION_LOOKAHEAD_MINUTES: int = 60

    # Default per-slot coach capacity when no time template is active
    DEFAULT_SLOT_CAPACITY: int = 1

    BACKEND_CORS_ORIGINS: list[str] = []

    class Config:
        env_file = ".env" # automatically loads the .env

# Create a single, importable instance of the settings
settings = Settings()
