'''

'''
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from .database import engine as db_engine
from .common.logger import log
from .common.config import settings
from .services.sweeper_service import TimeoutSweeper
from .api import bookings, relations, cards, group_sessions, sweeps, time_templates

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Handles application startup and shutdown events.
    """
    # --- On App Startup ---
    log.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}...")
    db_engine.create_db_engine_and_session_factory()
    if settings.TEST_MODE:
        await db_engine.create_schema()

    sweeper = None
    if settings.SWEEP_ENABLED and not settings.TEST_MODE:
        sweeper = TimeoutSweeper(db_engine.get_session_factory())
        sweeper.start()
    app.state.sweeper = sweeper

    yield # --- Application is now running ---

    # --- On App Shutdown ---
    if sweeper is not None:
        await sweeper.stop()
    if not settings.TEST_MODE:
        log.info("Application lifespan shutdown...")
        await db_engine.dispose_db_engine()
    else:
        log.info("Skipping database engine disposal in TEST_MODE.")


# ---- CREATING THE APP ----
app = FastAPI(
    title=settings.APP_NAME,
    description=settings.APP_DESCRIPTION,
    version=settings.APP_VERSION,
    lifespan=lifespan

)

# --- Add CORS Middleware ---
origins = [
    # URL of testing frontend
    "http://0.0.0.0:8080",
    "http://localhost",
    "http://localhost:3000",
]

# Extend with environment-specific origins
origins.extend(settings.BACKEND_CORS_ORIGINS)

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],)
# --- End of CORS Middleware ---

@app.get("/")
async def health_check():
    return {"status": "ok", "message": f"{settings.APP_NAME} is running"}

app.include_router(relations.router)
app.include_router(relations.categories_router)
app.include_router(bookings.router)
app.include_router(cards.templates_router)
app.include_router(cards.router)
app.include_router(time_templates.router)
app.include_router(group_sessions.router)
app.include_router(sweeps.router)
