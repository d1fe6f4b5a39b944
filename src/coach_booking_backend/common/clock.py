'''
Time source shared by services and the sweeper.
Injected as a FastAPI dependency so tests can pin "now".
'''
from datetime import date, datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from .config import settings


class Clock:
    """Wall clock. `now()` is always timezone-aware UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def local_now(self, tz_name: Optional[str] = None) -> datetime:
        return self.now().astimezone(ZoneInfo(tz_name or settings.DEFAULT_TIMEZONE))

    def today(self, tz_name: Optional[str] = None) -> date:
        return self.local_now(tz_name).date()


class FrozenClock(Clock):
    """A clock pinned to one instant; `advance()` moves it forward."""

    def __init__(self, at: datetime):
        if at.tzinfo is None:
            raise ValueError("FrozenClock needs a timezone-aware datetime")
        self._at = at.astimezone(timezone.utc)

    def now(self) -> datetime:
        return self._at

    def advance(self, **kwargs) -> None:
        self._at = self._at + timedelta(**kwargs)

    def set(self, at: datetime) -> None:
        self._at = at.astimezone(timezone.utc)


# module-level default, overridable via app.dependency_overrides[get_clock]
_default_clock = Clock()

def get_clock() -> Clock:
    return _default_clock
