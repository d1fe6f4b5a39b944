'''
Helpers for service writes: retrying on contended rows, and work that must
wait for the transaction to commit.
'''
import functools
from typing import Any, Awaitable, Callable, TypeVar

from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from ..common.exceptions import InternalError
from ..common.logger import log
from .models import Base

T = TypeVar("T")

# deadlock / serialization failure / sqlite busy
_TRANSIENT_SNIPPETS = (
    "deadlock detected",
    "could not serialize access",
    "lock not available",
    "database is locked",
)
_TRANSIENT_PGCODES = {"40P01", "40001", "55P03"}


def is_transient_lock_error(exc: OperationalError) -> bool:
    orig = getattr(exc, "orig", None)
    pgcode = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if pgcode in _TRANSIENT_PGCODES:
        return True
    message = str(exc).lower()
    return any(snippet in message for snippet in _TRANSIENT_SNIPPETS)


# --- after-commit work ---

_AFTER_COMMIT_KEY = "after_commit_callbacks"


def call_after_commit(db: AsyncSession, callback: Callable[[], Awaitable[None]]) -> None:
    """Queues work that may only happen once the session's transaction commits."""
    db.info.setdefault(_AFTER_COMMIT_KEY, []).append(callback)


def discard_after_commit(db: AsyncSession) -> int:
    """Drops the queued work of a transaction that was rolled back."""
    dropped = db.info.pop(_AFTER_COMMIT_KEY, [])
    if dropped:
        log.info(f"Dropped {len(dropped)} after-commit callbacks of a rolled back transaction.")
    return len(dropped)


async def commit_and_run_callbacks(db: AsyncSession) -> None:
    """Commits, then runs the queued work in order."""
    await db.commit()
    for callback in db.info.pop(_AFTER_COMMIT_KEY, []):
        await callback()


# --- lock retries ---

async def _reload_orm_arguments(db: AsyncSession, values: tuple) -> None:
    """A rollback expires every loaded instance; reload the ones passed in."""
    for value in values:
        if isinstance(value, Base) and value in db:
            await db.refresh(value)


def retry_on_lock_failure(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
    """
    Decorates an async service method (on an object with a `.db` session).
    A transient lock failure rolls the transaction back and the method runs
    once more; a second failure surfaces as InternalError.

    The method must be the only unit of work in its session, which holds for
    every request handler and every sweeper step.
    """
    @functools.wraps(func)
    async def wrapper(self, *args: Any, **kwargs: Any) -> T:
        try:
            return await func(self, *args, **kwargs)
        except OperationalError as exc:
            if not is_transient_lock_error(exc):
                log.error(f"Storage failure in {func.__name__}: {exc}", exc_info=True)
                raise InternalError("The operation could not be stored.", reason="storage_failure") from exc
            log.warning(f"Transient lock failure in {func.__name__}, retrying once: {exc}")
            await self.db.rollback()
            discard_after_commit(self.db)
            await _reload_orm_arguments(self.db, args + tuple(kwargs.values()))

        try:
            return await func(self, *args, **kwargs)
        except OperationalError as exc:
            log.error(f"Lock failure persisted in {func.__name__}: {exc}", exc_info=True)
            await self.db.rollback()
            discard_after_commit(self.db)
            raise InternalError("The operation conflicted with another request, please retry.", reason="lock_contention") from exc

    return wrapper
