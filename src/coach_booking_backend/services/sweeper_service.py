'''
Periodic sweep over time-dependent state.

One pass:
    1. pending bookings whose start has passed   -> timeout-cancelled
    2. active cards past their last valid day    -> expired
    3. open group sessions starting soon but short of capacity_min -> ended
    4. category balances past their expiry date  -> cleared

Every transition is a conditional update, so passes may overlap or repeat
freely. Each row runs in its own transaction; a failing row is logged and
skipped. Notifications of a row go out only after its transaction commits.
'''
import asyncio
import contextlib
from typing import Annotated, Awaitable, Callable, Optional
from uuid import UUID
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..database import models as db_models
from ..database.engine import get_session_factory
from ..database.session_utils import commit_and_run_callbacks, discard_after_commit
from ..models.sweep import SweepResult
from ..common.clock import Clock, get_clock
from ..common.config import settings
from ..common.exceptions import ForbiddenError
from ..common.logger import log
from .audit_service import OperationLogService
from .booking_service import BookingService
from .card_service import CardService
from .category_service import CategoryService
from .group_session_service import GroupSessionService
from .ledger_service import CreditLedgerService
from .notification_service import NotificationService, get_notification_service
from .relation_service import RelationService
from .time_template_service import TimeTemplateService
from .user_service import UserService


class SweepServices:
    """The services one sweeper transaction needs, wired to its session."""
    def __init__(self, db: AsyncSession, clock: Clock, notifier: NotificationService):
        self.ledger = CreditLedgerService(db, clock, OperationLogService(db))
        users = UserService(db)
        categories = CategoryService(db, self.ledger)
        relations = RelationService(db, clock, self.ledger, categories, users)
        self.cards = CardService(db, clock, self.ledger, notifier)
        time_templates = TimeTemplateService(db, clock, users)
        self.bookings = BookingService(
            db, clock, self.ledger, self.cards, relations, categories, users, time_templates, notifier
        )
        self.group_sessions = GroupSessionService(db, clock, self.ledger, relations, categories, users, notifier)


class TimeoutSweeper:
    """
    Owns the sweep interval and the background task running it.
    `run_sweep_once()` is the whole pass and can be called directly.
    """
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Optional[Clock] = None,
        notifier: Optional[NotificationService] = None,
        interval_seconds: Optional[int] = None,
        batch_size: int = 500,
    ):
        self.session_factory = session_factory
        self.clock = clock or get_clock()
        self.notifier = notifier or get_notification_service()
        self.interval_seconds = interval_seconds or settings.SWEEP_INTERVAL_SECONDS
        self.batch_size = batch_size
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

    # --- 1. One Pass ---

    async def run_sweep_once(self) -> SweepResult:
        result = SweepResult()

        result.bookings_timed_out, failed = await self._sweep_rows(
            "booking timeout",
            lambda svc: svc.bookings.find_timeout_candidates(self.batch_size),
            lambda svc, row_id: svc.bookings.timeout_if_stale(row_id),
        )
        result.failures += failed

        try:
            result.cards_expired = await self.expire_overdue_cards()
        except Exception as e:
            result.failures += 1
            log.error(f"Sweep step 'card expiry' failed: {e}", exc_info=True)

        result.sessions_ended, failed = await self._sweep_rows(
            "group session shortfall",
            lambda svc: svc.group_sessions.find_shortfall_candidates(self.batch_size),
            lambda svc, row_id: svc.group_sessions.end_if_undersubscribed(row_id),
        )
        result.failures += failed

        result.lessons_cleared, failed = await self.clear_expired_balances()
        result.failures += failed

        log.info(f"Sweep finished: {result.model_dump()}")
        return result

    async def run_manual_sweep(self, current_user: db_models.Users) -> SweepResult:
        """An on-demand pass; operators only."""
        if not current_user.is_operator:
            log.warning(f"SECURITY: User {current_user.id} tried to trigger a sweep.")
            raise ForbiddenError("Only operators can trigger a sweep.", reason="operator_only")
        log.warning(f"PRIVILEGED: Manual sweep triggered by operator {current_user.id}.")
        return await self.run_sweep_once()

    async def expire_overdue_cards(self) -> int:
        """Single bulk conditional update."""
        async with self.session_factory() as db:
            try:
                count = await SweepServices(db, self.clock, self.notifier).cards.expire_overdue_cards()
                await commit_and_run_callbacks(db)
            except Exception:
                await db.rollback()
                discard_after_commit(db)
                raise
        return count

    async def clear_expired_balances(self) -> tuple[int, int]:
        """Batch form of the ledger's lazy clear; one audit record per balance."""
        return await self._sweep_rows(
            "balance expiry",
            lambda svc: svc.ledger.find_expiry_candidates(self.batch_size),
            lambda svc, row_id: svc.ledger.clear_if_expired(row_id),
        )

    async def _sweep_rows(
        self,
        label: str,
        find: Callable[[SweepServices], Awaitable[list[UUID]]],
        apply: Callable[[SweepServices, UUID], Awaitable[bool]],
    ) -> tuple[int, int]:
        """
        Finds candidate ids in one read, then applies the transition to each
        in its own transaction. Returns (transitioned, failed).
        """
        try:
            async with self.session_factory() as db:
                row_ids = await find(SweepServices(db, self.clock, self.notifier))
        except Exception as e:
            log.error(f"Sweep step '{label}' could not list candidates: {e}", exc_info=True)
            return 0, 1

        transitioned = failed = 0
        for row_id in row_ids:
            async with self.session_factory() as db:
                try:
                    changed = await apply(SweepServices(db, self.clock, self.notifier), row_id)
                    await commit_and_run_callbacks(db)
                except Exception as e:
                    await db.rollback()
                    discard_after_commit(db)
                    failed += 1
                    log.error(f"Sweep step '{label}' failed on {row_id}: {e}", exc_info=True)
                    continue
            if changed:
                transitioned += 1
        return transitioned, failed

    # --- 2. Background Loop ---

    def start(self) -> None:
        if self._task is not None and not self._task.done():
            log.warning("Sweeper already running.")
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run_forever(self._stop_event))
        log.info(f"Sweeper started, every {self.interval_seconds}s.")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stop_event.set()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        log.info("Sweeper stopped.")

    async def _run_forever(self, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            try:
                await self.run_sweep_once()
            except Exception as e:
                log.error(f"Sweep pass failed: {e}", exc_info=True)
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(stop_event.wait(), timeout=self.interval_seconds)


def get_sweeper(
    session_factory: Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)],
    clock: Annotated[Clock, Depends(get_clock)],
    notifier: Annotated[NotificationService, Depends(get_notification_service)]
) -> TimeoutSweeper:
    """Request-scoped sweeper for the manual trigger endpoint."""
    return TimeoutSweeper(session_factory, clock=clock, notifier=notifier)
