'''
Credit Ledger: per-relationship category balances.

Balances are only ever debited at completion time (booking complete, group
check-in). Creating a booking or registration reserves credit implicitly:
"occupied" is recomputed from the open bookings/registrations every time.
'''
from datetime import date
from typing import Annotated, Optional
from uuid import UUID
from fastapi import Depends
from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from ..database.engine import get_db_session
from ..database import models as db_models
from ..database.db_enums import (
    BookingStatus, CheckInStatus, CreditSourceType, GroupSessionStatus,
    OperationType, PriceMode, RegistrationStatus
)
from ..common.clock import Clock, get_clock
from ..common.config import settings
from ..common.exceptions import (
    ConflictError, InsufficientCreditError, NotFoundError, ValidationFailedError
)
from ..common.logger import log
from .audit_service import OperationLogService

DEFAULT_CATEGORY_ID = 0


class CreditLedgerService:
    """
    Service for reading and mutating category balances of a relationship.
    """
    def __init__(
        self,
        db: Annotated[AsyncSession, Depends(get_db_session)],
        clock: Annotated[Clock, Depends(get_clock)],
        audit: Annotated[OperationLogService, Depends(OperationLogService)]
    ):
        self.db = db
        self.clock = clock
        self.audit = audit

    # --- 1. Internal Fetchers ---

    async def get_relation(self, relation_id: UUID, lock: bool = False) -> db_models.StudentCoachRelations:
        stmt = select(db_models.StudentCoachRelations).where(db_models.StudentCoachRelations.id == relation_id)
        if lock:
            stmt = stmt.with_for_update()
        relation = (await self.db.execute(stmt)).scalars().first()
        if relation is None:
            log.warning(f"Relation {relation_id} not found.")
            raise NotFoundError("Student-coach relationship not found.", reason="relation_not_found")
        return relation

    async def _get_balance(
        self, relation_id: UUID, category_id: int, lock: bool = False
    ) -> db_models.CategoryBalances:
        stmt = select(db_models.CategoryBalances).where(
            db_models.CategoryBalances.relation_id == relation_id,
            db_models.CategoryBalances.category_id == category_id,
        )
        if lock:
            stmt = stmt.with_for_update()
        balance = (await self.db.execute(stmt)).scalars().first()
        if balance is None:
            log.warning(f"No balance for category {category_id} on relation {relation_id}.")
            raise NotFoundError(
                "This course category is not available for the relationship.",
                reason="category_not_found",
                category_id=category_id,
            )
        return balance

    def _timezone_for(self, relation: db_models.StudentCoachRelations) -> str:
        return relation.timezone or settings.DEFAULT_TIMEZONE

    def is_past_expiry(self, expire_date: Optional[date], tz_name: str) -> bool:
        """
        A balance expiring on D is usable through the last instant of D
        in the relationship's timezone.
        """
        if expire_date is None:
            return False
        return self.clock.today(tz_name) > expire_date

    # --- 2. Lazy Expiry ---

    async def _clear_if_expired(
        self, balance: db_models.CategoryBalances, tz_name: str
    ) -> bool:
        """
        Zeroes an expired balance exactly once. The UPDATE is conditional on
        `is_cleared = false`, so a concurrent or repeated call is a no-op and
        only the winner writes the audit record.
        """
        if balance.is_cleared or not self.is_past_expiry(balance.expire_date, tz_name):
            return False

        before = balance.remaining
        stmt = (
            update(db_models.CategoryBalances)
            .where(
                db_models.CategoryBalances.id == balance.id,
                db_models.CategoryBalances.is_cleared.is_(False),
            )
            .values(
                remaining=0,
                is_cleared=True,
                original_before_clear=func.coalesce(
                    db_models.CategoryBalances.original_before_clear,
                    db_models.CategoryBalances.remaining,
                ),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        await self.db.refresh(balance)
        if result.rowcount != 1:
            return False

        await self.audit.record(
            OperationType.LESSON_EXPIRE,
            table_name="category_balances",
            record_id=balance.id,
            old_data={"category_id": balance.category_id, "remaining": before,
                      "expire_date": balance.expire_date.isoformat()},
            new_data={"category_id": balance.category_id, "remaining": 0, "is_cleared": True},
            description=f"Category {balance.category_id} expired, {before} lessons cleared",
        )
        log.info(f"Cleared {before} expired lessons of category {balance.category_id} on relation {balance.relation_id}.")
        return True

    async def clear_if_expired(self, balance_id: UUID) -> bool:
        """Sweeper entry point for a single balance row."""
        stmt = select(db_models.CategoryBalances).where(
            db_models.CategoryBalances.id == balance_id
        ).with_for_update()
        balance = (await self.db.execute(stmt)).scalars().first()
        if balance is None:
            return False
        relation = await self.get_relation(balance.relation_id)
        return await self._clear_if_expired(balance, self._timezone_for(relation))

    async def find_expiry_candidates(self, limit: int = 500) -> list[UUID]:
        """
        Uncleared balances whose expiry date is on or before today in UTC.
        That is a superset of the expired ones for every timezone; the exact
        check happens per row.
        """
        stmt = select(db_models.CategoryBalances.id).where(
            db_models.CategoryBalances.is_cleared.is_(False),
            db_models.CategoryBalances.expire_date.is_not(None),
            db_models.CategoryBalances.expire_date <= self.clock.today("UTC"),
        ).limit(limit)
        return list((await self.db.execute(stmt)).scalars().all())

    # --- 3. Public Reads ---

    async def get_available(self, relation_id: UUID, category_id: int, lock: bool = False) -> int:
        """
        Remaining lessons in a category after applying lazy expiry.
        """
        relation = await self.get_relation(relation_id)
        balance = await self._get_balance(relation_id, category_id, lock=lock)
        await self._clear_if_expired(balance, self._timezone_for(relation))
        return balance.remaining

    async def get_occupied(self, relation_id: UUID, category_id: int) -> int:
        """
        Credits reserved by open one-off bookings and not-yet-checked-in
        credit registrations in open group sessions of this category.
        """
        bookings_stmt = select(func.count(db_models.CourseBookings.id)).where(
            db_models.CourseBookings.relation_id == relation_id,
            db_models.CourseBookings.category_id == category_id,
            db_models.CourseBookings.credit_source == CreditSourceType.CATEGORY.value,
            db_models.CourseBookings.status.in_(BookingStatus.open_states()),
        )
        booked = (await self.db.execute(bookings_stmt)).scalar_one()

        regs = db_models.GroupCourseRegistrations
        courses = db_models.GroupCourses
        group_stmt = (
            select(func.coalesce(func.sum(courses.lesson_cost), 0))
            .select_from(regs)
            .join(courses, courses.id == regs.group_course_id)
            .where(
                regs.relation_id == relation_id,
                regs.status.in_(RegistrationStatus.active_states()),
                regs.payment_mode == PriceMode.CREDIT.value,
                regs.check_in_status == CheckInStatus.NONE.value,
                courses.status == GroupSessionStatus.OPEN.value,
                courses.category_id == category_id,
            )
        )
        reserved = (await self.db.execute(group_stmt)).scalar_one()
        return int(booked) + int(reserved)

    async def get_available_for_booking(self, relation_id: UUID, category_id: int) -> int:
        available = await self.get_available(relation_id, category_id)
        occupied = await self.get_occupied(relation_id, category_id)
        return max(0, available - occupied)

    async def get_balance(self, relation_id: UUID, category_id: int) -> db_models.CategoryBalances:
        """Single balance with lazy expiry applied."""
        relation = await self.get_relation(relation_id)
        balance = await self._get_balance(relation_id, category_id)
        await self._clear_if_expired(balance, self._timezone_for(relation))
        return balance

    async def list_balances(self, relation_id: UUID) -> list[db_models.CategoryBalances]:
        relation = await self.get_relation(relation_id)
        stmt = select(db_models.CategoryBalances).where(
            db_models.CategoryBalances.relation_id == relation_id
        ).order_by(db_models.CategoryBalances.category_id)
        balances = list((await self.db.execute(stmt)).scalars().all())
        for balance in balances:
            await self._clear_if_expired(balance, self._timezone_for(relation))
        return balances

    # --- 4. Mutations ---

    async def decrease(self, relation_id: UUID, category_id: int, count: int) -> int:
        """
        Debits `count` lessons. Must run inside the caller's transaction; the
        balance row stays locked until it commits.
        Returns the new remaining value.
        """
        if count <= 0:
            raise ValidationFailedError("Lesson count must be positive.", reason="invalid_lesson_count")

        relation = await self.get_relation(relation_id)
        balance = await self._get_balance(relation_id, category_id, lock=True)
        await self._clear_if_expired(balance, self._timezone_for(relation))

        if balance.remaining < count:
            log.warning(f"Insufficient credit on relation {relation_id} category {category_id}: "
                        f"need {count}, have {balance.remaining}.")
            raise InsufficientCreditError(
                "Not enough lessons left in this category.",
                available=balance.remaining,
                required=count,
            )

        balance.remaining -= count
        relation.last_course_time = self.clock.now()
        await self.db.flush()
        log.info(f"Debited {count} lessons from relation {relation_id} category {category_id}; {balance.remaining} left.")
        return balance.remaining

    async def increase(self, relation_id: UUID, category_id: int, count: int, actor_id: Optional[UUID] = None) -> int:
        """
        Credits lessons back after a reversal of an earlier debit.
        A category already cleared by expiry stays cleared: the refund is
        recorded but not restored.
        """
        if count <= 0:
            raise ValidationFailedError("Lesson count must be positive.", reason="invalid_lesson_count")

        relation = await self.get_relation(relation_id)
        balance = await self._get_balance(relation_id, category_id, lock=True)
        await self._clear_if_expired(balance, self._timezone_for(relation))

        before = balance.remaining
        if not balance.is_cleared:
            balance.remaining += count
        await self.db.flush()
        await self.audit.record(
            OperationType.LESSON_REFUND,
            table_name="category_balances",
            record_id=balance.id,
            old_data={"category_id": category_id, "remaining": before},
            new_data={"category_id": category_id, "remaining": balance.remaining, "refunded": count},
            user_id=actor_id,
            description="refund forfeited, category expired" if balance.is_cleared else f"refunded {count} lessons",
            actor="coach" if actor_id else "system",
        )
        return balance.remaining

    async def add_category(self, relation_id: UUID, category_id: int) -> db_models.CategoryBalances:
        """Adds a zero balance for the category; no-op when it already exists."""
        stmt = select(db_models.CategoryBalances).where(
            db_models.CategoryBalances.relation_id == relation_id,
            db_models.CategoryBalances.category_id == category_id,
        )
        existing = (await self.db.execute(stmt)).scalars().first()
        if existing is not None:
            return existing

        balance = db_models.CategoryBalances(
            relation_id=relation_id,
            category_id=category_id,
            remaining=0,
            is_cleared=False,
        )
        self.db.add(balance)
        await self.db.flush()
        return balance

    async def remove_category(self, relation_id: UUID, category_id: int) -> None:
        if category_id == DEFAULT_CATEGORY_ID:
            raise ValidationFailedError("The default category cannot be removed.", reason="default_category_locked")

        relation = await self.get_relation(relation_id)
        balance = await self._get_balance(relation_id, category_id, lock=True)
        await self._clear_if_expired(balance, self._timezone_for(relation))
        if balance.remaining != 0:
            raise ConflictError(
                "The category still has lessons left.",
                reason="category_not_empty",
                remaining=balance.remaining,
            )
        await self.db.delete(balance)
        await self.db.flush()
        log.info(f"Removed category {category_id} from relation {relation_id}.")

    async def adjust_balance(
        self,
        relation_id: UUID,
        category_id: int,
        remaining: int,
        expire_date: Optional[date],
        actor_id: Optional[UUID] = None,
    ) -> db_models.CategoryBalances:
        """
        Coach sets the balance of a category (top-up or correction).
        A new balance re-arms a cleared category; `original_before_clear`
        keeps its first value.
        """
        if remaining < 0:
            raise ValidationFailedError("Lesson count cannot be negative.", reason="invalid_lesson_count")

        relation = await self.get_relation(relation_id)
        balance = await self._get_balance(relation_id, category_id, lock=True)
        await self._clear_if_expired(balance, self._timezone_for(relation))

        old_data = {"remaining": balance.remaining,
                    "expire_date": balance.expire_date.isoformat() if balance.expire_date else None,
                    "is_cleared": balance.is_cleared}
        balance.remaining = remaining
        balance.expire_date = expire_date
        balance.is_cleared = False
        await self.db.flush()

        await self.audit.record(
            OperationType.LESSON_ADJUST,
            table_name="category_balances",
            record_id=balance.id,
            old_data=old_data,
            new_data={"remaining": remaining, "expire_date": expire_date.isoformat() if expire_date else None},
            user_id=actor_id,
            description=f"category {category_id} set to {remaining} lessons",
            actor="coach",
        )
        # an already-past expiry date clears right away
        await self._clear_if_expired(balance, self._timezone_for(relation))
        return balance
