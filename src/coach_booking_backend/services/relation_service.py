'''
Student-coach relationships: binding, unbinding and the per-relationship
booking settings. Each relationship owns one credit ledger.
'''
from datetime import date
from typing import Annotated, Optional
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
from fastapi import Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..database.engine import get_db_session
from ..database import models as db_models
from ..common.clock import Clock, get_clock
from ..common.config import settings
from ..common.exceptions import AlreadyInStateError, ForbiddenError, ValidationFailedError
from ..common.logger import log
from .ledger_service import CreditLedgerService
from .category_service import CategoryService
from .user_service import UserService


class RelationService:
    """
    Service for the lifecycle of a student-coach relationship.
    """
    def __init__(
        self,
        db: Annotated[AsyncSession, Depends(get_db_session)],
        clock: Annotated[Clock, Depends(get_clock)],
        ledger: Annotated[CreditLedgerService, Depends(CreditLedgerService)],
        category_service: Annotated[CategoryService, Depends(CategoryService)],
        user_service: Annotated[UserService, Depends(UserService)]
    ):
        self.db = db
        self.clock = clock
        self.ledger = ledger
        self.category_service = category_service
        self.user_service = user_service

    # --- 1. Authorization Helpers ---

    def authorize_party(self, relation: db_models.StudentCoachRelations, user: db_models.Users) -> None:
        if user.id not in (relation.student_id, relation.coach_id):
            log.warning(f"SECURITY: User {user.id} tried to access relation {relation.id}.")
            raise ForbiddenError("You are not part of this relationship.", reason="not_relation_party")

    def authorize_coach(self, relation: db_models.StudentCoachRelations, user: db_models.Users) -> None:
        if user.id != relation.coach_id:
            log.warning(f"SECURITY: User {user.id} tried a coach-only action on relation {relation.id}.")
            raise ForbiddenError("Only the coach can do this.", reason="coach_only")

    # --- 2. Fetchers ---

    async def get_relation(self, relation_id: UUID, lock: bool = False) -> db_models.StudentCoachRelations:
        return await self.ledger.get_relation(relation_id, lock=lock)

    async def find_relation_for_pair(self, student_id: UUID, coach_id: UUID) -> Optional[db_models.StudentCoachRelations]:
        stmt = select(db_models.StudentCoachRelations).where(
            db_models.StudentCoachRelations.student_id == student_id,
            db_models.StudentCoachRelations.coach_id == coach_id,
        )
        return (await self.db.execute(stmt)).scalars().first()

    async def get_relation_for_user(self, relation_id: UUID, user: db_models.Users) -> db_models.StudentCoachRelations:
        relation = await self.get_relation(relation_id)
        self.authorize_party(relation, user)
        return relation

    async def list_relations(self, user: db_models.Users) -> list[db_models.StudentCoachRelations]:
        stmt = select(db_models.StudentCoachRelations).where(
            (db_models.StudentCoachRelations.coach_id == user.id)
            | (db_models.StudentCoachRelations.student_id == user.id)
        ).order_by(db_models.StudentCoachRelations.bind_time.desc())
        return list((await self.db.execute(stmt)).scalars().all())

    # --- 3. Lifecycle ---

    async def _sync_categories(self, relation: db_models.StudentCoachRelations) -> None:
        """Gives the relationship a balance for every category the coach defines."""
        for category in await self.category_service.list_categories(relation.coach_id):
            await self.ledger.add_category(relation.id, category.category_id)

    async def bind(
        self,
        coach: db_models.Users,
        student_id: UUID,
        coach_remark: Optional[str] = None,
        timezone: Optional[str] = None,
    ) -> db_models.StudentCoachRelations:
        """
        Binds a student to the coach. A previously unbound relationship is
        re-enabled with its ledger intact.
        """
        if student_id == coach.id:
            raise ValidationFailedError("A coach cannot bind to themselves.", reason="self_binding")
        tz_name = self._validate_timezone(timezone) if timezone else settings.DEFAULT_TIMEZONE
        await self.user_service.get_user_or_404(student_id, "Student")

        relation = await self.find_relation_for_pair(student_id, coach.id)
        if relation is not None:
            if relation.is_active:
                raise AlreadyInStateError("The student is already bound to this coach.", reason="relation_exists")
            relation.is_active = True
            relation.booking_enabled = True
            relation.bind_time = self.clock.now()
            if coach_remark is not None:
                relation.coach_remark = coach_remark
            if timezone:
                relation.timezone = tz_name
            await self.db.flush()
            await self._sync_categories(relation)
            log.info(f"Coach {coach.id} re-enabled relation {relation.id} with student {student_id}.")
            return relation

        relation = db_models.StudentCoachRelations(
            student_id=student_id,
            coach_id=coach.id,
            is_active=True,
            booking_enabled=True,
            auto_confirm_by_coach=False,
            timezone=tz_name,
            coach_remark=coach_remark,
            bind_time=self.clock.now(),
        )
        self.db.add(relation)
        await self.db.flush()
        await self._sync_categories(relation)
        log.info(f"Coach {coach.id} bound student {student_id} as relation {relation.id}.")
        return relation

    async def unbind(self, relation_id: UUID, user: db_models.Users) -> db_models.StudentCoachRelations:
        """
        Always a soft disable, whatever is still open. Existing bookings stay
        untouched and can still be cancelled or completed; new bookings are
        refused.
        """
        relation = await self.get_relation(relation_id, lock=True)
        self.authorize_party(relation, user)
        if not relation.is_active:
            raise AlreadyInStateError("The relationship is already unbound.", reason="relation_inactive")

        relation.is_active = False
        relation.booking_enabled = False
        await self.db.flush()
        log.info(f"User {user.id} unbound relation {relation.id}.")
        return relation

    async def set_booking_enabled(
        self, relation_id: UUID, coach: db_models.Users, enabled: bool
    ) -> db_models.StudentCoachRelations:
        relation = await self.get_relation(relation_id, lock=True)
        self.authorize_coach(relation, coach)
        if relation.booking_enabled == enabled:
            state = "enabled" if enabled else "disabled"
            raise AlreadyInStateError(f"Booking is already {state}.", reason=f"booking_already_{state}")
        relation.booking_enabled = enabled
        await self.db.flush()
        log.info(f"Coach {coach.id} set booking_enabled={enabled} on relation {relation.id}.")
        return relation

    async def update_settings(
        self,
        relation_id: UUID,
        user: db_models.Users,
        auto_confirm_by_coach: Optional[bool] = None,
        coach_remark: Optional[str] = None,
        student_remark: Optional[str] = None,
        timezone: Optional[str] = None,
    ) -> db_models.StudentCoachRelations:
        relation = await self.get_relation(relation_id, lock=True)
        self.authorize_party(relation, user)
        is_coach = user.id == relation.coach_id

        if (auto_confirm_by_coach is not None or coach_remark is not None or timezone is not None) and not is_coach:
            raise ForbiddenError("Only the coach can change these settings.", reason="coach_only")
        if student_remark is not None and is_coach:
            raise ForbiddenError("Only the student can change the student remark.", reason="student_only")

        if auto_confirm_by_coach is not None:
            relation.auto_confirm_by_coach = auto_confirm_by_coach
        if coach_remark is not None:
            relation.coach_remark = coach_remark
        if student_remark is not None:
            relation.student_remark = student_remark
        if timezone is not None:
            relation.timezone = self._validate_timezone(timezone)
        await self.db.flush()
        return relation

    # --- 4. Ledger Access ---

    async def get_available_credits(self, relation_id: UUID, category_id: int, user: db_models.Users) -> dict:
        relation = await self.get_relation_for_user(relation_id, user)
        available = await self.ledger.get_available(relation.id, category_id)
        bookable = await self.ledger.get_available_for_booking(relation.id, category_id)
        return {
            "relation_id": relation.id,
            "category_id": category_id,
            "available": available,
            "available_for_booking": bookable,
        }

    async def list_balances(self, relation_id: UUID, user: db_models.Users) -> list[db_models.CategoryBalances]:
        relation = await self.get_relation_for_user(relation_id, user)
        return await self.ledger.list_balances(relation.id)

    async def adjust_balance(
        self,
        relation_id: UUID,
        coach: db_models.Users,
        category_id: int,
        remaining: int,
        expire_date: Optional[date],
    ) -> db_models.CategoryBalances:
        relation = await self.get_relation(relation_id, lock=True)
        self.authorize_coach(relation, coach)
        if not relation.is_active:
            raise ValidationFailedError("The relationship is not active.", reason="relation_inactive")
        return await self.ledger.adjust_balance(relation.id, category_id, remaining, expire_date, actor_id=coach.id)

    @staticmethod
    def _validate_timezone(tz_name: str) -> str:
        try:
            ZoneInfo(tz_name)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValidationFailedError(f"Unknown timezone '{tz_name}'.", reason="invalid_timezone")
        return tz_name
