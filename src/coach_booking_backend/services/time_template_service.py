'''
A coach's time templates: how far ahead students may book and how many
bookings one time slot accepts. At most one template per coach is active;
without one, bookings fall back to the default slot capacity and no window.
'''
from datetime import date
from typing import Annotated, Optional
from uuid import UUID
from fastapi import Depends
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..database.engine import get_db_session
from ..database import models as db_models
from ..common.clock import Clock, get_clock
from ..common.exceptions import AlreadyInStateError, ForbiddenError, NotFoundError, ValidationFailedError
from ..common.logger import log
from .user_service import UserService


class TimeTemplateService:
    def __init__(
        self,
        db: Annotated[AsyncSession, Depends(get_db_session)],
        clock: Annotated[Clock, Depends(get_clock)],
        user_service: Annotated[UserService, Depends(UserService)]
    ):
        self.db = db
        self.clock = clock
        self.user_service = user_service

    async def get_template(self, template_id: UUID, coach: db_models.Users) -> db_models.TimeTemplates:
        template = await self.db.get(db_models.TimeTemplates, template_id)
        if template is None:
            raise NotFoundError("Time template not found.", reason="time_template_not_found")
        if template.coach_id != coach.id:
            log.warning(f"SECURITY: User {coach.id} tried to access time template {template_id}.")
            raise ForbiddenError("This time template belongs to another coach.", reason="not_time_template_owner")
        return template

    async def list_templates(self, coach: db_models.Users) -> list[db_models.TimeTemplates]:
        """The active template first."""
        stmt = select(db_models.TimeTemplates).where(
            db_models.TimeTemplates.coach_id == coach.id
        ).order_by(db_models.TimeTemplates.is_active.desc(), db_models.TimeTemplates.name)
        return list((await self.db.execute(stmt)).scalars().all())

    async def get_active_template(self, coach_id: UUID) -> Optional[db_models.TimeTemplates]:
        stmt = select(db_models.TimeTemplates).where(
            db_models.TimeTemplates.coach_id == coach_id,
            db_models.TimeTemplates.is_active.is_(True),
        ).limit(1)
        return (await self.db.execute(stmt)).scalars().first()

    def check_booking_window(self, template: Optional[db_models.TimeTemplates], course_date: date) -> None:
        """
        `course_date` must lie between min and max whole days after the
        local today, both ends included.
        """
        if template is None:
            return
        days_ahead = (course_date - self.clock.today()).days
        if days_ahead < template.min_advance_days or days_ahead > template.max_advance_days:
            raise ValidationFailedError(
                f"Courses can be booked {template.min_advance_days} to {template.max_advance_days} days ahead.",
                reason="outside_booking_window",
                min_advance_days=template.min_advance_days,
                max_advance_days=template.max_advance_days,
            )

    @staticmethod
    def _validate_window(min_days: int, max_days: int, max_nums: int) -> None:
        if min_days < 0 or max_days < 1:
            raise ValidationFailedError("Advance days are out of range.", reason="invalid_advance_days")
        if min_days > max_days:
            raise ValidationFailedError(
                "The earliest booking day can't be after the latest one.", reason="invalid_advance_days"
            )
        if max_nums < 1:
            raise ValidationFailedError("A time slot must accept at least one booking.", reason="invalid_max_advance_nums")

    async def _deactivate_others(self, coach_id: UUID, keep_id: UUID) -> None:
        # the coach row lock serializes two activations racing for the same coach
        await self.user_service.lock_users([coach_id])
        await self.db.execute(
            update(db_models.TimeTemplates)
            .where(
                db_models.TimeTemplates.coach_id == coach_id,
                db_models.TimeTemplates.id != keep_id,
                db_models.TimeTemplates.is_active.is_(True),
            )
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )

    async def create_template(
        self,
        coach: db_models.Users,
        name: Optional[str] = None,
        min_advance_days: int = 0,
        max_advance_days: int = 7,
        max_advance_nums: int = 1,
        is_active: bool = False,
    ) -> db_models.TimeTemplates:
        self._validate_window(min_advance_days, max_advance_days, max_advance_nums)
        template = db_models.TimeTemplates(
            coach_id=coach.id,
            name=name.strip() if name else None,
            min_advance_days=min_advance_days,
            max_advance_days=max_advance_days,
            max_advance_nums=max_advance_nums,
            is_active=is_active,
        )
        self.db.add(template)
        await self.db.flush()
        if is_active:
            await self._deactivate_others(coach.id, template.id)
        log.info(f"Coach {coach.id} created time template {template.id} (active={is_active}).")
        return template

    async def update_template(self, template_id: UUID, coach: db_models.Users, changes: dict) -> db_models.TimeTemplates:
        template = await self.get_template(template_id, coach)
        changes = {k: v for k, v in changes.items() if v is not None}
        self._validate_window(
            changes.get("min_advance_days", template.min_advance_days),
            changes.get("max_advance_days", template.max_advance_days),
            changes.get("max_advance_nums", template.max_advance_nums),
        )
        for key in ("name", "min_advance_days", "max_advance_days", "max_advance_nums"):
            if key in changes:
                setattr(template, key, changes[key])
        await self.db.flush()
        return template

    async def set_active(self, template_id: UUID, coach: db_models.Users, active: bool) -> db_models.TimeTemplates:
        """Activating one template deactivates the coach's others."""
        template = await self.get_template(template_id, coach)
        if template.is_active == active:
            state = "active" if active else "inactive"
            raise AlreadyInStateError(f"The time template is already {state}.", reason=f"time_template_already_{state}")
        if active:
            await self._deactivate_others(coach.id, template.id)
        template.is_active = active
        await self.db.flush()
        log.info(f"Coach {coach.id} set time template {template.id} active={active}.")
        return template
