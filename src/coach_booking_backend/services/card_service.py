'''
Prepaid cards: coach-owned templates and the instances issued from them.

Instance lifecycle:
    unopened --activate--> active --deactivate--> paused --reactivate--> active
    active --(expiry passed)--> expired
'''
from datetime import date, timedelta
from typing import Annotated, Optional
from uuid import UUID
from fastapi import Depends
from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from ..database.engine import get_db_session
from ..database import models as db_models
from ..database.db_enums import BookingStatus, CardStatus, NotificationEvent
from ..common.clock import Clock, get_clock
from ..common.config import settings
from ..common.exceptions import (
    AlreadyInStateError, CardUnavailableError, ConflictError, ForbiddenError,
    NotFoundError, ValidationFailedError
)
from ..common.logger import log
from .ledger_service import CreditLedgerService
from .notification_service import NotificationService, get_notification_service

CARD_STATUS_TEXT = {
    CardStatus.UNOPENED: "unopened",
    CardStatus.ACTIVE: "active",
    CardStatus.PAUSED: "paused",
    CardStatus.EXPIRED: "expired",
}


class CardTemplateService:
    """
    Card templates a coach sells. Lesson count and validity are frozen once
    any instance has been issued.
    """
    def __init__(
        self,
        db: Annotated[AsyncSession, Depends(get_db_session)],
        clock: Annotated[Clock, Depends(get_clock)]
    ):
        self.db = db
        self.clock = clock

    async def get_template(self, template_id: UUID, coach: db_models.Users) -> db_models.CoachCards:
        template = await self.db.get(db_models.CoachCards, template_id)
        if template is None or template.deleted_at is not None:
            raise NotFoundError("Card template not found.", reason="template_not_found")
        if template.coach_id != coach.id:
            log.warning(f"SECURITY: User {coach.id} tried to access card template {template_id}.")
            raise ForbiddenError("This card template belongs to another coach.", reason="not_template_owner")
        return template

    async def list_templates(self, coach: db_models.Users, include_inactive: bool = True) -> list[db_models.CoachCards]:
        stmt = select(db_models.CoachCards).where(
            db_models.CoachCards.coach_id == coach.id,
            db_models.CoachCards.deleted_at.is_(None),
        ).order_by(db_models.CoachCards.created_at)
        if not include_inactive:
            stmt = stmt.where(db_models.CoachCards.is_active.is_(True))
        return list((await self.db.execute(stmt)).scalars().all())

    async def count_instances(self, template_id: UUID) -> int:
        stmt = select(func.count(db_models.StudentCardInstances.id)).where(
            db_models.StudentCardInstances.template_id == template_id
        )
        return int((await self.db.execute(stmt)).scalar_one())

    @staticmethod
    def _validate_terms(lesson_count: Optional[int], valid_days: int) -> None:
        if lesson_count is not None and lesson_count <= 0:
            raise ValidationFailedError("Lesson count must be positive or empty for unlimited.", reason="invalid_lesson_count")
        if valid_days <= 0:
            raise ValidationFailedError("Validity must be at least one day.", reason="invalid_valid_days")

    async def create_template(
        self,
        coach: db_models.Users,
        name: str,
        valid_days: int,
        lesson_count: Optional[int] = None,
        color: Optional[str] = None,
        description: Optional[str] = None,
    ) -> db_models.CoachCards:
        if not name or not name.strip():
            raise ValidationFailedError("Card name is required.", reason="card_name_required")
        self._validate_terms(lesson_count, valid_days)
        template = db_models.CoachCards(
            coach_id=coach.id,
            name=name.strip(),
            color=color,
            lesson_count=lesson_count,
            valid_days=valid_days,
            description=description,
            is_active=True,
        )
        self.db.add(template)
        await self.db.flush()
        log.info(f"Coach {coach.id} created card template {template.id}.")
        return template

    async def update_template(self, template_id: UUID, coach: db_models.Users, changes: dict) -> db_models.CoachCards:
        template = await self.get_template(template_id, coach)
        terms_changed = any(
            key in changes and changes[key] != getattr(template, key)
            for key in ("lesson_count", "valid_days")
        )
        if terms_changed and await self.count_instances(template.id) > 0:
            raise ConflictError(
                "Lesson count and validity can't change once cards have been issued.",
                reason="template_in_use",
            )
        self._validate_terms(changes.get("lesson_count", template.lesson_count),
                             changes.get("valid_days", template.valid_days))
        for key in ("name", "color", "lesson_count", "valid_days", "description"):
            if key in changes:
                setattr(template, key, changes[key])
        await self.db.flush()
        return template

    async def set_enabled(self, template_id: UUID, coach: db_models.Users, enabled: bool) -> db_models.CoachCards:
        template = await self.get_template(template_id, coach)
        if template.is_active == enabled:
            state = "enabled" if enabled else "disabled"
            raise AlreadyInStateError(f"The card template is already {state}.", reason=f"template_already_{state}")
        template.is_active = enabled
        await self.db.flush()
        log.info(f"Coach {coach.id} set card template {template.id} active={enabled}.")
        return template

    async def delete_template(self, template_id: UUID, coach: db_models.Users) -> bool:
        """
        Deletes a disabled template. Returns True for a hard delete, False when
        issued instances force a soft delete.
        """
        template = await self.get_template(template_id, coach)
        if template.is_active:
            raise ConflictError("Disable the card template before deleting it.", reason="template_still_active")

        if await self.count_instances(template.id) == 0:
            await self.db.delete(template)
            await self.db.flush()
            log.info(f"Card template {template_id} hard-deleted.")
            return True

        template.deleted_at = self.clock.now()
        await self.db.flush()
        log.info(f"Card template {template_id} soft-deleted; issued cards keep their terms.")
        return False


class CardService:
    """
    Card instance lifecycle, availability checks and lesson deduction.
    """
    def __init__(
        self,
        db: Annotated[AsyncSession, Depends(get_db_session)],
        clock: Annotated[Clock, Depends(get_clock)],
        ledger: Annotated[CreditLedgerService, Depends(CreditLedgerService)],
        notifier: Annotated[NotificationService, Depends(get_notification_service)]
    ):
        self.db = db
        self.clock = clock
        self.ledger = ledger
        self.notifier = notifier

    # --- 1. Helpers ---

    def today(self) -> date:
        return self.clock.today(settings.DEFAULT_TIMEZONE)

    def is_expired(self, card: db_models.StudentCardInstances) -> bool:
        """True once the last day of validity is over (or the status says so)."""
        if card.card_status == CardStatus.EXPIRED.value:
            return True
        return card.expire_date is not None and self.today() > card.expire_date

    def check_available(self, card: db_models.StudentCardInstances) -> tuple[bool, str]:
        """Read-only version of the deduction guard."""
        if card.card_status != CardStatus.ACTIVE.value:
            if card.card_status == CardStatus.EXPIRED.value:
                return False, "card_expired"
            return False, "card_not_active"
        if self.is_expired(card):
            return False, "card_expired"
        if not card.is_unlimited and (card.remaining_lessons or 0) <= 0:
            return False, "card_used_up"
        return True, ""

    async def get_card(self, card_id: UUID, lock: bool = False) -> db_models.StudentCardInstances:
        stmt = select(db_models.StudentCardInstances).where(db_models.StudentCardInstances.id == card_id)
        if lock:
            stmt = stmt.with_for_update()
        card = (await self.db.execute(stmt)).scalars().first()
        if card is None:
            raise NotFoundError("Card not found.", reason="card_not_found")
        return card

    def _authorize_coach(self, card: db_models.StudentCardInstances, user: db_models.Users) -> None:
        if card.coach_id != user.id:
            log.warning(f"SECURITY: User {user.id} tried a coach action on card {card.id}.")
            raise ForbiddenError("Only the issuing coach can manage this card.", reason="coach_only")

    def _authorize_party(self, card: db_models.StudentCardInstances, user: db_models.Users) -> None:
        if user.id not in (card.coach_id, card.student_id):
            log.warning(f"SECURITY: User {user.id} tried to read card {card.id}.")
            raise ForbiddenError("You cannot view this card.", reason="not_card_party")

    async def count_open_bookings(self, card_id: UUID) -> int:
        stmt = select(func.count(db_models.CourseBookings.id)).where(
            db_models.CourseBookings.card_instance_id == card_id,
            db_models.CourseBookings.status.in_(BookingStatus.open_states()),
        )
        return int((await self.db.execute(stmt)).scalar_one())

    async def count_bookings(self, card_id: UUID) -> int:
        stmt = select(func.count(db_models.CourseBookings.id)).where(
            db_models.CourseBookings.card_instance_id == card_id
        )
        return int((await self.db.execute(stmt)).scalar_one())

    async def get_available_lessons_for_booking(self, card: db_models.StudentCardInstances) -> Optional[int]:
        """
        Lessons still bookable on the card: remaining minus open bookings.
        None means unlimited.
        """
        if card.is_unlimited:
            return None
        return max(0, (card.remaining_lessons or 0) - await self.count_open_bookings(card.id))

    # --- 2. Issuance & Reads ---

    async def issue_card(
        self, template_id: UUID, student_id: UUID, relation_id: UUID, coach: db_models.Users
    ) -> db_models.StudentCardInstances:
        """
        Issues an unopened card. Terms are copied so later template edits
        never reach issued cards.
        """
        template = await self.db.get(db_models.CoachCards, template_id)
        if template is None or template.deleted_at is not None:
            raise NotFoundError("Card template not found.", reason="template_not_found")
        if template.coach_id != coach.id:
            raise ForbiddenError("This card template belongs to another coach.", reason="not_template_owner")
        if not template.is_active:
            raise ConflictError("This card template is disabled.", reason="template_disabled")

        relation = await self.ledger.get_relation(relation_id)
        if relation.coach_id != coach.id or relation.student_id != student_id:
            raise ValidationFailedError("The relationship doesn't match the student and coach.", reason="relation_mismatch")
        if not relation.is_active:
            raise ConflictError("The relationship is not active.", reason="relation_inactive")

        card = db_models.StudentCardInstances(
            template_id=template.id,
            student_id=student_id,
            coach_id=coach.id,
            relation_id=relation.id,
            card_name=template.name,
            card_color=template.color,
            total_lessons=template.lesson_count,
            remaining_lessons=template.lesson_count,
            valid_days=template.valid_days,
            card_status=CardStatus.UNOPENED.value,
            used_count=0,
        )
        self.db.add(card)
        await self.db.flush()
        log.info(f"Coach {coach.id} issued card {card.id} to student {student_id}.")
        self.notifier.notify_after_commit(self.db, NotificationEvent.CARD_ISSUED, {
            "card_id": card.id, "student_id": student_id, "coach_id": coach.id, "name": card.card_name,
        })
        return card

    async def get_card_for_user(self, card_id: UUID, user: db_models.Users) -> db_models.StudentCardInstances:
        card = await self.get_card(card_id)
        self._authorize_party(card, user)
        return card

    async def list_cards_for_relation(self, relation_id: UUID, user: db_models.Users) -> list[db_models.StudentCardInstances]:
        relation = await self.ledger.get_relation(relation_id)
        if user.id not in (relation.coach_id, relation.student_id):
            raise ForbiddenError("You are not part of this relationship.", reason="not_relation_party")
        stmt = select(db_models.StudentCardInstances).where(
            db_models.StudentCardInstances.relation_id == relation_id
        ).order_by(db_models.StudentCardInstances.created_at.desc())
        return list((await self.db.execute(stmt)).scalars().all())

    async def summarize(self, card: db_models.StudentCardInstances) -> dict:
        return {
            "id": card.id,
            "template_id": card.template_id,
            "student_id": card.student_id,
            "coach_id": card.coach_id,
            "relation_id": card.relation_id,
            "card_name": card.card_name,
            "card_color": card.card_color,
            "card_status": card.card_status,
            "status_text": CARD_STATUS_TEXT[CardStatus(card.card_status)],
            "total_lessons": card.total_lessons,
            "remaining_lessons": card.remaining_lessons,
            "used_count": card.used_count,
            "valid_days": card.valid_days,
            "expire_date": card.expire_date,
            "remaining_valid_days": card.remaining_valid_days,
            "is_unlimited": card.is_unlimited,
            "is_expired": self.is_expired(card),
            "available_for_booking": await self.get_available_lessons_for_booking(card),
        }

    # --- 3. Lifecycle ---

    async def activate(self, card_id: UUID, coach: db_models.Users) -> db_models.StudentCardInstances:
        card = await self.get_card(card_id, lock=True)
        self._authorize_coach(card, coach)

        if card.card_status == CardStatus.ACTIVE.value:
            raise AlreadyInStateError("The card is already active.", reason="card_already_active")
        if card.card_status == CardStatus.PAUSED.value:
            raise ConflictError("A paused card must be reactivated.", reason="card_paused")
        if card.card_status == CardStatus.EXPIRED.value:
            raise CardUnavailableError("The card has expired.", reason="card_expired")

        today = self.today()
        card.card_status = CardStatus.ACTIVE.value
        card.expire_date = today + timedelta(days=card.valid_days)
        card.activated_at = self.clock.now()
        card.remaining_valid_days = None
        await self.db.flush()
        log.info(f"Card {card.id} activated, valid until {card.expire_date}.")
        return card

    async def deactivate(self, card_id: UUID, coach: db_models.Users) -> db_models.StudentCardInstances:
        card = await self.get_card(card_id, lock=True)
        self._authorize_coach(card, coach)

        if card.card_status == CardStatus.PAUSED.value:
            raise AlreadyInStateError("The card is already paused.", reason="card_already_paused")
        if card.card_status != CardStatus.ACTIVE.value:
            raise ConflictError("Only an active card can be paused.", reason="card_not_active")
        if self.is_expired(card):
            raise CardUnavailableError("The card has expired.", reason="card_expired")

        # expire_date stays as history; reactivate supersedes it
        card.remaining_valid_days = max(0, (card.expire_date - self.today()).days)
        card.card_status = CardStatus.PAUSED.value
        card.deactivated_at = self.clock.now()
        await self.db.flush()
        log.info(f"Card {card.id} paused with {card.remaining_valid_days} days left.")
        return card

    async def reactivate(self, card_id: UUID, coach: db_models.Users) -> db_models.StudentCardInstances:
        card = await self.get_card(card_id, lock=True)
        self._authorize_coach(card, coach)

        if card.card_status == CardStatus.ACTIVE.value:
            raise AlreadyInStateError("The card is already active.", reason="card_already_active")
        if card.card_status != CardStatus.PAUSED.value:
            raise ConflictError("Only a paused card can be reactivated.", reason="card_not_paused")

        today = self.today()
        if card.remaining_valid_days is None:
            # paused before frozen days were recorded
            if card.expire_date is None or card.expire_date < today:
                raise CardUnavailableError("The card has expired.", reason="card_expired")
            days_left = (card.expire_date - today).days
        else:
            days_left = card.remaining_valid_days

        card.expire_date = today + timedelta(days=days_left)
        card.remaining_valid_days = None
        card.card_status = CardStatus.ACTIVE.value
        card.activated_at = self.clock.now()
        await self.db.flush()
        log.info(f"Card {card.id} reactivated, valid until {card.expire_date}.")
        return card

    async def can_delete(self, card: db_models.StudentCardInstances) -> tuple[bool, str]:
        if self.is_expired(card):
            return True, ""
        if card.expire_date is None:
            if await self.count_bookings(card.id) > 0:
                return False, "card_has_usage"
            return True, ""
        exhausted = not card.is_unlimited and (card.remaining_lessons or 0) == 0
        if not exhausted:
            return False, "card_in_validity"
        if await self.count_open_bookings(card.id) > 0:
            return False, "card_has_open_bookings"
        return True, ""

    async def delete_card(self, card_id: UUID, coach: db_models.Users) -> None:
        card = await self.get_card(card_id, lock=True)
        self._authorize_coach(card, coach)
        allowed, reason = await self.can_delete(card)
        if not allowed:
            messages = {
                "card_has_usage": "The card has bookings and can't be deleted.",
                "card_in_validity": "The card is still valid and has lessons left.",
                "card_has_open_bookings": "The card still has open bookings.",
            }
            raise ConflictError(messages[reason], reason=reason)
        await self.db.delete(card)
        await self.db.flush()
        log.info(f"Coach {coach.id} deleted card {card_id}.")

    # --- 4. Consumption ---

    async def deduct_lesson(self, card_id: UUID) -> db_models.StudentCardInstances:
        """
        Consumes one lesson inside the caller's transaction, with the card
        row locked. Unlimited cards only count usage.
        """
        card = await self.get_card(card_id, lock=True)
        if card.card_status == CardStatus.ACTIVE.value and self.is_expired(card):
            card.card_status = CardStatus.EXPIRED.value
            await self.db.flush()
        ok, reason = self.check_available(card)
        if not ok:
            log.warning(f"Card {card.id} unavailable for deduction: {reason}")
            raise CardUnavailableError("The card can't be used.", reason=reason)

        if not card.is_unlimited:
            card.remaining_lessons -= 1
        card.used_count += 1
        await self.db.flush()
        log.info(f"Card {card.id} deducted one lesson; remaining {card.remaining_lessons}.")
        return card

    async def expire_overdue_cards(self) -> int:
        """Bulk-flips active cards past their last day to expired."""
        stmt = (
            update(db_models.StudentCardInstances)
            .where(
                db_models.StudentCardInstances.card_status == CardStatus.ACTIVE.value,
                db_models.StudentCardInstances.expire_date.is_not(None),
                db_models.StudentCardInstances.expire_date < self.today(),
            )
            .values(card_status=CardStatus.EXPIRED.value)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        if result.rowcount:
            log.info(f"Expired {result.rowcount} overdue cards.")
        return result.rowcount or 0
