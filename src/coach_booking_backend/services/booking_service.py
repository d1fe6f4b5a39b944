'''
One-to-one bookings between a student and a coach.

    pending --confirm--> confirmed --complete--> completed
    pending|confirmed --cancel--> cancelled
    pending --(start time passed, sweeper)--> timeout-cancelled

Credits are never debited at creation. Open bookings reserve credit through
the ledger's occupancy count; completion is the debit point.
'''
from datetime import date, datetime, time
from typing import Annotated, Optional
from uuid import UUID
from fastapi import Depends
from sqlalchemy import select, update, func, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from ..database.engine import get_db_session
from ..database import models as db_models
from ..database.db_enums import BookingAction, BookingStatus, CreditSourceType, NotificationEvent
from ..database.session_utils import retry_on_lock_failure
from ..models import booking as booking_models
from ..common.clock import Clock, get_clock
from ..common.config import settings
from ..common.exceptions import (
    AlreadyInStateError, CardUnavailableError, ConflictError, ForbiddenError,
    CoachBookingError, InsufficientCreditError, NotFoundError, ValidationFailedError
)
from ..common.logger import log
from .card_service import CardService
from .category_service import CategoryService
from .ledger_service import CreditLedgerService
from .notification_service import NotificationService, get_notification_service
from .relation_service import RelationService
from .time_template_service import TimeTemplateService
from .user_service import UserService

TIMEOUT_CANCEL_REASON = "timeout, auto-cancelled"


def overlap_clause(model, course_date: date, start: time, end: time):
    """Half-open [start, end) intersection on the same day."""
    return and_(
        model.course_date == course_date,
        model.start_time < end,
        model.end_time > start,
    )


def started_before_clause(model, now_local: datetime):
    """(course_date, start_time) strictly before the given local instant."""
    today = now_local.date()
    now_time = now_local.time().replace(tzinfo=None)
    return or_(
        model.course_date < today,
        and_(model.course_date == today, model.start_time < now_time),
    )


class BookingService:
    """
    Service for creating bookings and moving them through their lifecycle.
    """
    def __init__(
        self,
        db: Annotated[AsyncSession, Depends(get_db_session)],
        clock: Annotated[Clock, Depends(get_clock)],
        ledger: Annotated[CreditLedgerService, Depends(CreditLedgerService)],
        card_service: Annotated[CardService, Depends(CardService)],
        relation_service: Annotated[RelationService, Depends(RelationService)],
        category_service: Annotated[CategoryService, Depends(CategoryService)],
        user_service: Annotated[UserService, Depends(UserService)],
        time_templates: Annotated[TimeTemplateService, Depends(TimeTemplateService)],
        notifier: Annotated[NotificationService, Depends(get_notification_service)]
    ):
        self.db = db
        self.clock = clock
        self.ledger = ledger
        self.card_service = card_service
        self.relation_service = relation_service
        self.category_service = category_service
        self.user_service = user_service
        self.time_templates = time_templates
        self.notifier = notifier

    # --- 1. Authorization Helpers ---

    def _authorize_party(self, booking: db_models.CourseBookings, user: db_models.Users) -> None:
        if user.id not in (booking.student_id, booking.coach_id):
            log.warning(f"SECURITY: User {user.id} tried to access booking {booking.id}.")
            raise ForbiddenError("You are not part of this booking.", reason="not_booking_party")

    # --- 2. Internal Fetchers ---

    async def _get_booking(self, booking_id: UUID, lock: bool = False) -> db_models.CourseBookings:
        stmt = select(db_models.CourseBookings).where(db_models.CourseBookings.id == booking_id)
        if lock:
            stmt = stmt.with_for_update()
        booking = (await self.db.execute(stmt)).scalars().first()
        if booking is None:
            log.warning(f"Tried to fetch non-existing booking: {booking_id}")
            raise NotFoundError("Booking not found.", reason="booking_not_found")
        return booking

    async def _count_overlapping(
        self, column, user_id: UUID, course_date: date, start: time, end: time,
        exclude_id: Optional[UUID] = None,
    ) -> int:
        stmt = select(func.count(db_models.CourseBookings.id)).where(
            column == user_id,
            db_models.CourseBookings.status.in_(BookingStatus.open_states()),
            overlap_clause(db_models.CourseBookings, course_date, start, end),
        )
        if exclude_id is not None:
            stmt = stmt.where(db_models.CourseBookings.id != exclude_id)
        return int((await self.db.execute(stmt)).scalar_one())

    # --- 3. Creation ---

    async def _resolve_relation(
        self, data: booking_models.BookingCreate
    ) -> db_models.StudentCoachRelations:
        if data.relation_id is not None:
            relation = await self.relation_service.get_relation(data.relation_id)
            if relation.student_id != data.student_id or relation.coach_id != data.coach_id:
                raise ValidationFailedError(
                    "The relationship doesn't match the student and coach.", reason="relation_mismatch"
                )
            return relation
        relation = await self.relation_service.find_relation_for_pair(data.student_id, data.coach_id)
        if relation is None:
            raise NotFoundError("Student-coach relationship not found.", reason="relation_not_found")
        return relation

    async def _check_category_credit(
        self, relation: db_models.StudentCoachRelations, category_id: int, course_date: date
    ) -> None:
        balance = await self.ledger.get_balance(relation.id, category_id)
        if balance.expire_date is not None and course_date > balance.expire_date:
            raise InsufficientCreditError(
                "The lessons in this category expire before the course date.",
                reason="credit_expires_before_course",
                expire_date=balance.expire_date,
            )
        bookable = await self.ledger.get_available_for_booking(relation.id, category_id)
        if bookable <= 0:
            log.warning(f"Relation {relation.id} has no bookable lessons in category {category_id}.")
            raise InsufficientCreditError(
                "No lessons left to book in this category.",
                available=balance.remaining,
            )

    async def _check_card_credit(
        self, relation: db_models.StudentCoachRelations, card_id: UUID, course_date: date
    ) -> db_models.StudentCardInstances:
        card = await self.card_service.get_card(card_id, lock=True)
        if card.relation_id != relation.id:
            raise ValidationFailedError("The card doesn't belong to this relationship.", reason="card_relation_mismatch")
        ok, reason = self.card_service.check_available(card)
        if not ok:
            raise CardUnavailableError("The card can't be used.", reason=reason)
        bookable = await self.card_service.get_available_lessons_for_booking(card)
        if bookable is not None and bookable <= 0:
            raise InsufficientCreditError("All lessons on this card are already booked.", available=0)
        if card.expire_date is not None and course_date > card.expire_date:
            raise CardUnavailableError(
                "The card expires before the course date.",
                reason="card_expires_before_course",
                expire_date=card.expire_date,
            )
        return card

    @retry_on_lock_failure
    async def create_booking(
        self, data: booking_models.BookingCreate, current_user: db_models.Users
    ) -> db_models.CourseBookings:
        """
        Validates every precondition while holding locks on both users and
        the relationship, then inserts the booking.
        """
        log.info(f"User {current_user.id} creating booking {data.student_id} <-> {data.coach_id} on {data.course_date}.")
        try:
            if current_user.id not in (data.student_id, data.coach_id):
                raise ForbiddenError("You can only book for yourself.", reason="not_booking_party")
            if data.student_id == data.coach_id:
                raise ValidationFailedError("Student and coach must differ.", reason="same_student_and_coach")

            local_now = self.clock.local_now(settings.DEFAULT_TIMEZONE)
            start_at = datetime.combine(data.course_date, data.start_time, tzinfo=local_now.tzinfo)
            if start_at <= local_now:
                raise ValidationFailedError("The course must start in the future.", reason="booking_in_past")
            template = await self.time_templates.get_active_template(data.coach_id)
            self.time_templates.check_booking_window(template, data.course_date)

            # 1. Referenced entities
            await self.user_service.get_user_or_404(data.coach_id, "Coach")
            await self.user_service.get_user_or_404(data.student_id, "Student")
            await self.user_service.get_address_or_404(data.address_id)
            await self.category_service.get_category(data.coach_id, data.credit_source.category_id)
            relation = await self._resolve_relation(data)

            # 2. Serialize against concurrent bookings for the same people
            await self.user_service.lock_users([data.coach_id, data.student_id])
            relation = await self.relation_service.get_relation(relation.id, lock=True)
            if not relation.is_active:
                raise ConflictError("The relationship is not active.", reason="relation_inactive")
            if not relation.booking_enabled:
                raise ConflictError("The coach has paused bookings for this student.", reason="booking_disabled")

            # 3. Credit source
            credit = data.credit_source
            card_id = None
            if credit.type == CreditSourceType.CARD:
                card = await self._check_card_credit(relation, credit.card_instance_id, data.course_date)
                card_id = card.id
            else:
                await self._check_category_credit(relation, credit.category_id, data.course_date)

            # 4. Time conflicts
            student_clash = await self._count_overlapping(
                db_models.CourseBookings.student_id, data.student_id,
                data.course_date, data.start_time, data.end_time,
            )
            if student_clash > 0:
                raise ConflictError("The student already has a course at this time.", reason="student_time_conflict")

            capacity = template.max_advance_nums if template is not None else settings.DEFAULT_SLOT_CAPACITY
            coach_load = await self._count_overlapping(
                db_models.CourseBookings.coach_id, data.coach_id,
                data.course_date, data.start_time, data.end_time,
            )
            if coach_load >= capacity:
                raise ConflictError(
                    "The coach has no free place in this time slot.",
                    reason="coach_slot_full",
                    capacity=capacity,
                )

            # 5. Insert
            now = self.clock.now()
            auto_confirm = current_user.id == data.coach_id and relation.auto_confirm_by_coach
            booking = db_models.CourseBookings(
                student_id=data.student_id,
                coach_id=data.coach_id,
                relation_id=relation.id,
                address_id=data.address_id,
                course_date=data.course_date,
                start_time=data.start_time,
                end_time=data.end_time,
                credit_source=str(credit.type),
                category_id=credit.category_id,
                card_instance_id=card_id,
                status=(BookingStatus.CONFIRMED if auto_confirm else BookingStatus.PENDING).value,
                created_by=current_user.id,
                student_remark=data.student_remark,
                coach_remark=data.coach_remark,
                confirmed_at=now if auto_confirm else None,
                created_at=now,
            )
            self.db.add(booking)
            await self.db.flush()
            log.info(f"Booking {booking.id} created with status {BookingStatus(booking.status).name}.")

            self.notifier.notify_after_commit(self.db, NotificationEvent.BOOKING_CREATED, {
                "booking_id": booking.id,
                "student_id": booking.student_id,
                "coach_id": booking.coach_id,
                "course_date": booking.course_date.isoformat(),
                "start_time": booking.start_time.isoformat(),
                "status": booking.status,
            })
            return booking

        except CoachBookingError as domain_exc:
            log.info(f"Booking creation rejected: {domain_exc}")
            raise domain_exc
        except Exception as e:
            log.error(f"Error creating booking for user {current_user.id}: {e}", exc_info=True)
            raise

    # --- 4. Transitions ---

    @retry_on_lock_failure
    async def transition_booking(
        self,
        booking_id: UUID,
        current_user: db_models.Users,
        action: BookingAction,
        reason: Optional[str] = None,
    ) -> db_models.CourseBookings:
        booking = await self._get_booking(booking_id, lock=True)
        self._authorize_party(booking, current_user)

        if action == BookingAction.CONFIRM:
            await self._confirm(booking, current_user)
        elif action == BookingAction.CANCEL:
            await self._cancel(booking, current_user, reason)
        elif action == BookingAction.COMPLETE:
            await self._complete(booking, current_user)
        else:
            raise ValidationFailedError(f"Unknown action '{action}'.", reason="invalid_action")
        return booking

    async def _confirm(self, booking: db_models.CourseBookings, user: db_models.Users) -> None:
        if booking.created_by == user.id:
            log.warning(f"SECURITY: User {user.id} tried to confirm their own booking {booking.id}.")
            raise ForbiddenError("You cannot confirm a booking you created.", reason="cannot_confirm_own_booking")
        if booking.status == BookingStatus.CONFIRMED.value:
            raise AlreadyInStateError("The booking is already confirmed.", reason="booking_already_confirmed")
        if booking.status != BookingStatus.PENDING.value:
            raise ConflictError("Only a pending booking can be confirmed.", reason="booking_not_pending")

        booking.status = BookingStatus.CONFIRMED.value
        booking.confirmed_at = self.clock.now()
        await self.db.flush()
        log.info(f"Booking {booking.id} confirmed by {user.id}.")
        self.notifier.notify_after_commit(self.db, NotificationEvent.BOOKING_CONFIRMED, {
            "booking_id": booking.id, "confirmed_by": user.id,
        })

    async def _cancel(self, booking: db_models.CourseBookings, user: db_models.Users, reason: Optional[str]) -> None:
        if booking.status == BookingStatus.COMPLETED.value:
            raise ConflictError("A completed booking cannot be cancelled.", reason="booking_completed")
        if booking.status in (BookingStatus.CANCELLED.value, BookingStatus.TIMEOUT_CANCELLED.value):
            raise AlreadyInStateError("The booking is already cancelled.", reason="booking_already_cancelled")

        # nothing was debited yet, so nothing to refund
        booking.status = BookingStatus.CANCELLED.value
        booking.cancelled_at = self.clock.now()
        booking.cancelled_by = user.id
        booking.cancel_reason = reason
        await self.db.flush()
        log.info(f"Booking {booking.id} cancelled by {user.id}.")
        self.notifier.notify_after_commit(self.db, NotificationEvent.BOOKING_CANCELLED, {
            "booking_id": booking.id, "cancelled_by": user.id, "reason": reason,
        })

    async def _complete(self, booking: db_models.CourseBookings, user: db_models.Users) -> None:
        if user.id != booking.coach_id:
            log.warning(f"SECURITY: User {user.id} tried to complete booking {booking.id}.")
            raise ForbiddenError("Only the coach can complete a booking.", reason="coach_only")
        if booking.status == BookingStatus.COMPLETED.value:
            raise AlreadyInStateError("The booking is already completed.", reason="booking_already_completed")
        if booking.status != BookingStatus.CONFIRMED.value:
            raise ConflictError("Only a confirmed booking can be completed.", reason="booking_not_confirmed")

        # debit first; a failure leaves the status untouched
        if booking.credit_source == CreditSourceType.CARD.value:
            if booking.card_instance_id is None:
                raise CardUnavailableError("The card of this booking no longer exists.", reason="card_not_found")
            await self.card_service.deduct_lesson(booking.card_instance_id)
        else:
            await self.ledger.decrease(booking.relation_id, booking.category_id, 1)

        booking.status = BookingStatus.COMPLETED.value
        booking.completed_at = self.clock.now()
        await self.db.flush()
        log.info(f"Booking {booking.id} completed; one lesson debited from {booking.credit_source}.")
        self.notifier.notify_after_commit(self.db, NotificationEvent.BOOKING_COMPLETED, {
            "booking_id": booking.id, "student_id": booking.student_id,
        })

    async def delete_booking(self, booking_id: UUID, current_user: db_models.Users) -> None:
        booking = await self._get_booking(booking_id, lock=True)
        self._authorize_party(booking, current_user)
        if booking.status == BookingStatus.COMPLETED.value:
            raise ConflictError("A completed booking cannot be deleted.", reason="booking_completed")
        await self.db.delete(booking)
        await self.db.flush()
        log.info(f"Booking {booking_id} deleted by {current_user.id}.")

    # --- 5. Reads ---

    async def get_booking(self, booking_id: UUID, current_user: db_models.Users) -> db_models.CourseBookings:
        booking = await self._get_booking(booking_id)
        self._authorize_party(booking, current_user)
        return booking

    async def list_bookings(
        self,
        current_user: db_models.Users,
        status: Optional[BookingStatus] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[db_models.CourseBookings]:
        stmt = select(db_models.CourseBookings).where(
            or_(
                db_models.CourseBookings.student_id == current_user.id,
                db_models.CourseBookings.coach_id == current_user.id,
            )
        )
        if status is not None:
            stmt = stmt.where(db_models.CourseBookings.status == status.value)
        if date_from is not None:
            stmt = stmt.where(db_models.CourseBookings.course_date >= date_from)
        if date_to is not None:
            stmt = stmt.where(db_models.CourseBookings.course_date <= date_to)
        stmt = stmt.order_by(db_models.CourseBookings.course_date, db_models.CourseBookings.start_time)
        return list((await self.db.execute(stmt)).scalars().all())

    # --- 6. Timeout (sweeper) ---

    async def find_timeout_candidates(self, limit: int = 500) -> list[UUID]:
        local_now = self.clock.local_now(settings.DEFAULT_TIMEZONE)
        stmt = select(db_models.CourseBookings.id).where(
            db_models.CourseBookings.status == BookingStatus.PENDING.value,
            started_before_clause(db_models.CourseBookings, local_now),
        ).limit(limit)
        return list((await self.db.execute(stmt)).scalars().all())

    async def timeout_if_stale(self, booking_id: UUID) -> bool:
        """
        Moves one pending booking whose start has passed to timeout-cancelled.
        Conditional on the status, so a concurrent sweep or user action wins
        cleanly. Returns True if this call made the transition.
        """
        local_now = self.clock.local_now(settings.DEFAULT_TIMEZONE)
        stmt = (
            update(db_models.CourseBookings)
            .where(
                db_models.CourseBookings.id == booking_id,
                db_models.CourseBookings.status == BookingStatus.PENDING.value,
                started_before_clause(db_models.CourseBookings, local_now),
            )
            .values(
                status=BookingStatus.TIMEOUT_CANCELLED.value,
                cancelled_at=self.clock.now(),
                cancel_reason=TIMEOUT_CANCEL_REASON,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        if result.rowcount != 1:
            return False

        booking = await self._get_booking(booking_id)
        await self.db.refresh(booking)
        log.info(f"Booking {booking_id} timed out.")
        self.notifier.notify_after_commit(self.db, NotificationEvent.BOOKING_TIMEOUT, {
            "booking_id": booking_id, "student_id": booking.student_id, "coach_id": booking.coach_id,
        })
        return True
