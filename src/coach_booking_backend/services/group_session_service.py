'''
Group sessions: one time slot, many registered students.

Session:       draft --publish--> open --cancel|complete|shortfall--> ended
Registration:  pending --confirm--> confirmed --check_in--> completed
               pending --reject--> rejected
               pending|confirmed --cancel--> cancelled

`current_count` counts confirmed registrations. Every change to it happens
with the session row locked. Check-in is the only point where credits are
debited; a registration merely reserves them.
'''
from datetime import datetime, timedelta
from typing import Annotated, Optional
from uuid import UUID
from fastapi import Depends
from sqlalchemy import select, update, func, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from ..database.engine import get_db_session
from ..database import models as db_models
from ..database.db_enums import (
    CheckInStatus, EnrollmentScope, GroupSessionStatus, NotificationEvent,
    PriceMode, RegistrationStatus
)
from ..database.session_utils import retry_on_lock_failure
from ..models import group_session as group_models
from ..common.clock import Clock, get_clock
from ..common.config import settings
from ..common.exceptions import (
    AlreadyInStateError, ConflictError, ForbiddenError, InsufficientCreditError,
    NotFoundError, ValidationFailedError
)
from ..common.logger import log
from .category_service import CategoryService
from .ledger_service import CreditLedgerService
from .notification_service import NotificationService, get_notification_service
from .relation_service import RelationService
from .user_service import UserService

INSUFFICIENT_PARTICIPANTS = "insufficient participants"


def end_reason(session: db_models.GroupCourses) -> Optional[str]:
    """Why an ended session ended. None while it hasn't."""
    if session.status != GroupSessionStatus.ENDED.value:
        return None
    if session.cancel_reason:
        return session.cancel_reason
    if session.completed_at is not None:
        return "completed"
    if session.current_count < session.capacity_min:
        return INSUFFICIENT_PARTICIPANTS
    return "cancelled"


def can_enroll(session: db_models.GroupCourses) -> bool:
    return session.status == GroupSessionStatus.OPEN.value and session.current_count < session.capacity_max


class GroupSessionService:
    """
    Service for group sessions and the registrations into them.
    """
    def __init__(
        self,
        db: Annotated[AsyncSession, Depends(get_db_session)],
        clock: Annotated[Clock, Depends(get_clock)],
        ledger: Annotated[CreditLedgerService, Depends(CreditLedgerService)],
        relation_service: Annotated[RelationService, Depends(RelationService)],
        category_service: Annotated[CategoryService, Depends(CategoryService)],
        user_service: Annotated[UserService, Depends(UserService)],
        notifier: Annotated[NotificationService, Depends(get_notification_service)]
    ):
        self.db = db
        self.clock = clock
        self.ledger = ledger
        self.relation_service = relation_service
        self.category_service = category_service
        self.user_service = user_service
        self.notifier = notifier

    # --- 1. Fetchers & Authorization ---

    async def _get_session(self, session_id: UUID, lock: bool = False) -> db_models.GroupCourses:
        stmt = select(db_models.GroupCourses).where(db_models.GroupCourses.id == session_id)
        if lock:
            stmt = stmt.with_for_update()
        session = (await self.db.execute(stmt)).scalars().first()
        if session is None:
            raise NotFoundError("Group session not found.", reason="group_session_not_found")
        return session

    async def _get_registration(self, registration_id: UUID, lock: bool = False) -> db_models.GroupCourseRegistrations:
        stmt = select(db_models.GroupCourseRegistrations).where(
            db_models.GroupCourseRegistrations.id == registration_id
        )
        if lock:
            stmt = stmt.with_for_update()
        registration = (await self.db.execute(stmt)).scalars().first()
        if registration is None:
            raise NotFoundError("Registration not found.", reason="registration_not_found")
        return registration

    def _authorize_owner(self, session: db_models.GroupCourses, user: db_models.Users) -> None:
        if session.coach_id != user.id:
            log.warning(f"SECURITY: User {user.id} tried to manage group session {session.id}.")
            raise ForbiddenError("Only the coach of this session can do this.", reason="coach_only")

    async def _registration_with_session(
        self, registration_id: UUID, coach: Optional[db_models.Users] = None
    ) -> tuple[db_models.GroupCourseRegistrations, db_models.GroupCourses]:
        """Locks the session first, then the registration."""
        registration = await self._get_registration(registration_id)
        session = await self._get_session(registration.group_course_id, lock=True)
        registration = await self._get_registration(registration_id, lock=True)
        if coach is not None:
            self._authorize_owner(session, coach)
        return registration, session

    # --- 2. Session Lifecycle ---

    async def create_session(
        self, coach: db_models.Users, data: group_models.GroupSessionCreate
    ) -> db_models.GroupCourses:
        await self.category_service.get_category(coach.id, data.category_id)
        if data.address_id is not None:
            await self.user_service.get_address_or_404(data.address_id)
        if data.price_mode == PriceMode.CREDIT and data.lesson_cost < 1:
            raise ValidationFailedError("A credit session must cost at least one lesson.", reason="invalid_lesson_cost")

        session = db_models.GroupCourses(
            coach_id=coach.id,
            category_id=data.category_id,
            title=data.title,
            description=data.description,
            course_date=data.course_date,
            start_time=data.start_time,
            end_time=data.end_time,
            address_id=data.address_id,
            capacity_min=data.capacity_min,
            capacity_max=data.capacity_max,
            current_count=0,
            price_mode=data.price_mode.value,
            lesson_cost=data.lesson_cost if data.price_mode == PriceMode.CREDIT else 0,
            price_amount=data.price_amount,
            enrollment_scope=data.enrollment_scope.value,
            auto_confirm=data.auto_confirm,
            status=GroupSessionStatus.DRAFT.value,
        )
        self.db.add(session)
        await self.db.flush()
        log.info(f"Coach {coach.id} created group session {session.id}.")
        if data.publish:
            await self._publish(session)
        return session

    async def update_session(
        self, session_id: UUID, coach: db_models.Users, data: group_models.GroupSessionUpdate
    ) -> db_models.GroupCourses:
        session = await self._get_session(session_id, lock=True)
        self._authorize_owner(session, coach)
        if session.status == GroupSessionStatus.ENDED.value:
            raise ConflictError("An ended session can't be changed.", reason="group_session_ended")

        changes = data.model_dump(exclude_unset=True)
        if "category_id" in changes:
            await self.category_service.get_category(coach.id, changes["category_id"])
        if session.status == GroupSessionStatus.OPEN.value and session.current_count > 0:
            locked = {"category_id", "price_mode", "lesson_cost"} & changes.keys()
            if locked:
                raise ConflictError("Pricing can't change once students have joined.", reason="group_session_has_participants")

        capacity_max = changes.get("capacity_max", session.capacity_max)
        capacity_min = changes.get("capacity_min", session.capacity_min)
        if capacity_max < capacity_min or capacity_max < session.current_count:
            raise ValidationFailedError("Capacity is below the minimum or the current participants.", reason="invalid_capacity")
        start = changes.get("start_time", session.start_time)
        end = changes.get("end_time", session.end_time)
        if start >= end:
            raise ValidationFailedError("start_time must be before end_time.", reason="invalid_time_range")

        for key, value in changes.items():
            setattr(session, key, value.value if hasattr(value, "value") else value)
        await self.db.flush()
        return session

    async def _publish(self, session: db_models.GroupCourses) -> None:
        session.status = GroupSessionStatus.OPEN.value
        session.published_at = self.clock.now()
        await self.db.flush()
        log.info(f"Group session {session.id} published.")

    async def publish_session(self, session_id: UUID, coach: db_models.Users) -> db_models.GroupCourses:
        session = await self._get_session(session_id, lock=True)
        self._authorize_owner(session, coach)
        if session.status == GroupSessionStatus.OPEN.value:
            raise AlreadyInStateError("The session is already published.", reason="group_session_already_open")
        if session.status != GroupSessionStatus.DRAFT.value:
            raise ConflictError("Only a draft session can be published.", reason="group_session_not_draft")
        await self._publish(session)
        return session

    async def _close_registrations(self, session: db_models.GroupCourses) -> int:
        """
        Cancels every registration still waiting for the session to happen.
        The confirmed ones among them come off `current_count`; the caller
        holds the session row lock. Returns how many were confirmed.
        """
        waiting = (
            db_models.GroupCourseRegistrations.group_course_id == session.id,
            db_models.GroupCourseRegistrations.status.in_(RegistrationStatus.active_states()),
            db_models.GroupCourseRegistrations.check_in_status == CheckInStatus.NONE.value,
        )
        confirmed = int((await self.db.execute(
            select(func.count(db_models.GroupCourseRegistrations.id)).where(
                *waiting,
                db_models.GroupCourseRegistrations.status == RegistrationStatus.CONFIRMED.value,
            )
        )).scalar_one())
        await self.db.execute(
            update(db_models.GroupCourseRegistrations)
            .where(*waiting)
            .values(status=RegistrationStatus.CANCELLED.value, cancelled_at=self.clock.now())
            .execution_options(synchronize_session=False)
        )
        session.current_count = max(0, session.current_count - confirmed)
        return confirmed

    async def cancel_session(
        self, session_id: UUID, coach: db_models.Users, reason: Optional[str] = None
    ) -> db_models.GroupCourses:
        session = await self._get_session(session_id, lock=True)
        self._authorize_owner(session, coach)
        if session.status == GroupSessionStatus.ENDED.value:
            raise AlreadyInStateError("The session has already ended.", reason="group_session_ended")
        if session.status != GroupSessionStatus.OPEN.value:
            raise ConflictError("Only an open session can be cancelled.", reason="group_session_not_open")

        session.status = GroupSessionStatus.ENDED.value
        session.cancelled_at = self.clock.now()
        session.cancel_reason = reason or "cancelled by coach"
        await self._close_registrations(session)
        await self.db.flush()
        log.info(f"Coach {coach.id} cancelled group session {session.id}.")
        self.notifier.notify_after_commit(self.db, NotificationEvent.GROUP_SESSION_ENDED, {
            "group_session_id": session.id, "reason": session.cancel_reason,
        })
        return session

    async def complete_session(self, session_id: UUID, coach: db_models.Users) -> db_models.GroupCourses:
        session = await self._get_session(session_id, lock=True)
        self._authorize_owner(session, coach)
        if session.status == GroupSessionStatus.ENDED.value:
            raise AlreadyInStateError("The session has already ended.", reason="group_session_ended")
        if session.status != GroupSessionStatus.OPEN.value:
            raise ConflictError("Only an open session can be completed.", reason="group_session_not_open")

        session.status = GroupSessionStatus.ENDED.value
        session.completed_at = self.clock.now()
        await self.db.flush()
        log.info(f"Group session {session.id} completed.")
        self.notifier.notify_after_commit(self.db, NotificationEvent.GROUP_SESSION_ENDED, {
            "group_session_id": session.id, "reason": "completed",
        })
        return session

    async def delete_session(self, session_id: UUID, coach: db_models.Users) -> None:
        session = await self._get_session(session_id, lock=True)
        self._authorize_owner(session, coach)
        if session.status == GroupSessionStatus.OPEN.value and session.current_count > 0:
            raise ConflictError("The session has participants; cancel it first.", reason="group_session_has_participants")

        registrations = await self.list_registrations_internal(session.id)
        if any(r.check_in_status == CheckInStatus.CHECKED_IN.value for r in registrations):
            raise ConflictError("Lessons were already debited for this session.", reason="group_session_has_check_ins")
        for registration in registrations:
            await self.db.delete(registration)
        await self.db.delete(session)
        await self.db.flush()
        log.info(f"Coach {coach.id} deleted group session {session_id}.")

    # --- 3. Reads ---

    async def get_session(self, session_id: UUID) -> db_models.GroupCourses:
        return await self._get_session(session_id)

    async def list_sessions(
        self, coach_id: Optional[UUID] = None, status: Optional[GroupSessionStatus] = None
    ) -> list[db_models.GroupCourses]:
        stmt = select(db_models.GroupCourses)
        if coach_id is not None:
            stmt = stmt.where(db_models.GroupCourses.coach_id == coach_id)
        if status is not None:
            stmt = stmt.where(db_models.GroupCourses.status == status.value)
        stmt = stmt.order_by(db_models.GroupCourses.course_date, db_models.GroupCourses.start_time)
        return list((await self.db.execute(stmt)).scalars().all())

    async def list_registrations_internal(self, session_id: UUID) -> list[db_models.GroupCourseRegistrations]:
        stmt = select(db_models.GroupCourseRegistrations).where(
            db_models.GroupCourseRegistrations.group_course_id == session_id
        ).order_by(db_models.GroupCourseRegistrations.registered_at)
        return list((await self.db.execute(stmt)).scalars().all())

    async def list_registrations(self, session_id: UUID, coach: db_models.Users) -> list[db_models.GroupCourseRegistrations]:
        session = await self._get_session(session_id)
        self._authorize_owner(session, coach)
        return await self.list_registrations_internal(session.id)

    async def list_my_registrations(self, student: db_models.Users) -> list[db_models.GroupCourseRegistrations]:
        stmt = select(db_models.GroupCourseRegistrations).where(
            db_models.GroupCourseRegistrations.student_id == student.id
        ).order_by(db_models.GroupCourseRegistrations.registered_at.desc())
        return list((await self.db.execute(stmt)).scalars().all())

    # --- 4. Registrations ---

    @retry_on_lock_failure
    async def register(
        self, session_id: UUID, student: db_models.Users, remark: Optional[str] = None
    ) -> db_models.GroupCourseRegistrations:
        """
        Registers a student. Credit sessions only reserve `lesson_cost`
        here; nothing is debited until check-in.
        """
        session = await self._get_session(session_id, lock=True)
        if session.coach_id == student.id:
            raise ValidationFailedError("A coach cannot join their own session.", reason="coach_self_registration")
        if session.status != GroupSessionStatus.OPEN.value:
            raise ConflictError("The session is not open for registration.", reason="group_session_not_open")
        if not can_enroll(session):
            raise ConflictError("The session is full.", reason="group_session_full")

        stmt = select(db_models.GroupCourseRegistrations).where(
            db_models.GroupCourseRegistrations.group_course_id == session.id,
            db_models.GroupCourseRegistrations.student_id == student.id,
        ).with_for_update()
        existing = (await self.db.execute(stmt)).scalars().first()
        if existing is not None and existing.status not in (
            RegistrationStatus.CANCELLED.value, RegistrationStatus.REJECTED.value
        ):
            raise AlreadyInStateError("You are already registered for this session.", reason="already_registered")

        relation = await self.relation_service.find_relation_for_pair(student.id, session.coach_id)
        if relation is not None and not relation.is_active:
            relation = None
        if session.enrollment_scope == EnrollmentScope.STUDENTS_ONLY.value and relation is None:
            raise ForbiddenError("This session is only open to the coach's students.", reason="students_only")

        if session.price_mode == PriceMode.CREDIT.value and session.lesson_cost > 0:
            if relation is None:
                raise ForbiddenError("Paying with lessons needs a relationship with the coach.", reason="credit_requires_relation")
            # serialize against other reservations on the same ledger
            relation = await self.relation_service.get_relation(relation.id, lock=True)
            bookable = await self.ledger.get_available_for_booking(relation.id, session.category_id)
            if bookable < session.lesson_cost:
                raise InsufficientCreditError(
                    "Not enough lessons to join this session.",
                    available=bookable,
                    required=session.lesson_cost,
                )

        now = self.clock.now()
        confirmed = session.auto_confirm
        registration = existing or db_models.GroupCourseRegistrations(
            group_course_id=session.id,
            student_id=student.id,
            coach_id=session.coach_id,
        )
        registration.relation_id = relation.id if relation is not None else None
        registration.status = (RegistrationStatus.CONFIRMED if confirmed else RegistrationStatus.PENDING).value
        registration.payment_mode = session.price_mode
        registration.lesson_deducted = 0
        registration.check_in_status = CheckInStatus.NONE.value
        registration.remark = remark
        registration.registered_at = now
        registration.confirmed_at = now if confirmed else None
        registration.cancelled_at = None
        registration.checked_in_at = None
        if existing is None:
            self.db.add(registration)
        if confirmed:
            session.current_count += 1
        await self.db.flush()

        log.info(f"Student {student.id} registered for group session {session.id} "
                 f"({'confirmed' if confirmed else 'pending'}).")
        self.notifier.notify_after_commit(self.db, NotificationEvent.GROUP_REGISTERED, {
            "group_session_id": session.id, "student_id": student.id, "status": registration.status,
        })
        return registration

    async def confirm_registration(self, registration_id: UUID, coach: db_models.Users) -> db_models.GroupCourseRegistrations:
        registration, session = await self._registration_with_session(registration_id, coach)
        if registration.status == RegistrationStatus.CONFIRMED.value:
            raise AlreadyInStateError("The registration is already confirmed.", reason="registration_already_confirmed")
        if registration.status != RegistrationStatus.PENDING.value:
            raise ConflictError("Only a pending registration can be confirmed.", reason="registration_not_pending")
        if not can_enroll(session):
            raise ConflictError("The session is full or no longer open.", reason="group_session_full")

        registration.status = RegistrationStatus.CONFIRMED.value
        registration.confirmed_at = self.clock.now()
        session.current_count += 1
        await self.db.flush()
        log.info(f"Coach {coach.id} confirmed registration {registration.id}.")
        self.notifier.notify_after_commit(self.db, NotificationEvent.GROUP_REGISTRATION_CONFIRMED, {
            "registration_id": registration.id, "student_id": registration.student_id,
        })
        return registration

    async def reject_registration(self, registration_id: UUID, coach: db_models.Users) -> db_models.GroupCourseRegistrations:
        registration, _ = await self._registration_with_session(registration_id, coach)
        if registration.status != RegistrationStatus.PENDING.value:
            raise ConflictError("Only a pending registration can be rejected.", reason="registration_not_pending")
        registration.status = RegistrationStatus.REJECTED.value
        registration.cancelled_at = self.clock.now()
        await self.db.flush()
        self.notifier.notify_after_commit(self.db, NotificationEvent.GROUP_REGISTRATION_REJECTED, {
            "registration_id": registration.id, "student_id": registration.student_id,
        })
        return registration

    @retry_on_lock_failure
    async def cancel_registration(self, registration_id: UUID, user: db_models.Users) -> db_models.GroupCourseRegistrations:
        registration, session = await self._registration_with_session(registration_id)
        if user.id not in (registration.student_id, session.coach_id):
            log.warning(f"SECURITY: User {user.id} tried to cancel registration {registration.id}.")
            raise ForbiddenError("You cannot cancel this registration.", reason="not_registration_party")
        if registration.status in (RegistrationStatus.CANCELLED.value, RegistrationStatus.REJECTED.value):
            raise AlreadyInStateError("The registration is already cancelled.", reason="registration_already_cancelled")
        if registration.status == RegistrationStatus.COMPLETED.value:
            raise ConflictError("A checked-in registration cannot be cancelled.", reason="registration_completed")

        if registration.status == RegistrationStatus.CONFIRMED.value:
            session.current_count = max(0, session.current_count - 1)
        registration.status = RegistrationStatus.CANCELLED.value
        registration.cancelled_at = self.clock.now()
        await self.db.flush()
        log.info(f"User {user.id} cancelled registration {registration.id}; session count {session.current_count}.")
        return registration

    @retry_on_lock_failure
    async def check_in(self, registration_id: UUID, coach: db_models.Users) -> db_models.GroupCourseRegistrations:
        """
        Marks the student present and debits `lesson_cost` for credit
        registrations, in the same transaction.
        """
        registration, session = await self._registration_with_session(registration_id, coach)
        self._ensure_attendance_allowed(session)
        if registration.status != RegistrationStatus.CONFIRMED.value:
            raise ConflictError("Only a confirmed registration can be checked in.", reason="registration_not_confirmed")
        if registration.check_in_status != CheckInStatus.NONE.value:
            raise AlreadyInStateError("Attendance was already recorded.", reason="attendance_already_recorded")

        deducted = 0
        if (registration.payment_mode == PriceMode.CREDIT.value
                and registration.relation_id is not None and session.lesson_cost > 0):
            await self.ledger.decrease(registration.relation_id, session.category_id, session.lesson_cost)
            deducted = session.lesson_cost

        registration.lesson_deducted = deducted
        registration.check_in_status = CheckInStatus.CHECKED_IN.value
        registration.status = RegistrationStatus.COMPLETED.value
        registration.checked_in_at = self.clock.now()
        await self.db.flush()
        log.info(f"Coach {coach.id} checked in registration {registration.id}; {deducted} lessons debited.")
        return registration

    async def mark_absent(self, registration_id: UUID, coach: db_models.Users) -> db_models.GroupCourseRegistrations:
        registration, session = await self._registration_with_session(registration_id, coach)
        self._ensure_attendance_allowed(session)
        if registration.status != RegistrationStatus.CONFIRMED.value:
            raise ConflictError("Only a confirmed registration can be marked absent.", reason="registration_not_confirmed")
        if registration.check_in_status != CheckInStatus.NONE.value:
            raise AlreadyInStateError("Attendance was already recorded.", reason="attendance_already_recorded")
        registration.check_in_status = CheckInStatus.ABSENT.value
        await self.db.flush()
        return registration

    @retry_on_lock_failure
    async def undo_check_in(self, registration_id: UUID, coach: db_models.Users) -> db_models.GroupCourseRegistrations:
        """
        Reverts attendance. A check-in that debited lessons is refunded
        through the ledger.
        """
        registration, session = await self._registration_with_session(registration_id, coach)
        if registration.check_in_status == CheckInStatus.NONE.value:
            raise AlreadyInStateError("No attendance recorded for this registration.", reason="attendance_not_recorded")

        if registration.check_in_status == CheckInStatus.CHECKED_IN.value and registration.lesson_deducted > 0:
            await self.ledger.increase(
                registration.relation_id, session.category_id, registration.lesson_deducted, actor_id=coach.id
            )
        registration.lesson_deducted = 0
        registration.check_in_status = CheckInStatus.NONE.value
        registration.status = RegistrationStatus.CONFIRMED.value
        registration.checked_in_at = None
        await self.db.flush()
        log.info(f"Coach {coach.id} reverted attendance on registration {registration.id}.")
        return registration

    @staticmethod
    def _ensure_attendance_allowed(session: db_models.GroupCourses) -> None:
        cancelled = session.status == GroupSessionStatus.ENDED.value and session.completed_at is None
        if session.status == GroupSessionStatus.DRAFT.value or cancelled:
            raise ConflictError("Attendance can't be recorded for this session.", reason="group_session_not_running")

    # --- 5. Shortfall (sweeper) ---

    def _lookahead_bounds(self) -> tuple[datetime, datetime]:
        now_local = self.clock.local_now(settings.DEFAULT_TIMEZONE).replace(tzinfo=None)
        return now_local, now_local + timedelta(minutes=settings.GROUP_SESSION_LOOKAHEAD_MINUTES)

    @staticmethod
    def _starts_within(model, lower: datetime, upper: datetime):
        """(course_date, start_time) in (lower, upper]."""
        after_lower = or_(
            model.course_date > lower.date(),
            and_(model.course_date == lower.date(), model.start_time > lower.time()),
        )
        before_upper = or_(
            model.course_date < upper.date(),
            and_(model.course_date == upper.date(), model.start_time <= upper.time()),
        )
        return and_(after_lower, before_upper)

    async def find_shortfall_candidates(self, limit: int = 500) -> list[UUID]:
        lower, upper = self._lookahead_bounds()
        stmt = select(db_models.GroupCourses.id).where(
            db_models.GroupCourses.status == GroupSessionStatus.OPEN.value,
            db_models.GroupCourses.current_count < db_models.GroupCourses.capacity_min,
            self._starts_within(db_models.GroupCourses, lower, upper),
        ).limit(limit)
        return list((await self.db.execute(stmt)).scalars().all())

    async def end_if_undersubscribed(self, session_id: UUID) -> bool:
        """
        Ends one open session that starts inside the lookahead window without
        enough participants. Conditional update; returns True on transition.
        """
        lower, upper = self._lookahead_bounds()
        stmt = (
            update(db_models.GroupCourses)
            .where(
                db_models.GroupCourses.id == session_id,
                db_models.GroupCourses.status == GroupSessionStatus.OPEN.value,
                db_models.GroupCourses.current_count < db_models.GroupCourses.capacity_min,
                self._starts_within(db_models.GroupCourses, lower, upper),
            )
            .values(
                status=GroupSessionStatus.ENDED.value,
                cancelled_at=self.clock.now(),
                cancel_reason=INSUFFICIENT_PARTICIPANTS,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        if result.rowcount != 1:
            return False

        session = await self._get_session(session_id)
        await self.db.refresh(session)
        participants = session.current_count
        # the conditional update holds the row lock until commit
        await self._close_registrations(session)
        await self.db.flush()
        log.info(f"Group session {session_id} ended: {INSUFFICIENT_PARTICIPANTS} "
                 f"({participants}/{session.capacity_min}).")
        self.notifier.notify_after_commit(self.db, NotificationEvent.GROUP_SESSION_ENDED, {
            "group_session_id": session_id, "reason": INSUFFICIENT_PARTICIPANTS,
        })
        return True
