import asyncio
import pytest
from datetime import time
from pprint import pprint
from unittest.mock import AsyncMock
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from src.coach_booking_backend.database import models as db_models
from src.coach_booking_backend.database.db_enums import (
    BookingStatus, CardStatus, GroupSessionStatus, NotificationEvent, RegistrationStatus
)
from src.coach_booking_backend.common.exceptions import ForbiddenError
from src.coach_booking_backend.models.sweep import SweepResult
from src.coach_booking_backend.services.booking_service import BookingService, TIMEOUT_CANCEL_REASON
from src.coach_booking_backend.services.notification_service import NotificationService
from src.coach_booking_backend.services.sweeper_service import TimeoutSweeper

from tests.constants import TODAY, YESTERDAY
from tests.database.factories import (
    persist, BalanceFactory, BookingFactory, CardInstanceFactory, CardTemplateFactory, GroupSessionFactory,
    RegistrationFactory
)


@pytest.fixture
async def stale_world(
    db_session: AsyncSession,
    relation: db_models.StudentCoachRelations,
    address: db_models.Addresses
) -> dict:
    """
    One row of every kind the sweep should move, committed. The short
    session holds one confirmed place; `started` has begun already and must
    be left alone.
    """
    coach_id = relation.coach_id
    template = await persist(db_session, CardTemplateFactory.build(coach_id=coach_id))
    world = dict(
        booking=BookingFactory.build(
            student_id=relation.student_id, coach_id=coach_id, relation_id=relation.id,
            address_id=address.id, course_date=TODAY,
        ),
        card=CardInstanceFactory.build(
            template_id=template.id, student_id=relation.student_id, coach_id=coach_id,
            relation_id=relation.id, card_status=CardStatus.ACTIVE.value, expire_date=YESTERDAY,
        ),
        session=GroupSessionFactory.build(
            coach_id=coach_id, course_date=TODAY, start_time=time(10, 30), end_time=time(11, 30),
            capacity_min=3, current_count=1,
        ),
        started=GroupSessionFactory.build(
            coach_id=coach_id, course_date=TODAY, start_time=time(9, 30), end_time=time(10, 30),
            capacity_min=3,
        ),
        balance=BalanceFactory.build(relation_id=relation.id, category_id=0, remaining=3, expire_date=YESTERDAY),
    )
    await persist(db_session, *world.values())
    world["registration"] = await persist(db_session, RegistrationFactory.build(
        group_course_id=world["session"].id, student_id=relation.student_id,
        coach_id=coach_id, relation_id=relation.id,
    ))
    await db_session.commit()
    return world


@pytest.mark.anyio
class TestSweepPass:

    async def test_one_pass_moves_everything(
        self,
        db_session: AsyncSession,
        sweeper: TimeoutSweeper,
        notifier: NotificationService,
        stale_world: dict
    ):
        result = await sweeper.run_sweep_once()
        pprint(result.model_dump())

        assert result == SweepResult(bookings_timed_out=1, cards_expired=1, sessions_ended=1, lessons_cleared=1)

        for obj in stale_world.values():
            await db_session.refresh(obj)
        assert stale_world["booking"].status == BookingStatus.TIMEOUT_CANCELLED.value
        assert stale_world["booking"].cancel_reason == TIMEOUT_CANCEL_REASON
        assert stale_world["card"].card_status == CardStatus.EXPIRED.value
        assert stale_world["session"].status == GroupSessionStatus.ENDED.value
        assert stale_world["session"].current_count == 0
        assert stale_world["registration"].status == RegistrationStatus.CANCELLED.value
        assert stale_world["started"].status == GroupSessionStatus.OPEN.value
        assert stale_world["balance"].remaining == 0
        assert stale_world["balance"].is_cleared is True

        # booking timeout and session end, each after its commit
        kinds = [call.args[0] for call in notifier.sender.await_args_list]
        assert kinds == [NotificationEvent.BOOKING_TIMEOUT.value, NotificationEvent.GROUP_SESSION_ENDED.value]

    async def test_second_pass_is_a_no_op(
        self,
        sweeper: TimeoutSweeper,
        stale_world: dict
    ):
        await sweeper.run_sweep_once()
        assert await sweeper.run_sweep_once() == SweepResult()

    async def test_nothing_to_do(self, sweeper: TimeoutSweeper, db_session: AsyncSession, balance):
        await db_session.commit()
        assert await sweeper.run_sweep_once() == SweepResult()

    async def test_failing_row_is_counted_and_skipped(
        self,
        mocker,
        sweeper: TimeoutSweeper,
        stale_world: dict
    ):
        mocker.patch.object(BookingService, "timeout_if_stale", AsyncMock(side_effect=RuntimeError("boom")))

        result = await sweeper.run_sweep_once()
        assert result.bookings_timed_out == 0
        assert result.failures == 1
        # the other steps still ran
        assert result.cards_expired == 1
        assert result.sessions_ended == 1
        assert result.lessons_cleared == 1

    async def test_failed_commit_sends_no_notification(
        self,
        mocker,
        db_session: AsyncSession,
        sweeper: TimeoutSweeper,
        notifier: NotificationService,
        stale_world: dict
    ):
        mocker.patch.object(
            AsyncSession, "commit", AsyncMock(side_effect=OperationalError("COMMIT", {}, Exception("disk I/O error")))
        )

        result = await sweeper.run_sweep_once()
        assert result.bookings_timed_out == 0
        assert result.sessions_ended == 0
        assert result.failures == 4
        notifier.sender.assert_not_awaited()

        await db_session.refresh(stale_world["booking"])
        assert stale_world["booking"].status == BookingStatus.PENDING.value


    async def test_manual_sweep_is_for_operators(
        self,
        mocker,
        sweeper: TimeoutSweeper,
        coach: db_models.Users
    ):
        run_once = mocker.patch.object(sweeper, "run_sweep_once", AsyncMock(return_value=SweepResult()))

        with pytest.raises(ForbiddenError) as e:
            await sweeper.run_manual_sweep(coach)
        assert e.value.reason == "operator_only"
        run_once.assert_not_awaited()

        coach.is_operator = True
        assert await sweeper.run_manual_sweep(coach) == SweepResult()
        run_once.assert_awaited_once()


@pytest.mark.anyio
class TestSweepLoop:

    async def test_start_runs_a_pass_and_stop_ends_the_task(
        self,
        mocker,
        sweeper: TimeoutSweeper
    ):
        run_once = mocker.patch.object(sweeper, "run_sweep_once", AsyncMock(return_value=SweepResult()))

        sweeper.start()
        await asyncio.sleep(0.05)
        await sweeper.stop()

        assert run_once.await_count >= 1
        assert sweeper._task is None

    async def test_a_failing_pass_does_not_stop_the_loop(
        self,
        mocker,
        sweeper: TimeoutSweeper
    ):
        sweeper.interval_seconds = 0.01
        run_once = mocker.patch.object(
            sweeper, "run_sweep_once", AsyncMock(side_effect=[RuntimeError("db down"), SweepResult(), SweepResult()])
        )

        sweeper.start()
        for _ in range(50):
            if run_once.await_count >= 2:
                break
            await asyncio.sleep(0.01)
        await sweeper.stop()

        assert run_once.await_count >= 2
