import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from src.coach_booking_backend.database import models as db_models
from src.coach_booking_backend.database.db_enums import BookingStatus
from src.coach_booking_backend.common.exceptions import (
    AlreadyInStateError, ForbiddenError, NotFoundError, ValidationFailedError
)
from src.coach_booking_backend.services.ledger_service import CreditLedgerService
from src.coach_booking_backend.services.relation_service import RelationService

from tests.constants import STARTING_BALANCE, UNKNOWN_ID
from tests.database.factories import persist, BookingFactory, CategoryFactory


@pytest.mark.anyio
class TestBinding:

    async def test_bind_creates_balances_for_every_category(
        self,
        db_session: AsyncSession,
        relation_service: RelationService,
        ledger_service: CreditLedgerService,
        coach: db_models.Users,
        student: db_models.Users
    ):
        await persist(db_session, CategoryFactory.build(coach_id=coach.id, category_id=1, name="Swimming"))

        relation = await relation_service.bind(coach, student.id, coach_remark="Tuesdays")
        assert relation.is_active is True
        assert relation.booking_enabled is True
        assert relation.timezone == "Asia/Shanghai"

        balances = await ledger_service.list_balances(relation.id)
        assert sorted(b.category_id for b in balances) == [0, 1]
        assert all(b.remaining == 0 for b in balances)

    async def test_bind_twice(
        self,
        relation_service: RelationService,
        coach: db_models.Users,
        relation: db_models.StudentCoachRelations
    ):
        with pytest.raises(AlreadyInStateError) as e:
            await relation_service.bind(coach, relation.student_id)
        assert e.value.reason == "relation_exists"

    async def test_bind_rejects_self_and_unknown(
        self,
        relation_service: RelationService,
        coach: db_models.Users
    ):
        with pytest.raises(ValidationFailedError):
            await relation_service.bind(coach, coach.id)
        with pytest.raises(NotFoundError):
            await relation_service.bind(coach, UNKNOWN_ID)

    async def test_bind_rejects_unknown_timezone(
        self,
        relation_service: RelationService,
        coach: db_models.Users,
        student: db_models.Users
    ):
        with pytest.raises(ValidationFailedError) as e:
            await relation_service.bind(coach, student.id, timezone="Mars/Olympus")
        assert e.value.reason == "invalid_timezone"

    async def test_unbind_then_rebind_keeps_ledger(
        self,
        relation_service: RelationService,
        ledger_service: CreditLedgerService,
        coach: db_models.Users,
        student: db_models.Users,
        relation: db_models.StudentCoachRelations,
        balance: db_models.CategoryBalances
    ):
        await relation_service.unbind(relation.id, student)
        assert relation.is_active is False
        assert relation.booking_enabled is False
        with pytest.raises(AlreadyInStateError):
            await relation_service.unbind(relation.id, coach)

        rebound = await relation_service.bind(coach, student.id)
        assert rebound.id == relation.id
        assert rebound.is_active is True
        assert await ledger_service.get_available(relation.id, 0) == STARTING_BALANCE

    async def test_unbind_with_open_booking_is_still_soft(
        self,
        db_session: AsyncSession,
        relation_service: RelationService,
        coach: db_models.Users,
        relation: db_models.StudentCoachRelations,
        address: db_models.Addresses
    ):
        booking = await persist(db_session, BookingFactory.build(
            student_id=relation.student_id, coach_id=relation.coach_id,
            relation_id=relation.id, address_id=address.id,
        ))

        await relation_service.unbind(relation.id, coach)
        assert relation.is_active is False
        assert booking.status == BookingStatus.PENDING.value


@pytest.mark.anyio
class TestRelationSettings:

    async def test_booking_toggle_is_coach_only(
        self,
        relation_service: RelationService,
        coach: db_models.Users,
        student: db_models.Users,
        relation: db_models.StudentCoachRelations
    ):
        with pytest.raises(ForbiddenError):
            await relation_service.set_booking_enabled(relation.id, student, False)

        await relation_service.set_booking_enabled(relation.id, coach, False)
        assert relation.booking_enabled is False
        with pytest.raises(AlreadyInStateError) as e:
            await relation_service.set_booking_enabled(relation.id, coach, False)
        assert e.value.reason == "booking_already_disabled"

    async def test_each_party_edits_their_own_settings(
        self,
        relation_service: RelationService,
        coach: db_models.Users,
        student: db_models.Users,
        relation: db_models.StudentCoachRelations
    ):
        await relation_service.update_settings(relation.id, coach, auto_confirm_by_coach=True, timezone="Europe/Berlin")
        await relation_service.update_settings(relation.id, student, student_remark="prefers mornings")
        assert relation.auto_confirm_by_coach is True
        assert relation.timezone == "Europe/Berlin"
        assert relation.student_remark == "prefers mornings"

        with pytest.raises(ForbiddenError) as e:
            await relation_service.update_settings(relation.id, student, auto_confirm_by_coach=False)
        assert e.value.reason == "coach_only"
        with pytest.raises(ForbiddenError) as e:
            await relation_service.update_settings(relation.id, coach, student_remark="nope")
        assert e.value.reason == "student_only"

    async def test_outsider_sees_nothing(
        self,
        relation_service: RelationService,
        outsider: db_models.Users,
        relation: db_models.StudentCoachRelations,
        balance: db_models.CategoryBalances
    ):
        with pytest.raises(ForbiddenError):
            await relation_service.get_available_credits(relation.id, 0, outsider)
        assert await relation_service.list_relations(outsider) == []


@pytest.mark.anyio
class TestRelationCredits:

    async def test_available_credits(
        self,
        relation_service: RelationService,
        student: db_models.Users,
        relation: db_models.StudentCoachRelations,
        balance: db_models.CategoryBalances
    ):
        credits = await relation_service.get_available_credits(relation.id, 0, student)
        assert credits["available"] == STARTING_BALANCE
        assert credits["available_for_booking"] == STARTING_BALANCE

    async def test_adjust_is_coach_only_and_needs_active_relation(
        self,
        relation_service: RelationService,
        coach: db_models.Users,
        student: db_models.Users,
        relation: db_models.StudentCoachRelations,
        balance: db_models.CategoryBalances
    ):
        with pytest.raises(ForbiddenError):
            await relation_service.adjust_balance(relation.id, student, 0, 99, None)

        adjusted = await relation_service.adjust_balance(relation.id, coach, 0, 12, None)
        assert adjusted.remaining == 12

        relation.is_active = False
        with pytest.raises(ValidationFailedError) as e:
            await relation_service.adjust_balance(relation.id, coach, 0, 1, None)
        assert e.value.reason == "relation_inactive"
