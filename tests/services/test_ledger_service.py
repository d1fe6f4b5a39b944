import pytest
from pprint import pprint
from sqlalchemy.ext.asyncio import AsyncSession

from src.coach_booking_backend.database import models as db_models
from src.coach_booking_backend.database.db_enums import BookingStatus, OperationType, RegistrationStatus
from src.coach_booking_backend.common.exceptions import (
    ConflictError, InsufficientCreditError, NotFoundError, ValidationFailedError
)
from src.coach_booking_backend.services.audit_service import OperationLogService
from src.coach_booking_backend.services.ledger_service import CreditLedgerService

from tests.constants import TODAY, YESTERDAY, STARTING_BALANCE, UNKNOWN_ID
from tests.database.factories import (
    persist, AddressFactory, BalanceFactory, BookingFactory, GroupSessionFactory, RegistrationFactory
)


@pytest.mark.anyio
class TestLedgerReads:

    async def test_available_is_remaining(
        self,
        ledger_service: CreditLedgerService,
        balance: db_models.CategoryBalances
    ):
        available = await ledger_service.get_available(balance.relation_id, 0)
        assert available == STARTING_BALANCE

    async def test_unknown_category_is_not_found(
        self,
        ledger_service: CreditLedgerService,
        balance: db_models.CategoryBalances
    ):
        with pytest.raises(NotFoundError) as e:
            await ledger_service.get_available(balance.relation_id, 42)
        assert e.value.reason == "category_not_found"

    async def test_unknown_relation_is_not_found(self, ledger_service: CreditLedgerService):
        with pytest.raises(NotFoundError) as e:
            await ledger_service.get_available(UNKNOWN_ID, 0)
        assert e.value.reason == "relation_not_found"

    async def test_open_bookings_are_occupied(
        self,
        db_session: AsyncSession,
        ledger_service: CreditLedgerService,
        relation: db_models.StudentCoachRelations,
        balance: db_models.CategoryBalances
    ):
        address = await persist(db_session, AddressFactory.build(user_id=relation.coach_id))
        common = dict(student_id=relation.student_id, coach_id=relation.coach_id,
                      relation_id=relation.id, address_id=address.id)
        await persist(
            db_session,
            BookingFactory.build(status=BookingStatus.PENDING.value, **common),
            BookingFactory.build(status=BookingStatus.CONFIRMED.value, **common),
            BookingFactory.build(status=BookingStatus.CANCELLED.value, **common),
            BookingFactory.build(status=BookingStatus.COMPLETED.value, **common),
        )

        occupied = await ledger_service.get_occupied(relation.id, 0)
        bookable = await ledger_service.get_available_for_booking(relation.id, 0)
        print(f"occupied={occupied} bookable={bookable}")

        assert occupied == 2
        assert bookable == STARTING_BALANCE - 2

    async def test_group_registrations_reserve_lesson_cost(
        self,
        db_session: AsyncSession,
        ledger_service: CreditLedgerService,
        relation: db_models.StudentCoachRelations,
        balance: db_models.CategoryBalances
    ):
        session = await persist(db_session, GroupSessionFactory.build(coach_id=relation.coach_id, lesson_cost=2))
        await persist(db_session, RegistrationFactory.build(
            group_course_id=session.id, student_id=relation.student_id,
            coach_id=relation.coach_id, relation_id=relation.id,
            status=RegistrationStatus.PENDING.value,
        ))

        assert await ledger_service.get_occupied(relation.id, 0) == 2
        assert await ledger_service.get_available_for_booking(relation.id, 0) == STARTING_BALANCE - 2

    async def test_bookable_never_negative(
        self,
        db_session: AsyncSession,
        ledger_service: CreditLedgerService,
        relation: db_models.StudentCoachRelations
    ):
        await persist(db_session, BalanceFactory.build(relation_id=relation.id, category_id=0, remaining=0))
        address = await persist(db_session, AddressFactory.build(user_id=relation.coach_id))
        await persist(db_session, BookingFactory.build(
            student_id=relation.student_id, coach_id=relation.coach_id,
            relation_id=relation.id, address_id=address.id,
        ))
        assert await ledger_service.get_available_for_booking(relation.id, 0) == 0


@pytest.mark.anyio
class TestLazyExpiry:

    async def test_expired_balance_is_cleared_once(
        self,
        db_session: AsyncSession,
        ledger_service: CreditLedgerService,
        audit_service: OperationLogService,
        relation: db_models.StudentCoachRelations
    ):
        """remaining=3 expiring yesterday reads as 0, with one audit record no matter how often it's read."""
        balance = await persist(db_session, BalanceFactory.build(
            relation_id=relation.id, category_id=0, remaining=3, expire_date=YESTERDAY
        ))

        first = await ledger_service.get_available(relation.id, 0)
        assert first == 0
        assert balance.is_cleared is True
        assert balance.original_before_clear == 3

        second = await ledger_service.get_available(relation.id, 0)
        assert second == 0

        entries = await audit_service.list_for_record("category_balances", balance.id)
        pprint([(e.operation_type, e.old_data, e.new_data) for e in entries])
        assert len(entries) == 1
        assert entries[0].operation_type == OperationType.LESSON_EXPIRE.value
        assert entries[0].old_data["remaining"] == 3

    async def test_balance_is_usable_through_its_expiry_day(
        self,
        db_session: AsyncSession,
        ledger_service: CreditLedgerService,
        relation: db_models.StudentCoachRelations
    ):
        balance = await persist(db_session, BalanceFactory.build(
            relation_id=relation.id, category_id=0, remaining=3, expire_date=TODAY
        ))
        assert await ledger_service.get_available(relation.id, 0) == 3
        assert balance.is_cleared is False

    async def test_expiry_uses_relation_timezone(
        self,
        db_session: AsyncSession,
        ledger_service: CreditLedgerService,
        relation: db_models.StudentCoachRelations
    ):
        """02:00 UTC on TODAY is still YESTERDAY in Los Angeles."""
        relation.timezone = "America/Los_Angeles"
        await persist(db_session, BalanceFactory.build(
            relation_id=relation.id, category_id=0, remaining=2, expire_date=YESTERDAY
        ))
        assert await ledger_service.get_available(relation.id, 0) == 2

    async def test_clear_if_expired_by_id(
        self,
        db_session: AsyncSession,
        ledger_service: CreditLedgerService,
        relation: db_models.StudentCoachRelations
    ):
        balance = await persist(db_session, BalanceFactory.build(
            relation_id=relation.id, category_id=0, remaining=4, expire_date=YESTERDAY
        ))
        assert balance.id in await ledger_service.find_expiry_candidates()
        assert await ledger_service.clear_if_expired(balance.id) is True
        assert await ledger_service.clear_if_expired(balance.id) is False
        assert balance.id not in await ledger_service.find_expiry_candidates()


@pytest.mark.anyio
class TestLedgerMutations:

    async def test_decrease(
        self,
        ledger_service: CreditLedgerService,
        relation: db_models.StudentCoachRelations,
        balance: db_models.CategoryBalances
    ):
        remaining = await ledger_service.decrease(relation.id, 0, 2)
        assert remaining == STARTING_BALANCE - 2
        assert balance.remaining == STARTING_BALANCE - 2
        assert relation.last_course_time is not None

    async def test_decrease_beyond_balance_fails_and_keeps_it(
        self,
        ledger_service: CreditLedgerService,
        relation: db_models.StudentCoachRelations,
        balance: db_models.CategoryBalances
    ):
        with pytest.raises(InsufficientCreditError) as e:
            await ledger_service.decrease(relation.id, 0, STARTING_BALANCE + 1)
        assert e.value.reason == "insufficient_credit"
        assert balance.remaining == STARTING_BALANCE

    @pytest.mark.parametrize("count", [0, -1])
    async def test_non_positive_counts_rejected(
        self,
        count: int,
        ledger_service: CreditLedgerService,
        relation: db_models.StudentCoachRelations,
        balance: db_models.CategoryBalances
    ):
        with pytest.raises(ValidationFailedError):
            await ledger_service.decrease(relation.id, 0, count)
        with pytest.raises(ValidationFailedError):
            await ledger_service.increase(relation.id, 0, count)

    async def test_increase_refunds_and_audits(
        self,
        ledger_service: CreditLedgerService,
        audit_service: OperationLogService,
        relation: db_models.StudentCoachRelations,
        balance: db_models.CategoryBalances
    ):
        remaining = await ledger_service.increase(relation.id, 0, 2, actor_id=relation.coach_id)
        assert remaining == STARTING_BALANCE + 2

        entries = await audit_service.list_for_record("category_balances", balance.id)
        assert [e.operation_type for e in entries] == [OperationType.LESSON_REFUND.value]

    async def test_refund_into_cleared_category_is_forfeited(
        self,
        db_session: AsyncSession,
        ledger_service: CreditLedgerService,
        audit_service: OperationLogService,
        relation: db_models.StudentCoachRelations
    ):
        balance = await persist(db_session, BalanceFactory.build(
            relation_id=relation.id, category_id=0, remaining=3, expire_date=YESTERDAY
        ))
        remaining = await ledger_service.increase(relation.id, 0, 1)
        assert remaining == 0

        entries = await audit_service.list_for_record("category_balances", balance.id)
        assert [e.operation_type for e in entries] == [
            OperationType.LESSON_EXPIRE.value, OperationType.LESSON_REFUND.value
        ]

    async def test_add_category_is_idempotent(
        self,
        ledger_service: CreditLedgerService,
        relation: db_models.StudentCoachRelations
    ):
        first = await ledger_service.add_category(relation.id, 3)
        second = await ledger_service.add_category(relation.id, 3)
        assert first.id == second.id
        assert first.remaining == 0

    async def test_remove_category_rules(
        self,
        ledger_service: CreditLedgerService,
        relation: db_models.StudentCoachRelations,
        balance: db_models.CategoryBalances
    ):
        with pytest.raises(ValidationFailedError) as e:
            await ledger_service.remove_category(relation.id, 0)
        assert e.value.reason == "default_category_locked"

        extra = await ledger_service.add_category(relation.id, 1)
        extra.remaining = 2
        with pytest.raises(ConflictError) as e:
            await ledger_service.remove_category(relation.id, 1)
        assert e.value.reason == "category_not_empty"

        extra.remaining = 0
        await ledger_service.remove_category(relation.id, 1)
        with pytest.raises(NotFoundError):
            await ledger_service.get_available(relation.id, 1)

    async def test_adjust_rearms_cleared_balance(
        self,
        db_session: AsyncSession,
        ledger_service: CreditLedgerService,
        audit_service: OperationLogService,
        relation: db_models.StudentCoachRelations
    ):
        balance = await persist(db_session, BalanceFactory.build(
            relation_id=relation.id, category_id=0, remaining=3, expire_date=YESTERDAY
        ))
        assert await ledger_service.get_available(relation.id, 0) == 0

        adjusted = await ledger_service.adjust_balance(relation.id, 0, 8, None, actor_id=relation.coach_id)
        assert adjusted.remaining == 8
        assert adjusted.is_cleared is False
        assert adjusted.original_before_clear == 3
        assert await ledger_service.get_available(relation.id, 0) == 8

        entries = await audit_service.list_for_record("category_balances", balance.id)
        assert [e.operation_type for e in entries] == [
            OperationType.LESSON_EXPIRE.value, OperationType.LESSON_ADJUST.value
        ]

    async def test_adjust_with_past_expiry_clears_right_away(
        self,
        ledger_service: CreditLedgerService,
        relation: db_models.StudentCoachRelations,
        balance: db_models.CategoryBalances
    ):
        adjusted = await ledger_service.adjust_balance(relation.id, 0, 6, YESTERDAY)
        assert adjusted.remaining == 0
        assert adjusted.is_cleared is True
