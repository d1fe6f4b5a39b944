import pytest

from src.coach_booking_backend.database import models as db_models
from src.coach_booking_backend.database.db_enums import OperationType
from src.coach_booking_backend.common.exceptions import ConflictError, NotFoundError, ValidationFailedError
from src.coach_booking_backend.services.audit_service import OperationLogService
from src.coach_booking_backend.services.category_service import CategoryService
from src.coach_booking_backend.services.ledger_service import CreditLedgerService


@pytest.mark.anyio
class TestCategories:

    async def test_default_category_is_created_lazily(
        self,
        category_service: CategoryService,
        outsider: db_models.Users
    ):
        categories = await category_service.list_categories(outsider.id)
        assert [(c.category_id, c.name) for c in categories] == [(0, "Default")]

        again = await category_service.ensure_default_category(outsider.id)
        assert again.id == categories[0].id

    async def test_create_adds_zero_balance_to_active_relations(
        self,
        category_service: CategoryService,
        ledger_service: CreditLedgerService,
        audit_service: OperationLogService,
        coach: db_models.Users,
        relation: db_models.StudentCoachRelations,
        other_relation: db_models.StudentCoachRelations
    ):
        other_relation.is_active = False

        category = await category_service.create_category(coach, "  Tennis ")
        assert category.category_id == 1
        assert category.name == "Tennis"

        assert await ledger_service.get_available(relation.id, 1) == 0
        with pytest.raises(NotFoundError):
            await ledger_service.get_available(other_relation.id, 1)

        entries = await audit_service.list_for_record("course_categories", category.id)
        assert [e.operation_type for e in entries] == [OperationType.CATEGORY_ADD.value]

    async def test_blank_name_is_rejected(self, category_service: CategoryService, coach: db_models.Users):
        with pytest.raises(ValidationFailedError):
            await category_service.create_category(coach, "   ")

    async def test_rename(
        self,
        category_service: CategoryService,
        coach: db_models.Users,
        default_category: db_models.CourseCategories
    ):
        renamed = await category_service.update_category(coach, 0, "Private lessons", None)
        assert renamed.name == "Private lessons"

    async def test_delete_rules(
        self,
        category_service: CategoryService,
        ledger_service: CreditLedgerService,
        coach: db_models.Users,
        relation: db_models.StudentCoachRelations
    ):
        with pytest.raises(ValidationFailedError) as e:
            await category_service.delete_category(coach, 0)
        assert e.value.reason == "default_category_locked"

        await category_service.create_category(coach, "Tennis")
        balance = await ledger_service.get_balance(relation.id, 1)
        balance.remaining = 2
        with pytest.raises(ConflictError) as e:
            await category_service.delete_category(coach, 1)
        assert e.value.reason == "category_not_empty"

        balance.remaining = 0
        await category_service.delete_category(coach, 1)
        with pytest.raises(NotFoundError):
            await category_service.get_category(coach.id, 1)
        with pytest.raises(NotFoundError):
            await ledger_service.get_available(relation.id, 1)
