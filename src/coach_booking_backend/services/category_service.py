'''
Coach-defined course categories.
Every relationship of a coach carries one balance per category the coach
currently defines; this service keeps the two in step.
'''
from typing import Annotated, Optional
from uuid import UUID
from fastapi import Depends
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from ..database.engine import get_db_session
from ..database import models as db_models
from ..database.db_enums import OperationType
from ..common.exceptions import ConflictError, NotFoundError, ValidationFailedError
from ..common.logger import log
from .ledger_service import CreditLedgerService, DEFAULT_CATEGORY_ID


class CategoryService:
    def __init__(
        self,
        db: Annotated[AsyncSession, Depends(get_db_session)],
        ledger: Annotated[CreditLedgerService, Depends(CreditLedgerService)]
    ):
        self.db = db
        self.ledger = ledger

    async def ensure_default_category(self, coach_id: UUID) -> db_models.CourseCategories:
        existing = await self.find_category(coach_id, DEFAULT_CATEGORY_ID)
        if existing is not None:
            return existing
        category = db_models.CourseCategories(
            coach_id=coach_id,
            category_id=DEFAULT_CATEGORY_ID,
            name="Default",
        )
        self.db.add(category)
        await self.db.flush()
        log.info(f"Created default category for coach {coach_id}.")
        return category

    async def find_category(self, coach_id: UUID, category_id: int) -> Optional[db_models.CourseCategories]:
        stmt = select(db_models.CourseCategories).where(
            db_models.CourseCategories.coach_id == coach_id,
            db_models.CourseCategories.category_id == category_id,
        )
        return (await self.db.execute(stmt)).scalars().first()

    async def get_category(self, coach_id: UUID, category_id: int) -> db_models.CourseCategories:
        category = await self.find_category(coach_id, category_id)
        if category is None:
            log.warning(f"Category {category_id} not found for coach {coach_id}.")
            raise NotFoundError("Course category not found.", reason="category_not_found", category_id=category_id)
        return category

    async def list_categories(self, coach_id: UUID) -> list[db_models.CourseCategories]:
        await self.ensure_default_category(coach_id)
        stmt = select(db_models.CourseCategories).where(
            db_models.CourseCategories.coach_id == coach_id
        ).order_by(db_models.CourseCategories.category_id)
        return list((await self.db.execute(stmt)).scalars().all())

    async def _coach_relation_ids(self, coach_id: UUID, active_only: bool) -> list[UUID]:
        stmt = select(db_models.StudentCoachRelations.id).where(
            db_models.StudentCoachRelations.coach_id == coach_id
        )
        if active_only:
            stmt = stmt.where(db_models.StudentCoachRelations.is_active.is_(True))
        return list((await self.db.execute(stmt)).scalars().all())

    async def create_category(
        self, coach: db_models.Users, name: str, description: Optional[str] = None
    ) -> db_models.CourseCategories:
        """
        Adds a category and a zero balance for it on every active relationship.
        """
        name = (name or "").strip()
        if not name:
            raise ValidationFailedError("Category name is required.", reason="category_name_required")

        await self.ensure_default_category(coach.id)
        stmt = select(func.max(db_models.CourseCategories.category_id)).where(
            db_models.CourseCategories.coach_id == coach.id
        )
        next_id = ((await self.db.execute(stmt)).scalar_one() or 0) + 1

        category = db_models.CourseCategories(
            coach_id=coach.id, category_id=next_id, name=name, description=description
        )
        self.db.add(category)
        await self.db.flush()

        relation_ids = await self._coach_relation_ids(coach.id, active_only=True)
        for relation_id in relation_ids:
            await self.ledger.add_category(relation_id, next_id)
        await self.ledger.audit.record(
            OperationType.CATEGORY_ADD,
            table_name="course_categories",
            record_id=category.id,
            new_data={"category_id": next_id, "name": name, "relations": len(relation_ids)},
            user_id=coach.id,
            actor="coach",
        )
        log.info(f"Coach {coach.id} created category {next_id} across {len(relation_ids)} relations.")
        return category

    async def update_category(
        self, coach: db_models.Users, category_id: int, name: Optional[str], description: Optional[str]
    ) -> db_models.CourseCategories:
        category = await self.get_category(coach.id, category_id)
        if name is not None:
            if not name.strip():
                raise ValidationFailedError("Category name is required.", reason="category_name_required")
            category.name = name.strip()
        if description is not None:
            category.description = description
        await self.db.flush()
        return category

    async def delete_category(self, coach: db_models.Users, category_id: int) -> None:
        """
        Deletes a category. Refused for the default category and while any
        relationship still holds lessons in it.
        """
        if category_id == DEFAULT_CATEGORY_ID:
            raise ValidationFailedError("The default category cannot be removed.", reason="default_category_locked")
        category = await self.get_category(coach.id, category_id)

        relation_ids = await self._coach_relation_ids(coach.id, active_only=False)
        # check everything first so a refusal leaves no balance removed
        for relation_id in relation_ids:
            try:
                remaining = await self.ledger.get_available(relation_id, category_id)
            except NotFoundError:
                continue
            if remaining > 0:
                raise ConflictError(
                    "Some students still have lessons in this category.",
                    reason="category_not_empty",
                    relation_id=relation_id,
                    remaining=remaining,
                )

        for relation_id in relation_ids:
            try:
                await self.ledger.remove_category(relation_id, category_id)
            except NotFoundError:
                continue

        await self.db.delete(category)
        await self.db.flush()
        await self.ledger.audit.record(
            OperationType.CATEGORY_REMOVE,
            table_name="course_categories",
            record_id=category.id,
            old_data={"category_id": category_id, "name": category.name},
            user_id=coach.id,
            actor="coach",
        )
        log.info(f"Coach {coach.id} deleted category {category_id}.")
