'''
API endpoints for student-coach relationships, their credit balances and
the coach's course categories.
'''
from typing import Annotated, Any, List
from uuid import UUID
from fastapi import APIRouter, Depends, status, Response

from ..database import models as db_models
from ..models import ledger as ledger_models
from ..services.security import verify_token_and_get_user
from ..services.relation_service import RelationService
from ..services.category_service import CategoryService

class RelationsAPI:
    """
    A class to encapsulate relationship and balance endpoints.
    """
    def __init__(self):
        self.router = APIRouter(
            prefix="/relations",
            tags=["Relations"]
        )
        self._register_routes()

    def _register_routes(self):
        """Registers all the API routes for this class."""
        self.router.add_api_route(
                "/",
                self.list_relations,
                methods=["GET"],
                response_model=List[ledger_models.RelationRead])

        self.router.add_api_route(
                "/",
                self.bind,
                methods=["POST"],
                status_code=status.HTTP_201_CREATED,
                response_model=ledger_models.RelationRead)

        self.router.add_api_route(
                "/{relation_id}",
                self.get_relation,
                methods=["GET"],
                response_model=ledger_models.RelationRead)

        self.router.add_api_route(
                "/{relation_id}",
                self.update_settings,
                methods=["PATCH"],
                response_model=ledger_models.RelationRead)

        self.router.add_api_route(
                "/{relation_id}/unbind",
                self.unbind,
                methods=["POST"],
                response_model=ledger_models.RelationRead)

        self.router.add_api_route(
                "/{relation_id}/booking",
                self.set_booking_enabled,
                methods=["POST"],
                response_model=ledger_models.RelationRead)

        self.router.add_api_route(
                "/{relation_id}/credits",
                self.list_balances,
                methods=["GET"],
                response_model=List[ledger_models.BalanceRead])

        self.router.add_api_route(
                "/{relation_id}/credits/{category_id}",
                self.get_available_credits,
                methods=["GET"],
                response_model=ledger_models.AvailableCredits)

        self.router.add_api_route(
                "/{relation_id}/credits/{category_id}",
                self.adjust_balance,
                methods=["PUT"],
                response_model=ledger_models.BalanceRead)

    async def list_relations(
        self,
        current_user: Annotated[db_models.Users, Depends(verify_token_and_get_user)],
        relation_service: Annotated[RelationService, Depends(RelationService)]
    ) -> List[Any]:
        return await relation_service.list_relations(current_user)

    async def bind(
        self,
        bind_data: ledger_models.RelationBind,
        current_user: Annotated[db_models.Users, Depends(verify_token_and_get_user)],
        relation_service: Annotated[RelationService, Depends(RelationService)]
    ) -> Any:
        """
        Binds a student to the current user, who acts as the coach.
        """
        return await relation_service.bind(
            current_user, bind_data.student_id, bind_data.coach_remark, bind_data.timezone
        )

    async def get_relation(
        self,
        relation_id: UUID,
        current_user: Annotated[db_models.Users, Depends(verify_token_and_get_user)],
        relation_service: Annotated[RelationService, Depends(RelationService)]
    ) -> Any:
        return await relation_service.get_relation_for_user(relation_id, current_user)

    async def update_settings(
        self,
        relation_id: UUID,
        settings_data: ledger_models.RelationSettingsUpdate,
        current_user: Annotated[db_models.Users, Depends(verify_token_and_get_user)],
        relation_service: Annotated[RelationService, Depends(RelationService)]
    ) -> Any:
        return await relation_service.update_settings(
            relation_id, current_user, **settings_data.model_dump(exclude_unset=True)
        )

    async def unbind(
        self,
        relation_id: UUID,
        current_user: Annotated[db_models.Users, Depends(verify_token_and_get_user)],
        relation_service: Annotated[RelationService, Depends(RelationService)]
    ) -> Any:
        return await relation_service.unbind(relation_id, current_user)

    async def set_booking_enabled(
        self,
        relation_id: UUID,
        toggle: ledger_models.BookingToggle,
        current_user: Annotated[db_models.Users, Depends(verify_token_and_get_user)],
        relation_service: Annotated[RelationService, Depends(RelationService)]
    ) -> Any:
        return await relation_service.set_booking_enabled(relation_id, current_user, toggle.enabled)

    async def list_balances(
        self,
        relation_id: UUID,
        current_user: Annotated[db_models.Users, Depends(verify_token_and_get_user)],
        relation_service: Annotated[RelationService, Depends(RelationService)]
    ) -> List[Any]:
        return await relation_service.list_balances(relation_id, current_user)

    async def get_available_credits(
        self,
        relation_id: UUID,
        category_id: int,
        current_user: Annotated[db_models.Users, Depends(verify_token_and_get_user)],
        relation_service: Annotated[RelationService, Depends(RelationService)]
    ) -> Any:
        """
        Remaining and bookable lessons in one category, after expiry.
        """
        return await relation_service.get_available_credits(relation_id, category_id, current_user)

    async def adjust_balance(
        self,
        relation_id: UUID,
        category_id: int,
        adjust_data: ledger_models.BalanceAdjust,
        current_user: Annotated[db_models.Users, Depends(verify_token_and_get_user)],
        relation_service: Annotated[RelationService, Depends(RelationService)]
    ) -> Any:
        """
        Sets a category balance (top-up). Coach only.
        """
        return await relation_service.adjust_balance(
            relation_id, current_user, category_id, adjust_data.remaining, adjust_data.expire_date
        )


class CategoriesAPI:
    """
    A class to encapsulate the current coach's course categories.
    """
    def __init__(self):
        self.router = APIRouter(
            prefix="/categories",
            tags=["Categories"]
        )
        self._register_routes()

    def _register_routes(self):
        """Registers all the API routes for this class."""
        self.router.add_api_route(
                "/",
                self.list_categories,
                methods=["GET"],
                response_model=List[ledger_models.CategoryRead])

        self.router.add_api_route(
                "/",
                self.create_category,
                methods=["POST"],
                status_code=status.HTTP_201_CREATED,
                response_model=ledger_models.CategoryRead)

        self.router.add_api_route(
                "/{category_id}",
                self.update_category,
                methods=["PATCH"],
                response_model=ledger_models.CategoryRead)

        self.router.add_api_route(
                "/{category_id}",
                self.delete_category,
                methods=["DELETE"],
                status_code=status.HTTP_204_NO_CONTENT)

    async def list_categories(
        self,
        current_user: Annotated[db_models.Users, Depends(verify_token_and_get_user)],
        category_service: Annotated[CategoryService, Depends(CategoryService)]
    ) -> List[Any]:
        await category_service.ensure_default_category(current_user.id)
        return await category_service.list_categories(current_user.id)

    async def create_category(
        self,
        category_data: ledger_models.CategoryCreate,
        current_user: Annotated[db_models.Users, Depends(verify_token_and_get_user)],
        category_service: Annotated[CategoryService, Depends(CategoryService)]
    ) -> Any:
        return await category_service.create_category(current_user, category_data.name, category_data.description)

    async def update_category(
        self,
        category_id: int,
        category_data: ledger_models.CategoryUpdate,
        current_user: Annotated[db_models.Users, Depends(verify_token_and_get_user)],
        category_service: Annotated[CategoryService, Depends(CategoryService)]
    ) -> Any:
        return await category_service.update_category(
            current_user, category_id, category_data.name, category_data.description
        )

    async def delete_category(
        self,
        category_id: int,
        current_user: Annotated[db_models.Users, Depends(verify_token_and_get_user)],
        category_service: Annotated[CategoryService, Depends(CategoryService)]
    ):
        await category_service.delete_category(current_user, category_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

# Instantiate the classes and export their routers
relations_api = RelationsAPI()
router = relations_api.router

categories_api = CategoriesAPI()
categories_router = categories_api.router
