'''
API endpoints for card templates and issued card instances.
'''
from typing import Annotated, Any, List
from uuid import UUID
from fastapi import APIRouter, Depends, status, Response

from ..database import models as db_models
from ..models import card as card_models
from ..services.security import verify_token_and_get_user
from ..services.card_service import CardService, CardTemplateService

class CardTemplatesAPI:
    """
    A class to encapsulate the coach's card template endpoints.
    """
    def __init__(self):
        self.router = APIRouter(
            prefix="/card-templates",
            tags=["Card Templates"]
        )
        self._register_routes()

    def _register_routes(self):
        """Registers all the API routes for this class."""
        self.router.add_api_route(
                "/",
                self.list_templates,
                methods=["GET"],
                response_model=List[card_models.CardTemplateRead])

        self.router.add_api_route(
                "/",
                self.create_template,
                methods=["POST"],
                status_code=status.HTTP_201_CREATED,
                response_model=card_models.CardTemplateRead)

        self.router.add_api_route(
                "/{template_id}",
                self.update_template,
                methods=["PATCH"],
                response_model=card_models.CardTemplateRead)

        self.router.add_api_route(
                "/{template_id}/enable",
                self.enable_template,
                methods=["POST"],
                response_model=card_models.CardTemplateRead)

        self.router.add_api_route(
                "/{template_id}/disable",
                self.disable_template,
                methods=["POST"],
                response_model=card_models.CardTemplateRead)

        self.router.add_api_route(
                "/{template_id}",
                self.delete_template,
                methods=["DELETE"],
                status_code=status.HTTP_204_NO_CONTENT)

    async def list_templates(
        self,
        current_user: Annotated[db_models.Users, Depends(verify_token_and_get_user)],
        template_service: Annotated[CardTemplateService, Depends(CardTemplateService)]
    ) -> List[Any]:
        return await template_service.list_templates(current_user)

    async def create_template(
        self,
        template_data: card_models.CardTemplateCreate,
        current_user: Annotated[db_models.Users, Depends(verify_token_and_get_user)],
        template_service: Annotated[CardTemplateService, Depends(CardTemplateService)]
    ) -> Any:
        return await template_service.create_template(current_user, **template_data.model_dump())

    async def update_template(
        self,
        template_id: UUID,
        template_data: card_models.CardTemplateUpdate,
        current_user: Annotated[db_models.Users, Depends(verify_token_and_get_user)],
        template_service: Annotated[CardTemplateService, Depends(CardTemplateService)]
    ) -> Any:
        return await template_service.update_template(
            template_id, current_user, template_data.model_dump(exclude_unset=True)
        )

    async def enable_template(
        self,
        template_id: UUID,
        current_user: Annotated[db_models.Users, Depends(verify_token_and_get_user)],
        template_service: Annotated[CardTemplateService, Depends(CardTemplateService)]
    ) -> Any:
        return await template_service.set_enabled(template_id, current_user, True)

    async def disable_template(
        self,
        template_id: UUID,
        current_user: Annotated[db_models.Users, Depends(verify_token_and_get_user)],
        template_service: Annotated[CardTemplateService, Depends(CardTemplateService)]
    ) -> Any:
        return await template_service.set_enabled(template_id, current_user, False)

    async def delete_template(
        self,
        template_id: UUID,
        current_user: Annotated[db_models.Users, Depends(verify_token_and_get_user)],
        template_service: Annotated[CardTemplateService, Depends(CardTemplateService)]
    ):
        """
        Deletes a disabled template; soft-deletes it when cards were issued.
        """
        await template_service.delete_template(template_id, current_user)
        return Response(status_code=status.HTTP_204_NO_CONTENT)


class CardsAPI:
    """
    A class to encapsulate card instance endpoints.
    """
    def __init__(self):
        self.router = APIRouter(
            prefix="/cards",
            tags=["Cards"]
        )
        self._register_routes()

    def _register_routes(self):
        """Registers all the API routes for this class."""
        self.router.add_api_route(
                "/",
                self.list_cards,
                methods=["GET"],
                response_model=List[card_models.CardRead])

        self.router.add_api_route(
                "/",
                self.issue_card,
                methods=["POST"],
                status_code=status.HTTP_201_CREATED,
                response_model=card_models.CardRead)

        self.router.add_api_route(
                "/{card_id}",
                self.get_card,
                methods=["GET"],
                response_model=card_models.CardRead)

        self.router.add_api_route(
                "/{card_id}/activate",
                self.activate,
                methods=["POST"],
                response_model=card_models.CardRead)

        self.router.add_api_route(
                "/{card_id}/deactivate",
                self.deactivate,
                methods=["POST"],
                response_model=card_models.CardRead)

        self.router.add_api_route(
                "/{card_id}/reactivate",
                self.reactivate,
                methods=["POST"],
                response_model=card_models.CardRead)

        self.router.add_api_route(
                "/{card_id}",
                self.delete_card,
                methods=["DELETE"],
                status_code=status.HTTP_204_NO_CONTENT)

    async def list_cards(
        self,
        relation_id: UUID,
        current_user: Annotated[db_models.Users, Depends(verify_token_and_get_user)],
        card_service: Annotated[CardService, Depends(CardService)]
    ) -> List[Any]:
        """
        Lists the cards issued on one relationship.
        """
        cards = await card_service.list_cards_for_relation(relation_id, current_user)
        return [await card_service.summarize(card) for card in cards]

    async def issue_card(
        self,
        issue_data: card_models.CardIssue,
        current_user: Annotated[db_models.Users, Depends(verify_token_and_get_user)],
        card_service: Annotated[CardService, Depends(CardService)]
    ) -> Any:
        card = await card_service.issue_card(
            issue_data.template_id, issue_data.student_id, issue_data.relation_id, current_user
        )
        return await card_service.summarize(card)

    async def get_card(
        self,
        card_id: UUID,
        current_user: Annotated[db_models.Users, Depends(verify_token_and_get_user)],
        card_service: Annotated[CardService, Depends(CardService)]
    ) -> Any:
        card = await card_service.get_card_for_user(card_id, current_user)
        return await card_service.summarize(card)

    async def activate(
        self,
        card_id: UUID,
        current_user: Annotated[db_models.Users, Depends(verify_token_and_get_user)],
        card_service: Annotated[CardService, Depends(CardService)]
    ) -> Any:
        card = await card_service.activate(card_id, current_user)
        return await card_service.summarize(card)

    async def deactivate(
        self,
        card_id: UUID,
        current_user: Annotated[db_models.Users, Depends(verify_token_and_get_user)],
        card_service: Annotated[CardService, Depends(CardService)]
    ) -> Any:
        card = await card_service.deactivate(card_id, current_user)
        return await card_service.summarize(card)

    async def reactivate(
        self,
        card_id: UUID,
        current_user: Annotated[db_models.Users, Depends(verify_token_and_get_user)],
        card_service: Annotated[CardService, Depends(CardService)]
    ) -> Any:
        card = await card_service.reactivate(card_id, current_user)
        return await card_service.summarize(card)

    async def delete_card(
        self,
        card_id: UUID,
        current_user: Annotated[db_models.Users, Depends(verify_token_and_get_user)],
        card_service: Annotated[CardService, Depends(CardService)]
    ):
        await card_service.delete_card(card_id, current_user)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

# Instantiate the classes and export their routers
card_templates_api = CardTemplatesAPI()
templates_router = card_templates_api.router

cards_api = CardsAPI()
router = cards_api.router
