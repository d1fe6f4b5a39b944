'''
API endpoints for a coach's time templates.
'''
from typing import Annotated, Any, List
from uuid import UUID
from fastapi import APIRouter, Depends, status

from ..database import models as db_models
from ..models import time_template as template_models
from ..services.security import verify_token_and_get_user
from ..services.time_template_service import TimeTemplateService

class TimeTemplatesAPI:
    """
    A class to encapsulate the coach's time template endpoints.
    """
    def __init__(self):
        self.router = APIRouter(
            prefix="/time-templates",
            tags=["Time Templates"]
        )
        self._register_routes()

    def _register_routes(self):
        """Registers all the API routes for this class."""
        self.router.add_api_route(
                "/",
                self.list_templates,
                methods=["GET"],
                response_model=List[template_models.TimeTemplateRead])

        self.router.add_api_route(
                "/",
                self.create_template,
                methods=["POST"],
                status_code=status.HTTP_201_CREATED,
                response_model=template_models.TimeTemplateRead)

        self.router.add_api_route(
                "/{template_id}",
                self.update_template,
                methods=["PATCH"],
                response_model=template_models.TimeTemplateRead)

        self.router.add_api_route(
                "/{template_id}/activate",
                self.activate_template,
                methods=["POST"],
                response_model=template_models.TimeTemplateRead)

        self.router.add_api_route(
                "/{template_id}/deactivate",
                self.deactivate_template,
                methods=["POST"],
                response_model=template_models.TimeTemplateRead)

    async def list_templates(
        self,
        current_user: Annotated[db_models.Users, Depends(verify_token_and_get_user)],
        template_service: Annotated[TimeTemplateService, Depends(TimeTemplateService)]
    ) -> List[Any]:
        return await template_service.list_templates(current_user)

    async def create_template(
        self,
        template_data: template_models.TimeTemplateCreate,
        current_user: Annotated[db_models.Users, Depends(verify_token_and_get_user)],
        template_service: Annotated[TimeTemplateService, Depends(TimeTemplateService)]
    ) -> Any:
        return await template_service.create_template(current_user, **template_data.model_dump())

    async def update_template(
        self,
        template_id: UUID,
        template_data: template_models.TimeTemplateUpdate,
        current_user: Annotated[db_models.Users, Depends(verify_token_and_get_user)],
        template_service: Annotated[TimeTemplateService, Depends(TimeTemplateService)]
    ) -> Any:
        return await template_service.update_template(
            template_id, current_user, template_data.model_dump(exclude_unset=True)
        )

    async def activate_template(
        self,
        template_id: UUID,
        current_user: Annotated[db_models.Users, Depends(verify_token_and_get_user)],
        template_service: Annotated[TimeTemplateService, Depends(TimeTemplateService)]
    ) -> Any:
        """
        Makes this the coach's only active template.
        """
        return await template_service.set_active(template_id, current_user, True)

    async def deactivate_template(
        self,
        template_id: UUID,
        current_user: Annotated[db_models.Users, Depends(verify_token_and_get_user)],
        template_service: Annotated[TimeTemplateService, Depends(TimeTemplateService)]
    ) -> Any:
        return await template_service.set_active(template_id, current_user, False)


time_templates_api = TimeTemplatesAPI()
router = time_templates_api.router
