'''
API endpoints for group sessions and registrations.
'''
from typing import Annotated, Any, List, Optional
from uuid import UUID
from fastapi import APIRouter, Depends, status, Response

from ..database import models as db_models
from ..database.db_enums import GroupSessionStatus
from ..models import group_session as group_models
from ..services.security import verify_token_and_get_user
from ..services.group_session_service import GroupSessionService, end_reason


def _session_read(session: db_models.GroupCourses) -> group_models.GroupSessionRead:
    read = group_models.GroupSessionRead.model_validate(session)
    return read.model_copy(update={"end_reason": end_reason(session)})


class GroupSessionsAPI:
    """
    A class to encapsulate group session and registration endpoints.
    """
    def __init__(self):
        self.router = APIRouter(
            prefix="/group-sessions",
            tags=["Group Sessions"]
        )
        self._register_routes()

    def _register_routes(self):
        """Registers all the API routes for this class."""
        # --- Sessions ---
        self.router.add_api_route(
                "/",
                self.list_sessions,
                methods=["GET"],
                response_model=List[group_models.GroupSessionRead])

        self.router.add_api_route(
                "/",
                self.create_session,
                methods=["POST"],
                status_code=status.HTTP_201_CREATED,
                response_model=group_models.GroupSessionRead)

        self.router.add_api_route(
                "/registrations/mine",
                self.list_my_registrations,
                methods=["GET"],
                response_model=List[group_models.RegistrationRead])

        self.router.add_api_route(
                "/{session_id}",
                self.get_session,
                methods=["GET"],
                response_model=group_models.GroupSessionRead)

        self.router.add_api_route(
                "/{session_id}",
                self.update_session,
                methods=["PATCH"],
                response_model=group_models.GroupSessionRead)

        self.router.add_api_route(
                "/{session_id}/publish",
                self.publish_session,
                methods=["POST"],
                response_model=group_models.GroupSessionRead)

        self.router.add_api_route(
                "/{session_id}/cancel",
                self.cancel_session,
                methods=["POST"],
                response_model=group_models.GroupSessionRead)

        self.router.add_api_route(
                "/{session_id}/complete",
                self.complete_session,
                methods=["POST"],
                response_model=group_models.GroupSessionRead)

        self.router.add_api_route(
                "/{session_id}",
                self.delete_session,
                methods=["DELETE"],
                status_code=status.HTTP_204_NO_CONTENT)

        # --- Registrations ---
        self.router.add_api_route(
                "/{session_id}/registrations",
                self.list_registrations,
                methods=["GET"],
                response_model=List[group_models.RegistrationRead])

        self.router.add_api_route(
                "/{session_id}/registrations",
                self.register,
                methods=["POST"],
                status_code=status.HTTP_201_CREATED,
                response_model=group_models.RegistrationRead)

        registration_actions = {
            "confirm": self.confirm_registration,
            "reject": self.reject_registration,
            "cancel": self.cancel_registration,
            "check-in": self.check_in,
            "absent": self.mark_absent,
            "undo-check-in": self.undo_check_in,
        }
        for path, endpoint in registration_actions.items():
            self.router.add_api_route(
                    f"/registrations/{{registration_id}}/{path}",
                    endpoint,
                    methods=["POST"],
                    response_model=group_models.RegistrationRead)

    # --- Session endpoints ---

    async def list_sessions(
        self,
        current_user: Annotated[db_models.Users, Depends(verify_token_and_get_user)],
        group_service: Annotated[GroupSessionService, Depends(GroupSessionService)],
        coach_id: Optional[UUID] = None,
        session_status: Optional[GroupSessionStatus] = None
    ) -> List[Any]:
        sessions = await group_service.list_sessions(coach_id, session_status)
        return [_session_read(s) for s in sessions]

    async def create_session(
        self,
        session_data: group_models.GroupSessionCreate,
        current_user: Annotated[db_models.Users, Depends(verify_token_and_get_user)],
        group_service: Annotated[GroupSessionService, Depends(GroupSessionService)]
    ) -> Any:
        """
        Creates a group session owned by the current user. Pass
        `publish=true` to open it for registration right away.
        """
        return _session_read(await group_service.create_session(current_user, session_data))

    async def get_session(
        self,
        session_id: UUID,
        current_user: Annotated[db_models.Users, Depends(verify_token_and_get_user)],
        group_service: Annotated[GroupSessionService, Depends(GroupSessionService)]
    ) -> Any:
        return _session_read(await group_service.get_session(session_id))

    async def update_session(
        self,
        session_id: UUID,
        session_data: group_models.GroupSessionUpdate,
        current_user: Annotated[db_models.Users, Depends(verify_token_and_get_user)],
        group_service: Annotated[GroupSessionService, Depends(GroupSessionService)]
    ) -> Any:
        return _session_read(await group_service.update_session(session_id, current_user, session_data))

    async def publish_session(
        self,
        session_id: UUID,
        current_user: Annotated[db_models.Users, Depends(verify_token_and_get_user)],
        group_service: Annotated[GroupSessionService, Depends(GroupSessionService)]
    ) -> Any:
        return _session_read(await group_service.publish_session(session_id, current_user))

    async def cancel_session(
        self,
        session_id: UUID,
        cancel_data: group_models.GroupSessionCancel,
        current_user: Annotated[db_models.Users, Depends(verify_token_and_get_user)],
        group_service: Annotated[GroupSessionService, Depends(GroupSessionService)]
    ) -> Any:
        return _session_read(await group_service.cancel_session(session_id, current_user, cancel_data.reason))

    async def complete_session(
        self,
        session_id: UUID,
        current_user: Annotated[db_models.Users, Depends(verify_token_and_get_user)],
        group_service: Annotated[GroupSessionService, Depends(GroupSessionService)]
    ) -> Any:
        return _session_read(await group_service.complete_session(session_id, current_user))

    async def delete_session(
        self,
        session_id: UUID,
        current_user: Annotated[db_models.Users, Depends(verify_token_and_get_user)],
        group_service: Annotated[GroupSessionService, Depends(GroupSessionService)]
    ):
        await group_service.delete_session(session_id, current_user)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    # --- Registration endpoints ---

    async def list_registrations(
        self,
        session_id: UUID,
        current_user: Annotated[db_models.Users, Depends(verify_token_and_get_user)],
        group_service: Annotated[GroupSessionService, Depends(GroupSessionService)]
    ) -> List[Any]:
        return await group_service.list_registrations(session_id, current_user)

    async def list_my_registrations(
        self,
        current_user: Annotated[db_models.Users, Depends(verify_token_and_get_user)],
        group_service: Annotated[GroupSessionService, Depends(GroupSessionService)]
    ) -> List[Any]:
        return await group_service.list_my_registrations(current_user)

    async def register(
        self,
        session_id: UUID,
        registration_data: group_models.RegistrationCreate,
        current_user: Annotated[db_models.Users, Depends(verify_token_and_get_user)],
        group_service: Annotated[GroupSessionService, Depends(GroupSessionService)]
    ) -> Any:
        """
        Registers the current user. Credit sessions reserve lessons here and
        debit them at check-in.
        """
        return await group_service.register(session_id, current_user, registration_data.remark)

    async def confirm_registration(
        self,
        registration_id: UUID,
        current_user: Annotated[db_models.Users, Depends(verify_token_and_get_user)],
        group_service: Annotated[GroupSessionService, Depends(GroupSessionService)]
    ) -> Any:
        return await group_service.confirm_registration(registration_id, current_user)

    async def reject_registration(
        self,
        registration_id: UUID,
        current_user: Annotated[db_models.Users, Depends(verify_token_and_get_user)],
        group_service: Annotated[GroupSessionService, Depends(GroupSessionService)]
    ) -> Any:
        return await group_service.reject_registration(registration_id, current_user)

    async def cancel_registration(
        self,
        registration_id: UUID,
        current_user: Annotated[db_models.Users, Depends(verify_token_and_get_user)],
        group_service: Annotated[GroupSessionService, Depends(GroupSessionService)]
    ) -> Any:
        return await group_service.cancel_registration(registration_id, current_user)

    async def check_in(
        self,
        registration_id: UUID,
        current_user: Annotated[db_models.Users, Depends(verify_token_and_get_user)],
        group_service: Annotated[GroupSessionService, Depends(GroupSessionService)]
    ) -> Any:
        return await group_service.check_in(registration_id, current_user)

    async def mark_absent(
        self,
        registration_id: UUID,
        current_user: Annotated[db_models.Users, Depends(verify_token_and_get_user)],
        group_service: Annotated[GroupSessionService, Depends(GroupSessionService)]
    ) -> Any:
        return await group_service.mark_absent(registration_id, current_user)

    async def undo_check_in(
        self,
        registration_id: UUID,
        current_user: Annotated[db_models.Users, Depends(verify_token_and_get_user)],
        group_service: Annotated[GroupSessionService, Depends(GroupSessionService)]
    ) -> Any:
        return await group_service.undo_check_in(registration_id, current_user)

# Instantiate the class and export its router
group_sessions_api = GroupSessionsAPI()
router = group_sessions_api.router
