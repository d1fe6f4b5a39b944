'''
Manual trigger for the periodic sweep (operations and testing).
'''
from typing import Annotated, Any
from fastapi import APIRouter, Depends

from ..database import models as db_models
from ..models.sweep import SweepResult
from ..services.security import verify_token_and_get_user
from ..services.sweeper_service import TimeoutSweeper, get_sweeper

class SweepsAPI:
    def __init__(self):
        self.router = APIRouter(
            prefix="/sweeps",
            tags=["Sweeps"]
        )
        self._register_routes()

    def _register_routes(self):
        self.router.add_api_route(
                "/run",
                self.run_sweep,
                methods=["POST"],
                response_model=SweepResult)

    async def run_sweep(
        self,
        current_user: Annotated[db_models.Users, Depends(verify_token_and_get_user)],
        sweeper: Annotated[TimeoutSweeper, Depends(get_sweeper)]
    ) -> Any:
        """
        Runs one sweep pass now and reports what it changed. Operators only.
        """
        return await sweeper.run_manual_sweep(current_user)

# Instantiate the class and export its router
sweeps_api = SweepsAPI()
router = sweeps_api.router
