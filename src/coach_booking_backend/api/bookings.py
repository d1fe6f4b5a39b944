'''
API endpoints for one-to-one bookings.
'''
from datetime import date
from typing import Annotated, Any, List, Optional
from uuid import UUID
from fastapi import APIRouter, Depends, status, Response

from ..database import models as db_models
from ..database.db_enums import BookingStatus
from ..models import booking as booking_models
from ..services.security import verify_token_and_get_user
from ..services.booking_service import BookingService

class BookingsAPI:
    """
    A class to encapsulate the booking lifecycle endpoints.
    """
    def __init__(self):
        self.router = APIRouter(
            prefix="/bookings",
            tags=["Bookings"]
        )
        self._register_routes()

    def _register_routes(self):
        """Registers all the API routes for this class."""
        self.router.add_api_route(
                "/",
                self.list_bookings,
                methods=["GET"],
                response_model=List[booking_models.BookingRead])

        self.router.add_api_route(
                "/{booking_id}",
                self.get_booking,
                methods=["GET"],
                response_model=booking_models.BookingRead)

        self.router.add_api_route(
                "/",
                self.create_booking,
                methods=["POST"],
                status_code=status.HTTP_201_CREATED,
                response_model=booking_models.BookingRead)

        self.router.add_api_route(
                "/{booking_id}/transition",
                self.transition_booking,
                methods=["POST"],
                response_model=booking_models.BookingRead)

        self.router.add_api_route(
                "/{booking_id}",
                self.delete_booking,
                methods=["DELETE"],
                status_code=status.HTTP_204_NO_CONTENT)

    async def list_bookings(
        self,
        current_user: Annotated[db_models.Users, Depends(verify_token_and_get_user)],
        booking_service: Annotated[BookingService, Depends(BookingService)],
        booking_status: Optional[BookingStatus] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None
    ) -> List[Any]:
        """
        Lists bookings where the current user is the student or the coach.
        """
        return await booking_service.list_bookings(current_user, booking_status, date_from, date_to)

    async def get_booking(
        self,
        booking_id: UUID,
        current_user: Annotated[db_models.Users, Depends(verify_token_and_get_user)],
        booking_service: Annotated[BookingService, Depends(BookingService)]
    ) -> Any:
        return await booking_service.get_booking(booking_id, current_user)

    async def create_booking(
        self,
        booking_data: booking_models.BookingCreate,
        current_user: Annotated[db_models.Users, Depends(verify_token_and_get_user)],
        booking_service: Annotated[BookingService, Depends(BookingService)]
    ) -> Any:
        """
        Creates a booking paid from a category balance or a card.
        The current user must be the student or the coach.
        """
        return await booking_service.create_booking(booking_data, current_user)

    async def transition_booking(
        self,
        booking_id: UUID,
        transition: booking_models.BookingTransition,
        current_user: Annotated[db_models.Users, Depends(verify_token_and_get_user)],
        booking_service: Annotated[BookingService, Depends(BookingService)]
    ) -> Any:
        """
        Confirms, cancels or completes a booking.
        """
        return await booking_service.transition_booking(
            booking_id, current_user, transition.action, transition.reason
        )

    async def delete_booking(
        self,
        booking_id: UUID,
        current_user: Annotated[db_models.Users, Depends(verify_token_and_get_user)],
        booking_service: Annotated[BookingService, Depends(BookingService)]
    ):
        await booking_service.delete_booking(booking_id, current_user)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

# Instantiate the class and export its router
bookings_api = BookingsAPI()
router = bookings_api.router
