import pytest
import httpx
from uuid import uuid4
from sqlalchemy.ext.asyncio import AsyncSession

from src.coach_booking_backend.database import models as db_models
from src.coach_booking_backend.database.db_enums import BookingStatus
from src.coach_booking_backend.models import booking as booking_models
from src.coach_booking_backend.services.security import JWTHandler

from tests.constants import TODAY, TOMORROW, MORNING_START, MORNING_END, STARTING_BALANCE


# Helper to create auth headers
def auth_headers_for_user(user: db_models.Users) -> dict:
    """Creates a JWT token for the given user and returns auth headers."""
    token = JWTHandler.create_access_token(subject=str(user.id))
    return {"Authorization": f"Bearer {token}"}


def booking_payload(relation: db_models.StudentCoachRelations, address: db_models.Addresses, **overrides) -> dict:
    payload = {
        "student_id": str(relation.student_id),
        "coach_id": str(relation.coach_id),
        "address_id": str(address.id),
        "course_date": TOMORROW.isoformat(),
        "start_time": MORNING_START.isoformat(),
        "end_time": MORNING_END.isoformat(),
    }
    payload.update(overrides)
    return payload


@pytest.mark.anyio
class TestBookingsAPI:

    async def test_requires_token(self, client: httpx.AsyncClient):
        response = await client.get("/bookings/")
        assert response.status_code == 401

    async def test_full_lifecycle(
        self,
        db_session: AsyncSession,
        client: httpx.AsyncClient,
        student: db_models.Users,
        coach: db_models.Users,
        relation: db_models.StudentCoachRelations,
        balance: db_models.CategoryBalances,
        address: db_models.Addresses
    ):
        await db_session.commit()

        response = await client.post(
            "/bookings/", json=booking_payload(relation, address), headers=auth_headers_for_user(student)
        )
        assert response.status_code == 201, response.json()
        booking = booking_models.BookingRead(**response.json())
        print(f"Created booking {booking.id} with status {booking.status_text}")
        assert booking.status == BookingStatus.PENDING
        assert booking.status_text == "pending"

        response = await client.post(
            f"/bookings/{booking.id}/transition", json={"action": "confirm"}, headers=auth_headers_for_user(coach)
        )
        assert response.status_code == 200, response.json()
        assert response.json()["status"] == BookingStatus.CONFIRMED.value

        response = await client.post(
            f"/bookings/{booking.id}/transition", json={"action": "complete"}, headers=auth_headers_for_user(coach)
        )
        assert response.status_code == 200, response.json()
        assert response.json()["status_text"] == "completed"

        await db_session.refresh(balance)
        assert balance.remaining == STARTING_BALANCE - 1

    async def test_rejections_carry_a_reason(
        self,
        db_session: AsyncSession,
        client: httpx.AsyncClient,
        student: db_models.Users,
        relation: db_models.StudentCoachRelations,
        balance: db_models.CategoryBalances,
        address: db_models.Addresses
    ):
        await db_session.commit()

        response = await client.post(
            "/bookings/",
            json=booking_payload(relation, address, course_date=TODAY.isoformat()),
            headers=auth_headers_for_user(student),
        )
        assert response.status_code == 400
        assert response.json()["detail"]["reason"] == "booking_in_past"

        response = await client.post(
            "/bookings/", json=booking_payload(relation, address), headers=auth_headers_for_user(student)
        )
        booking_id = response.json()["id"]
        response = await client.post(
            f"/bookings/{booking_id}/transition", json={"action": "confirm"}, headers=auth_headers_for_user(student)
        )
        assert response.status_code == 403
        assert response.json()["detail"]["reason"] == "cannot_confirm_own_booking"

    async def test_invalid_time_range_is_unprocessable(
        self,
        db_session: AsyncSession,
        client: httpx.AsyncClient,
        student: db_models.Users,
        relation: db_models.StudentCoachRelations,
        address: db_models.Addresses
    ):
        await db_session.commit()
        payload = booking_payload(relation, address, start_time=MORNING_END.isoformat(), end_time=MORNING_START.isoformat())
        response = await client.post("/bookings/", json=payload, headers=auth_headers_for_user(student))
        assert response.status_code == 422

    async def test_list_get_and_delete(
        self,
        db_session: AsyncSession,
        client: httpx.AsyncClient,
        student: db_models.Users,
        outsider: db_models.Users,
        relation: db_models.StudentCoachRelations,
        balance: db_models.CategoryBalances,
        address: db_models.Addresses
    ):
        await db_session.commit()
        headers = auth_headers_for_user(student)
        created = (await client.post("/bookings/", json=booking_payload(relation, address), headers=headers)).json()

        response = await client.get("/bookings/", params={"booking_status": BookingStatus.PENDING.value}, headers=headers)
        assert response.status_code == 200
        assert [b["id"] for b in response.json()] == [created["id"]]

        response = await client.get(f"/bookings/{created['id']}", headers=auth_headers_for_user(outsider))
        assert response.status_code == 403

        response = await client.get(f"/bookings/{uuid4()}", headers=headers)
        assert response.status_code == 404
        assert response.json()["detail"]["reason"] == "booking_not_found"

        response = await client.delete(f"/bookings/{created['id']}", headers=headers)
        assert response.status_code == 204
        response = await client.get("/bookings/", headers=headers)
        assert response.json() == []
