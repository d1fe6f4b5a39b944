import pytest
import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from src.coach_booking_backend.database import models as db_models
from src.coach_booking_backend.database.db_enums import CheckInStatus, GroupSessionStatus, RegistrationStatus
from src.coach_booking_backend.models import group_session as group_models
from src.coach_booking_backend.services.security import JWTHandler

from tests.constants import TOMORROW, MORNING_START, MORNING_END, STARTING_BALANCE


# Helper to create auth headers
def auth_headers_for_user(user: db_models.Users) -> dict:
    """Creates a JWT token for the given user and returns auth headers."""
    token = JWTHandler.create_access_token(subject=str(user.id))
    return {"Authorization": f"Bearer {token}"}


def session_payload(**overrides) -> dict:
    payload = {
        "title": "Morning drills",
        "course_date": TOMORROW.isoformat(),
        "start_time": MORNING_START.isoformat(),
        "end_time": MORNING_END.isoformat(),
        "capacity_min": 1,
        "capacity_max": 4,
        "publish": True,
    }
    payload.update(overrides)
    return payload


@pytest.mark.anyio
class TestGroupSessionsAPI:

    async def test_register_check_in_and_complete(
        self,
        db_session: AsyncSession,
        client: httpx.AsyncClient,
        coach: db_models.Users,
        student: db_models.Users,
        relation: db_models.StudentCoachRelations,
        balance: db_models.CategoryBalances
    ):
        await db_session.commit()
        coach_headers = auth_headers_for_user(coach)
        student_headers = auth_headers_for_user(student)

        response = await client.post("/group-sessions/", json=session_payload(), headers=coach_headers)
        assert response.status_code == 201, response.json()
        session = group_models.GroupSessionRead(**response.json())
        assert session.status == GroupSessionStatus.OPEN
        assert session.can_enroll is True
        assert session.end_reason is None

        response = await client.post(f"/group-sessions/{session.id}/registrations", json={}, headers=student_headers)
        assert response.status_code == 201, response.json()
        registration = group_models.RegistrationRead(**response.json())
        assert registration.status == RegistrationStatus.CONFIRMED

        response = await client.get("/group-sessions/registrations/mine", headers=student_headers)
        assert [r["id"] for r in response.json()] == [str(registration.id)]

        response = await client.post(
            f"/group-sessions/registrations/{registration.id}/check-in", headers=coach_headers
        )
        assert response.status_code == 200, response.json()
        assert response.json()["check_in_status"] == CheckInStatus.CHECKED_IN.value
        assert response.json()["lesson_deducted"] == 1

        response = await client.post(f"/group-sessions/{session.id}/complete", headers=coach_headers)
        assert response.json()["end_reason"] == "completed"
        assert response.json()["can_enroll"] is False

        await db_session.refresh(balance)
        assert balance.remaining == STARTING_BALANCE - 1

    async def test_student_cannot_check_in(
        self,
        db_session: AsyncSession,
        client: httpx.AsyncClient,
        coach: db_models.Users,
        student: db_models.Users,
        relation: db_models.StudentCoachRelations,
        balance: db_models.CategoryBalances
    ):
        await db_session.commit()
        session = (await client.post("/group-sessions/", json=session_payload(), headers=auth_headers_for_user(coach))).json()
        registration = (await client.post(
            f"/group-sessions/{session['id']}/registrations", json={}, headers=auth_headers_for_user(student)
        )).json()

        response = await client.post(
            f"/group-sessions/registrations/{registration['id']}/check-in", headers=auth_headers_for_user(student)
        )
        assert response.status_code == 403
        assert response.json()["detail"]["reason"] == "coach_only"

    async def test_cancel_session_reports_reason(
        self,
        db_session: AsyncSession,
        client: httpx.AsyncClient,
        coach: db_models.Users,
        default_category: db_models.CourseCategories
    ):
        await db_session.commit()
        headers = auth_headers_for_user(coach)
        session = (await client.post("/group-sessions/", json=session_payload(), headers=headers)).json()

        response = await client.post(f"/group-sessions/{session['id']}/cancel", json={"reason": "pool closed"}, headers=headers)
        assert response.status_code == 200, response.json()
        assert response.json()["end_reason"] == "pool closed"

        response = await client.get("/group-sessions/", params={"coach_id": str(coach.id)}, headers=headers)
        assert [s["status"] for s in response.json()] == [GroupSessionStatus.ENDED.value]

    async def test_draft_is_not_open_for_registration(
        self,
        db_session: AsyncSession,
        client: httpx.AsyncClient,
        coach: db_models.Users,
        student: db_models.Users,
        relation: db_models.StudentCoachRelations,
        balance: db_models.CategoryBalances
    ):
        await db_session.commit()
        session = (await client.post(
            "/group-sessions/", json=session_payload(publish=False), headers=auth_headers_for_user(coach)
        )).json()

        response = await client.post(
            f"/group-sessions/{session['id']}/registrations", json={}, headers=auth_headers_for_user(student)
        )
        assert response.status_code == 409
        assert response.json()["detail"]["reason"] == "group_session_not_open"
