'''
Pytest configuration.

This file sets up fixtures for:
1. Forcing the application into TEST_MODE before any code is imported.
2. A fresh sqlite database per test, built from the ORM metadata.
3. A frozen clock and a recording notifier.
4. Instances of all service classes, pre-injected with the test db session.
5. An httpx AsyncClient for endpoint testing, wired to the same database.
6. A small world of users, a relationship and its balance.
'''
import os

os.environ["TEST_MODE"] = "True"
os.environ["SWEEP_ENABLED"] = "False"

import pytest
from typing import AsyncGenerator
from unittest.mock import AsyncMock

import httpx
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

# --- Application Imports ---
from src.coach_booking_backend.main import app
from src.coach_booking_backend.common.config import settings
from src.coach_booking_backend.common.clock import FrozenClock, get_clock
from src.coach_booking_backend.database import models as db_models
from src.coach_booking_backend.database.engine import (
    build_engine, build_session_factory, create_schema, get_db_session, get_session_factory
)
from src.coach_booking_backend.database.session_utils import commit_and_run_callbacks, discard_after_commit
from src.coach_booking_backend.services.audit_service import OperationLogService
from src.coach_booking_backend.services.ledger_service import CreditLedgerService
from src.coach_booking_backend.services.user_service import UserService
from src.coach_booking_backend.services.category_service import CategoryService
from src.coach_booking_backend.services.relation_service import RelationService
from src.coach_booking_backend.services.card_service import CardService, CardTemplateService
from src.coach_booking_backend.services.time_template_service import TimeTemplateService
from src.coach_booking_backend.services.booking_service import BookingService
from src.coach_booking_backend.services.group_session_service import GroupSessionService
from src.coach_booking_backend.services.notification_service import NotificationService, get_notification_service
from src.coach_booking_backend.services.sweeper_service import TimeoutSweeper

from tests.constants import FROZEN_NOW
from tests.database.factories import (
    persist, UserFactory, AddressFactory, CategoryFactory, RelationFactory, BalanceFactory
)


@pytest.fixture(scope="session")
def anyio_backend():
    """
    Override the default 'anyio_backend' fixture.
    1. Forces the backend to 'asyncio' (solves 'trio' error).
    2. Promotes the scope to 'session' (solves 'ScopeMismatch').
    """
    return "asyncio"


# --- 1. Database ---

@pytest.fixture(scope="function")
async def test_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    assert settings.TEST_MODE is True, \
        "TEST_MODE was not set to True! Check your .env file or environment."

    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'coach_booking_test.db'}")
    await create_schema(engine)
    yield engine
    await engine.dispose()

@pytest.fixture(scope="function")
def session_factory(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(test_engine)

@pytest.fixture(scope="function")
async def db_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    """
    The session service tests run in. Tests that also go through the API or
    the sweeper commit it first, since those use their own sessions.
    """
    session = session_factory()
    try:
        yield session
    finally:
        await session.rollback()
        await session.close()


# --- 2. Clock & Notifier ---

@pytest.fixture(scope="function")
def clock() -> FrozenClock:
    return FrozenClock(FROZEN_NOW)

@pytest.fixture(scope="function")
def notifier() -> NotificationService:
    """Notifier whose sender is an AsyncMock, so tests can inspect the events."""
    return NotificationService(sender=AsyncMock())


# --- 3. Service Fixtures ---

@pytest.fixture(scope="function")
def audit_service(db_session: AsyncSession) -> OperationLogService:
    return OperationLogService(db=db_session)

@pytest.fixture(scope="function")
def ledger_service(db_session: AsyncSession, clock: FrozenClock, audit_service: OperationLogService) -> CreditLedgerService:
    return CreditLedgerService(db=db_session, clock=clock, audit=audit_service)

@pytest.fixture(scope="function")
def user_service(db_session: AsyncSession) -> UserService:
    return UserService(db=db_session)

@pytest.fixture(scope="function")
def category_service(db_session: AsyncSession, ledger_service: CreditLedgerService) -> CategoryService:
    return CategoryService(db=db_session, ledger=ledger_service)

@pytest.fixture(scope="function")
def relation_service(
    db_session: AsyncSession,
    clock: FrozenClock,
    ledger_service: CreditLedgerService,
    category_service: CategoryService,
    user_service: UserService
) -> RelationService:
    return RelationService(
        db=db_session,
        clock=clock,
        ledger=ledger_service,
        category_service=category_service,
        user_service=user_service,
    )

@pytest.fixture(scope="function")
def card_template_service(db_session: AsyncSession, clock: FrozenClock) -> CardTemplateService:
    return CardTemplateService(db=db_session, clock=clock)

@pytest.fixture(scope="function")
def card_service(
    db_session: AsyncSession,
    clock: FrozenClock,
    ledger_service: CreditLedgerService,
    notifier: NotificationService
) -> CardService:
    return CardService(db=db_session, clock=clock, ledger=ledger_service, notifier=notifier)

@pytest.fixture(scope="function")
def time_template_service(
    db_session: AsyncSession,
    clock: FrozenClock,
    user_service: UserService
) -> TimeTemplateService:
    return TimeTemplateService(db=db_session, clock=clock, user_service=user_service)

@pytest.fixture(scope="function")
def booking_service(
    db_session: AsyncSession,
    clock: FrozenClock,
    ledger_service: CreditLedgerService,
    card_service: CardService,
    relation_service: RelationService,
    category_service: CategoryService,
    user_service: UserService,
    time_template_service: TimeTemplateService,
    notifier: NotificationService
) -> BookingService:
    return BookingService(
        db=db_session,
        clock=clock,
        ledger=ledger_service,
        card_service=card_service,
        relation_service=relation_service,
        category_service=category_service,
        user_service=user_service,
        time_templates=time_template_service,
        notifier=notifier,
    )

@pytest.fixture(scope="function")
def group_service(
    db_session: AsyncSession,
    clock: FrozenClock,
    ledger_service: CreditLedgerService,
    relation_service: RelationService,
    category_service: CategoryService,
    user_service: UserService,
    notifier: NotificationService
) -> GroupSessionService:
    return GroupSessionService(
        db=db_session,
        clock=clock,
        ledger=ledger_service,
        relation_service=relation_service,
        category_service=category_service,
        user_service=user_service,
        notifier=notifier,
    )

@pytest.fixture(scope="function")
def sweeper(
    session_factory: async_sessionmaker[AsyncSession],
    clock: FrozenClock,
    notifier: NotificationService
) -> TimeoutSweeper:
    return TimeoutSweeper(session_factory, clock=clock, notifier=notifier, interval_seconds=1)


# --- 4. API Client ---

@pytest.fixture(scope="function")
async def client(
    session_factory: async_sessionmaker[AsyncSession],
    clock: FrozenClock,
    notifier: NotificationService
) -> AsyncGenerator[httpx.AsyncClient, None]:
    """
    Drives the app in-process. Every request gets its own session from the
    test database, committed on success like `get_db_session` does.
    """
    async def override_get_db_session() -> AsyncGenerator[AsyncSession, None]:
        session = session_factory()
        try:
            yield session
            await commit_and_run_callbacks(session)
        except Exception:
            await session.rollback()
            discard_after_commit(session)
            raise
        finally:
            await session.close()

    app.dependency_overrides[get_db_session] = override_get_db_session
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_notification_service] = lambda: notifier

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as test_client:
        yield test_client

    app.dependency_overrides.clear()


# --- 5. Data Fixtures ---

@pytest.fixture(scope="function")
async def coach(db_session: AsyncSession) -> db_models.Users:
    return await persist(db_session, UserFactory.build(first_name="Cora", last_name="Coach"))

@pytest.fixture(scope="function")
async def student(db_session: AsyncSession) -> db_models.Users:
    return await persist(db_session, UserFactory.build(first_name="Sam", last_name="Student"))

@pytest.fixture(scope="function")
async def other_student(db_session: AsyncSession) -> db_models.Users:
    return await persist(db_session, UserFactory.build())

@pytest.fixture(scope="function")
async def outsider(db_session: AsyncSession) -> db_models.Users:
    """A user with no relationship to anyone."""
    return await persist(db_session, UserFactory.build())

@pytest.fixture(scope="function")
async def address(db_session: AsyncSession, coach: db_models.Users) -> db_models.Addresses:
    return await persist(db_session, AddressFactory.build(user_id=coach.id))

@pytest.fixture(scope="function")
async def default_category(db_session: AsyncSession, coach: db_models.Users) -> db_models.CourseCategories:
    return await persist(db_session, CategoryFactory.build(coach_id=coach.id, category_id=0))

@pytest.fixture(scope="function")
async def relation(
    db_session: AsyncSession,
    coach: db_models.Users,
    student: db_models.Users,
    default_category: db_models.CourseCategories
) -> db_models.StudentCoachRelations:
    return await persist(db_session, RelationFactory.build(student_id=student.id, coach_id=coach.id))

@pytest.fixture(scope="function")
async def balance(
    db_session: AsyncSession,
    relation: db_models.StudentCoachRelations
) -> db_models.CategoryBalances:
    """Default-category balance of STARTING_BALANCE lessons, no expiry."""
    return await persist(db_session, BalanceFactory.build(relation_id=relation.id, category_id=0))

@pytest.fixture(scope="function")
async def other_relation(
    db_session: AsyncSession,
    coach: db_models.Users,
    other_student: db_models.Users,
    default_category: db_models.CourseCategories
) -> db_models.StudentCoachRelations:
    relation = await persist(db_session, RelationFactory.build(student_id=other_student.id, coach_id=coach.id))
    await persist(db_session, BalanceFactory.build(relation_id=relation.id, category_id=0))
    return relation
