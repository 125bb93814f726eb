"""Pytest configuration and shared fixtures.

This module provides centralized test fixtures for:
- HTTP clients for API testing (mocked session or test database)
- PostgreSQL test database sessions (skipped when unreachable)
- Transient model instances for patients, doctors, visits and messages
"""

import os
import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.auth import verify_api_key
from app.config import settings
from app.database import Base, get_db
from app.main import app
from app.models import ChatMessage, ChatRole, Doctor, Gender, Patient, Visit, VisitType

TEST_API_KEY = "test-api-key"


async def stub_verify_api_key() -> str:
    """Stub auth dependency that accepts every request."""
    return TEST_API_KEY


# =============================================================================
# HTTP Client Fixtures
# =============================================================================


@pytest.fixture
def mock_db() -> AsyncMock:
    """Mocked AsyncSession for API tests that patch out repositories."""
    return AsyncMock(spec=AsyncSession)


@pytest_asyncio.fixture
async def api_client(mock_db):
    """Async test client whose database dependency yields ``mock_db``.

    Authentication is stubbed out.
    """

    async def override_get_db():
        yield mock_db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[verify_api_key] = stub_verify_api_key

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.pop(get_db, None)
    app.dependency_overrides.pop(verify_api_key, None)


@pytest_asyncio.fixture
async def client(test_engine):
    """Async test client for FastAPI app with test database.

    Overrides the app's get_db dependency to use the test database,
    ensuring API tests use the same database as other test fixtures.
    """
    test_session_maker = async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async def override_get_db():
        async with test_session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[verify_api_key] = stub_verify_api_key

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.pop(get_db, None)
    app.dependency_overrides.pop(verify_api_key, None)


@pytest.fixture
def auth_headers() -> dict[str, str]:
    """Authentication headers for API requests."""
    return {"X-API-Key": TEST_API_KEY}


# =============================================================================
# Database Fixtures
# =============================================================================


def _test_database_url() -> str:
    # Use env var if set (for CI/CD), otherwise derive from settings
    db_url = os.environ.get("DATABASE_TEST_URL")
    if db_url:
        return db_url
    base_url = settings.database_url
    if base_url.endswith("_test"):
        return base_url
    return base_url.rsplit("/", 1)[0] + "/" + base_url.rsplit("/", 1)[1] + "_test"


@pytest_asyncio.fixture
async def test_engine():
    """Create test database engine with automatic schema management.

    Creates the pgvector extension and all tables before the test and drops
    them after. Skips the test when PostgreSQL cannot be reached.
    """
    engine = create_async_engine(
        _test_database_url(),
        echo=False,
        connect_args={"timeout": 5},
    )

    try:
        async with engine.begin() as conn:
            await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
            await conn.run_sync(Base.metadata.create_all)
    except Exception as e:
        await engine.dispose()
        pytest.skip(f"PostgreSQL test database unavailable: {type(e).__name__}")

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_engine) -> AsyncSession:
    """Create test database session with automatic rollback.

    Each test gets a fresh session; uncommitted work is rolled back and the
    schema is dropped afterwards by ``test_engine``.
    """
    session_maker = async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with session_maker() as session:
        yield session
        await session.rollback()


# =============================================================================
# Model Fixtures (transient, not persisted)
# =============================================================================


@pytest.fixture
def sample_doctor() -> Doctor:
    return Doctor(
        id=uuid.uuid4(),
        auth_user_id=f"doctor-{uuid.uuid4().hex[:8]}",
        name="Amara Okafor",
        specialization="Internal Medicine",
    )


@pytest.fixture
def sample_patient() -> Patient:
    return Patient(
        id=uuid.uuid4(),
        auth_user_id=f"patient-{uuid.uuid4().hex[:8]}",
        name="Samuel Mensah",
        age=54,
        gender=Gender.MALE,
        phone="+233 20 555 0142",
        address="14 Ring Road, Accra",
        medical_history="Hypertension diagnosed 2019",
        allergies="Penicillin",
        current_medications="Amlodipine 5mg daily",
        emergency_contact_name="Ama Mensah",
        emergency_contact_phone="+233 20 555 0177",
    )


@pytest.fixture
def make_visit(sample_patient):
    """Factory for transient visits belonging to ``sample_patient``."""

    def _make_visit(days_ago: int = 30, doctor: Doctor | None = None, **fields) -> Visit:
        fields.setdefault("visit_type", VisitType.IN_PERSON)
        visit = Visit(
            id=uuid.uuid4(),
            patient_id=fields.pop("patient_id", sample_patient.id),
            doctor_id=doctor.id if doctor is not None else None,
            visit_date=datetime(2026, 10, 1, 9, 30, tzinfo=timezone.utc) - timedelta(days=days_ago),
            **fields,
        )
        if doctor is not None:
            visit.doctor = doctor
        return visit

    return _make_visit


@pytest.fixture
def make_chat_message(sample_patient):
    """Factory for transient chat messages belonging to ``sample_patient``."""

    def _make_chat_message(
        role: ChatRole,
        message: str,
        session_id: str = "session_test",
        minutes_ago: int = 5,
        **fields,
    ) -> ChatMessage:
        return ChatMessage(
            id=uuid.uuid4(),
            patient_id=fields.pop("patient_id", sample_patient.id),
            session_id=session_id,
            role=role,
            message=message,
            timestamp=datetime.now(timezone.utc) - timedelta(minutes=minutes_ago),
            **fields,
        )

    return _make_chat_message
