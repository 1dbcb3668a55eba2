"""Pytest configuration and fixtures for CostGuard tests."""

import os

# Settings are read at import time
os.environ["APP_ENV"] = "test"
os.environ["DATABASE_URL"] = ""
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["CONTROL_PLANE"] = "inventory"
os.environ["ANTHROPIC_API_KEY"] = ""
os.environ["DETECTOR_URL"] = ""

import asyncio
from typing import Any, AsyncGenerator, Callable

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from costguard.api.deps import get_control_plane, get_detector
from costguard.core.database import Base, get_db
from costguard.core.errors import ExecutionFailure
from costguard.main import app
from costguard.schemas.detection import Detection
from costguard.services.action_executor import ActionExecutor
from costguard.services.control_plane import ControlPlaneClient, ControlPlaneResult
from costguard.services.recommender import RecommendationService

# Use SQLite in-memory database for tests (faster and no setup needed)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


class FakeControlPlane(ControlPlaneClient):
    """In-memory control plane recording every call."""

    name = "fake"

    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []
        self.fail_with: str | None = None
        self.delay: float = 0.0

    async def apply(self, resource_type, action, resource_id, details):
        self.calls.append(
            {"resource_type": resource_type, "action": action, "resource_id": resource_id, "details": details}
        )
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with:
            raise ExecutionFailure(self.fail_with)
        return ControlPlaneResult(
            success=True,
            message=f"{action} applied to {resource_id}",
            previous_state={"status": "available"},
            new_state={"status": "stopped"},
        )


@pytest.fixture
async def engine():
    """Create async engine for tests with SQLite in-memory database."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,  # StaticPool for in-memory SQLite
        connect_args={"check_same_thread": False},  # Required for SQLite
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def control_plane() -> FakeControlPlane:
    return FakeControlPlane()


@pytest.fixture
def service(db_session: AsyncSession, control_plane: FakeControlPlane) -> RecommendationService:
    """Recommendation service wired to the fake control plane."""
    executor = ActionExecutor(db_session, control_plane, timeout_seconds=1.0)
    return RecommendationService(db_session, executor=executor)


@pytest.fixture
def make_detection() -> Callable[..., Detection]:
    """Factory for detections; keyword overrides replace the defaults."""
    counter = {"n": 0}

    def _make(**overrides: Any) -> Detection:
        counter["n"] += 1
        data: dict[str, Any] = {
            "id": f"det-{counter['n']}",
            "scenario_id": "idle_rds",
            "scenario_name": "Idle RDS Instance",
            "resource_type": "rds_instances",
            "resource_id": f"db-{counter['n']}",
            "resource_name": f"orders-db-{counter['n']}",
            "account_id": "123456789012",
            "region": "us-east-1",
            "env": "dev",
            "action": "stop_rds",
            "monthly_cost": 300.0,
            "potential_savings": 250.0,
            "confidence": 90,
            "details": {"avgConnections7d": 0, "avgCpu7d": 1.2},
            "mode": 3,
        }
        data.update(overrides)
        return Detection(**data)

    return _make


@pytest.fixture
async def async_client(
    db_session: AsyncSession, control_plane: FakeControlPlane
) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client with database and control plane overrides."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_control_plane] = lambda: control_plane
    app.dependency_overrides[get_detector] = lambda: None

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
async def unconfigured_client() -> AsyncGenerator[AsyncClient, None]:
    """Client against an app started without DATABASE_URL."""
    app.dependency_overrides.clear()
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
