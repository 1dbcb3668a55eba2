"""Tests for the alembic revisions."""

import importlib.util
from pathlib import Path

import pytest
from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy import inspect, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from costguard import models  # noqa: F401
from costguard.core.database import Base

VERSIONS_DIR = Path(__file__).resolve().parents[2] / "alembic" / "versions"


def load_revision(filename: str):
    spec = importlib.util.spec_from_file_location(filename.removesuffix(".py"), VERSIONS_DIR / filename)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def run_revision(connection, step) -> None:
    context = MigrationContext.configure(connection)
    with Operations.context(context):
        step()


@pytest.fixture
async def migrated_engine():
    revision = load_revision("3f1c9a7e2b10_create_lifecycle_tables.py")
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(run_revision, revision.upgrade)
    yield engine, revision
    await engine.dispose()


class TestInitialRevision:
    """Test that the initial revision builds the schema the models expect."""

    @pytest.mark.asyncio
    async def test_tables_and_columns_match_models(self, migrated_engine):
        engine, _ = migrated_engine

        def snapshot(connection):
            inspector = inspect(connection)
            return {
                table: {column["name"] for column in inspector.get_columns(table)}
                for table in inspector.get_table_names()
            }

        async with engine.connect() as conn:
            migrated = await conn.run_sync(snapshot)

        expected = {name: {c.name for c in table.columns} for name, table in Base.metadata.tables.items()}
        assert migrated == expected

    @pytest.mark.asyncio
    async def test_indexes_match_models(self, migrated_engine):
        engine, _ = migrated_engine

        def index_names(connection):
            inspector = inspect(connection)
            return {table: {ix["name"] for ix in inspector.get_indexes(table)} for table in inspector.get_table_names()}

        async with engine.connect() as conn:
            migrated = await conn.run_sync(index_names)

        expected = {name: {ix.name for ix in table.indexes} for name, table in Base.metadata.tables.items()}
        assert migrated == expected

    @pytest.mark.asyncio
    async def test_one_live_recommendation_per_detection(self, migrated_engine):
        """The partial unique index only covers live statuses."""
        engine, _ = migrated_engine
        insert = text(
            "INSERT INTO recommendations (id, detection_id, scenario_id, scenario_name, resource_type, "
            "resource_id, resource_name, account_id, region, env, action, title, description, impact_level, "
            "confidence, risk_level, current_monthly_cost, potential_savings, details, status, created_at, "
            "updated_at, created_by) VALUES (:id, 'det-1', 'idle_rds', 'Idle RDS', 'rds_instances', 'db-1', "
            "'orders-db', '123', 'us-east-1', 'dev', 'stop_rds', 't', 'd', 'high', 90, 'low', 300, 250, '{}', "
            ":status, '2026-10-18 00:00:00', '2026-10-18 00:00:00', 'waste-detector')"
        )

        async with engine.begin() as conn:
            await conn.execute(insert, {"id": "a" * 32, "status": "executed"})
            await conn.execute(insert, {"id": "b" * 32, "status": "pending"})

        with pytest.raises(IntegrityError):
            async with engine.begin() as conn:
                await conn.execute(insert, {"id": "c" * 32, "status": "approved"})

    @pytest.mark.asyncio
    async def test_downgrade_drops_everything(self, migrated_engine):
        engine, revision = migrated_engine

        async with engine.begin() as conn:
            await conn.run_sync(run_revision, revision.downgrade)
            tables = await conn.run_sync(lambda c: inspect(c).get_table_names())

        assert tables == []
