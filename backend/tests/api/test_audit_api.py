"""Tests for audit log API endpoints."""

import pytest
from httpx import AsyncClient

from costguard.core.time import utcnow
from costguard.crud import action_audit_log as audit_crud
from costguard.schemas.audit import AuditLogCreate


async def record(db_session, **overrides):
    data = {
        "action": "delete_volume",
        "resource_type": "volumes",
        "resource_id": "vol-1",
        "scenario_id": "unattached_volume",
        "detection_id": "det-vol-1",
        "success": True,
        "message": "Volume vol-1 deleted successfully",
        "executed_at": utcnow(),
        "duration_ms": 80,
        "executed_by": "auto-safe-agent",
    }
    data.update(overrides)
    return await audit_crud.create_audit_entry(db_session, AuditLogCreate(**data))


class TestAuditLogAPI:
    """Test GET /audit-log."""

    @pytest.mark.asyncio
    async def test_list_entries(self, async_client: AsyncClient, db_session):
        await record(db_session)
        await record(db_session, success=False, message="VolumeInUse", resource_id="vol-2")

        response = await async_client.get("/api/v1/audit-log")
        failed = await async_client.get("/api/v1/audit-log", params={"success": "false"})

        assert response.status_code == 200
        assert len(response.json()) == 2
        assert [e["message"] for e in failed.json()] == ["VolumeInUse"]

    @pytest.mark.asyncio
    async def test_limit_bounds(self, async_client: AsyncClient):
        response = await async_client.get("/api/v1/audit-log", params={"limit": 0})

        assert response.status_code == 400


class TestAuditStatsAPI:
    """Test GET /audit-log/stats."""

    @pytest.mark.asyncio
    async def test_empty_stats(self, async_client: AsyncClient):
        response = await async_client.get("/api/v1/audit-log/stats")

        assert response.status_code == 200
        body = response.json()
        assert body["total_executions"] == 0
        assert body["success_rate"] == 100.0
        assert len(body["trend"]) == 30

    @pytest.mark.asyncio
    async def test_estimated_savings_without_recommendation(self, async_client: AsyncClient, db_session):
        await record(db_session)
        await record(db_session, success=False)

        body = (await async_client.get("/api/v1/audit-log/stats")).json()

        assert body["all_time"] == {"actions": 1, "savings": 15.0}
        assert body["success_rate"] == 50.0
        assert body["by_scenario"] == [{"scenario_id": "unattached_volume", "actions": 1, "savings": 15.0}]
