"""Tests for recommendation API endpoints."""

import uuid
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from httpx import AsyncClient

from costguard.api.deps import get_detector
from costguard.core.time import utcnow
from costguard.crud import action_audit_log as audit_crud
from costguard.main import app
from costguard.schemas.detection import DetectionResult
from costguard.services.detector import DetectorClient

BASE = "/api/v1/recommendations"


def detection_payload(**overrides) -> dict:
    """Detector-style (camelCase) detection."""
    data = {
        "id": f"det-{uuid.uuid4().hex[:8]}",
        "scenarioId": "idle_rds",
        "scenarioName": "Idle RDS Instance",
        "resourceType": "rds_instances",
        "resourceId": "db-orders",
        "resourceName": "orders-db",
        "accountId": "123456789012",
        "region": "us-east-1",
        "env": "dev",
        "action": "stop_rds",
        "monthlyCost": 300,
        "potentialSavings": 250,
        "confidence": 92,
        "details": {"avgConnections7d": 0, "avgCpu7d": 1.2},
        "mode": 3,
    }
    data.update(overrides)
    return data


async def create_one(client: AsyncClient, **overrides) -> dict:
    response = await client.post(BASE, json={"detection": detection_payload(**overrides)})
    assert response.status_code == 201
    return response.json()["created"][0]


class TestStoreNotConfigured:
    """Test behaviour without a database."""

    @pytest.mark.asyncio
    async def test_list_returns_401(self, unconfigured_client: AsyncClient):
        response = await unconfigured_client.get(BASE)

        assert response.status_code == 401
        assert response.json()["detail"] == "Not connected to database"

    @pytest.mark.asyncio
    async def test_health_still_answers(self, unconfigured_client: AsyncClient):
        response = await unconfigured_client.get("/api/v1/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestCreateRecommendations:
    """Test POST /recommendations."""

    @pytest.mark.asyncio
    async def test_create_single(self, async_client: AsyncClient):
        created = await create_one(async_client)

        assert created["status"] == "pending"
        assert created["title"] == "Stop idle RDS instance: orders-db"
        assert created["impact_level"] == "high"
        assert created["risk_level"] == "low"

    @pytest.mark.asyncio
    async def test_create_single_with_overrides(self, async_client: AsyncClient):
        created = await create_one(async_client, id="det-override")
        assert created["detection_id"] == "det-override"

        response = await async_client.post(
            BASE,
            json={"detection": detection_payload(resourceId="db-2"), "title": "Custom", "description": "Text"},
        )

        body = response.json()
        assert body["created"][0]["title"] == "Custom"
        assert body["created"][0]["description"] == "Text"

    @pytest.mark.asyncio
    async def test_auto_mode_detection_skipped(self, async_client: AsyncClient):
        response = await async_client.post(BASE, json={"detection": detection_payload(mode=2)})

        assert response.status_code == 201
        body = response.json()
        assert body["created"] == []
        assert body["skipped_count"] == 1

    @pytest.mark.asyncio
    async def test_create_batch_skips_duplicates(self, async_client: AsyncClient):
        first = detection_payload()
        await async_client.post(BASE, json={"detection": first})

        response = await async_client.post(
            BASE, json={"detections": [first, detection_payload(resourceId="db-3"), detection_payload(mode=2)]}
        )

        body = response.json()
        assert body["success_count"] == 1
        assert body["skipped_count"] == 2
        assert len(body["created"]) == 1

    @pytest.mark.asyncio
    async def test_generate_from_detector(self, async_client: AsyncClient):
        detector = AsyncMock(spec=DetectorClient)
        detector.detect_all.return_value = DetectionResult.model_validate(
            {"detections": [detection_payload(), detection_payload(resourceId="db-2", mode=2)]}
        )
        app.dependency_overrides[get_detector] = lambda: detector

        response = await async_client.post(BASE, json={"generate": True})

        assert response.status_code == 201
        body = response.json()
        assert (body["success_count"], body["skipped_count"]) == (1, 1)
        detector.detect_all.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_generate_without_detector(self, async_client: AsyncClient):
        response = await async_client.post(BASE, json={"generate": True})

        assert response.status_code == 400
        assert response.json()["detail"] == "No detector configured"

    @pytest.mark.asyncio
    async def test_body_needs_exactly_one_source(self, async_client: AsyncClient):
        response = await async_client.post(BASE, json={"detection": detection_payload(), "generate": True})

        assert response.status_code == 400


class TestListAndGet:
    """Test listing, lookup and summary."""

    @pytest.mark.asyncio
    async def test_list_with_status_filter(self, async_client: AsyncClient):
        first = await create_one(async_client)
        await create_one(async_client, resourceId="db-2")
        await async_client.post(f"{BASE}/{first['id']}/approve")

        pending = await async_client.get(BASE, params={"status": "pending"})
        both = await async_client.get(BASE, params={"status": "pending,approved"})

        assert [r["status"] for r in pending.json()] == ["pending"]
        assert len(both.json()) == 2

    @pytest.mark.asyncio
    async def test_invalid_status_filter(self, async_client: AsyncClient):
        response = await async_client.get(BASE, params={"status": "bogus"})

        assert response.status_code == 400
        assert "Invalid status filter" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_get_not_found(self, async_client: AsyncClient):
        response = await async_client.get(f"{BASE}/{uuid.uuid4()}")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_malformed_id_is_400(self, async_client: AsyncClient):
        response = await async_client.get(f"{BASE}/not-a-uuid")

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_summary(self, async_client: AsyncClient):
        await create_one(async_client)
        await create_one(async_client, resourceId="db-2", potentialSavings=50)

        response = await async_client.get(f"{BASE}/summary")

        summary = response.json()
        assert summary["total"] == 2
        assert summary["pending"] == 2
        assert summary["pending_savings"] == 300
        assert summary["by_scenario"][0]["key"] == "idle_rds"


class TestLifecycleEndpoints:
    """Test approve, reject, snooze, schedule, update and delete."""

    @pytest.mark.asyncio
    async def test_approve_then_reject(self, async_client: AsyncClient):
        created = await create_one(async_client)

        approved = await async_client.post(f"{BASE}/{created['id']}/approve", json={"actioned_by": "alice"})
        rejected = await async_client.post(f"{BASE}/{created['id']}/reject", json={"reason": "Needed for audit"})

        assert approved.json()["status"] == "approved"
        assert approved.json()["actioned_by"] == "alice"
        assert rejected.json()["status"] == "rejected"
        assert rejected.json()["rejection_reason"] == "Needed for audit"

    @pytest.mark.asyncio
    async def test_terminal_recommendation_cannot_be_approved(self, async_client: AsyncClient):
        created = await create_one(async_client)
        await async_client.post(f"{BASE}/{created['id']}/reject")

        response = await async_client.post(f"{BASE}/{created['id']}/approve")

        assert response.status_code == 400
        assert "rejected" in response.json()["detail"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("days", [0, 31, "7", 2.5, None])
    async def test_invalid_snooze_days(self, async_client: AsyncClient, days):
        created = await create_one(async_client)

        response = await async_client.post(f"{BASE}/{created['id']}/snooze", json={"days": days})

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_snooze(self, async_client: AsyncClient):
        created = await create_one(async_client)

        response = await async_client.post(f"{BASE}/{created['id']}/snooze", json={"days": 7})

        assert response.status_code == 200
        assert response.json()["status"] == "snoozed"
        assert response.json()["snoozed_until"] is not None

    @pytest.mark.asyncio
    async def test_schedule_requires_future_time(self, async_client: AsyncClient):
        created = await create_one(async_client)
        await async_client.post(f"{BASE}/{created['id']}/approve")

        past = await async_client.post(
            f"{BASE}/{created['id']}/schedule", json={"scheduled_for": (utcnow() - timedelta(hours=1)).isoformat()}
        )
        garbage = await async_client.post(f"{BASE}/{created['id']}/schedule", json={"scheduled_for": "tomorrow"})
        future = await async_client.post(
            f"{BASE}/{created['id']}/schedule", json={"scheduled_for": (utcnow() + timedelta(days=1)).isoformat()}
        )

        assert past.status_code == 400
        assert garbage.status_code == 400
        assert future.status_code == 200
        assert future.json()["status"] == "scheduled"

    @pytest.mark.asyncio
    async def test_approve_scheduled_rejected(self, async_client: AsyncClient):
        created = await create_one(async_client)
        await async_client.post(f"{BASE}/{created['id']}/approve")
        await async_client.post(
            f"{BASE}/{created['id']}/schedule", json={"scheduled_for": (utcnow() + timedelta(days=1)).isoformat()}
        )

        response = await async_client.post(f"{BASE}/{created['id']}/approve")

        assert response.status_code == 400
        assert (await async_client.get(f"{BASE}/{created['id']}")).json()["status"] == "scheduled"

    @pytest.mark.asyncio
    async def test_patch_notes_and_status(self, async_client: AsyncClient):
        created = await create_one(async_client)

        response = await async_client.patch(
            f"{BASE}/{created['id']}", json={"user_notes": "checked with DBA", "status": "approved"}
        )

        assert response.status_code == 200
        assert response.json()["user_notes"] == "checked with DBA"
        assert response.json()["status"] == "approved"

    @pytest.mark.asyncio
    async def test_patch_illegal_status(self, async_client: AsyncClient):
        created = await create_one(async_client)

        response = await async_client.patch(f"{BASE}/{created['id']}", json={"status": "executed"})

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_delete(self, async_client: AsyncClient):
        created = await create_one(async_client)

        response = await async_client.delete(f"{BASE}/{created['id']}")

        assert response.status_code == 204
        assert (await async_client.get(f"{BASE}/{created['id']}")).status_code == 404

    @pytest.mark.asyncio
    async def test_explain_without_explainer(self, async_client: AsyncClient):
        created = await create_one(async_client)

        response = await async_client.post(f"{BASE}/{created['id']}/explain")

        assert response.status_code == 200
        assert response.json()["ai_explanation"] is None


class TestExecution:
    """Test POST /recommendations/{id}/execute and /execute-all."""

    @pytest.mark.asyncio
    async def test_pending_cannot_execute(self, async_client: AsyncClient, control_plane):
        created = await create_one(async_client)

        response = await async_client.post(f"{BASE}/{created['id']}/execute")

        assert response.status_code == 400
        assert control_plane.calls == []

    @pytest.mark.asyncio
    async def test_execute_success(self, async_client: AsyncClient, control_plane, db_session):
        created = await create_one(async_client)
        await async_client.post(f"{BASE}/{created['id']}/approve")

        response = await async_client.post(f"{BASE}/{created['id']}/execute", json={"actioned_by": "alice"})

        assert response.status_code == 200
        body = response.json()
        assert body["result"]["success"] is True
        assert body["recommendation"]["status"] == "executed"
        assert body["recommendation"]["execution_result"]["success"] is True
        assert control_plane.calls[0]["action"] == "stop_rds"

        entries = await audit_crud.get_audit_entries(db_session)
        assert len(entries) == 1
        assert entries[0].executed_by == "alice"

    @pytest.mark.asyncio
    async def test_execute_failure_keeps_approved(self, async_client: AsyncClient, control_plane):
        created = await create_one(async_client)
        await async_client.post(f"{BASE}/{created['id']}/approve")
        control_plane.fail_with = "DBInstanceNotFound"

        response = await async_client.post(f"{BASE}/{created['id']}/execute")

        assert response.status_code == 200
        assert response.json()["result"]["success"] is False
        assert response.json()["result"]["message"] == "DBInstanceNotFound"
        assert response.json()["recommendation"]["status"] == "approved"

    @pytest.mark.asyncio
    async def test_execute_all(self, async_client: AsyncClient, control_plane):
        first = await create_one(async_client)
        second = await create_one(async_client, resourceId="db-2")
        await create_one(async_client, resourceId="db-3")
        await async_client.post(f"{BASE}/{first['id']}/approve")
        await async_client.post(f"{BASE}/{second['id']}/approve")

        response = await async_client.post(f"{BASE}/execute-all")

        body = response.json()
        assert response.status_code == 200
        assert body["success_count"] == 2
        assert body["fail_count"] == 0
        assert len(control_plane.calls) == 2

    @pytest.mark.asyncio
    async def test_execute_all_reports_per_item(self, async_client: AsyncClient):
        approved = await create_one(async_client)
        pending = await create_one(async_client, resourceId="db-2")
        await async_client.post(f"{BASE}/{approved['id']}/approve")

        response = await async_client.post(
            f"{BASE}/execute-all", json={"recommendation_ids": [approved["id"], pending["id"]]}
        )

        body = response.json()
        assert body["success_count"] == 1
        assert body["fail_count"] == 1
        assert body["results"][1]["item_id"] == pending["id"]


class TestIdleRdsInProduction:
    """End-to-end: idle production database through approval and execution."""

    @pytest.mark.asyncio
    async def test_full_flow(self, async_client: AsyncClient, control_plane, db_session):
        created = await create_one(async_client, env="prod", resourceName="billing-db", potentialSavings=300)
        assert created["risk_level"] == "high"
        assert created["impact_level"] == "high"

        approved = await async_client.post(f"{BASE}/{created['id']}/approve")
        assert approved.json()["status"] == "approved"

        executed = await async_client.post(f"{BASE}/{created['id']}/execute")
        assert executed.json()["recommendation"]["status"] == "executed"

        stats = await async_client.get("/api/v1/audit-log/stats")
        assert stats.json()["all_time"]["savings"] == 300
        assert stats.json()["today"]["actions"] == 1
