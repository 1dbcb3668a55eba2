"""Tests for the drift tick sweep."""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import OperationalError

from costguard.core.errors import StoreError
from costguard.core.time import utcnow
from costguard.crud import action_audit_log as audit_crud
from costguard.crud import cloud_resource as cloud_resource_crud
from costguard.crud import recommendation as recommendation_crud
from costguard.models.cloud_resource import OptimizationPolicy
from costguard.schemas.cloud_resource import CloudResourceCreate
from costguard.schemas.detection import DetectionResult
from costguard.services.detector import DetectorClient
from costguard.services.scheduler import get_drift_tick_status, run_drift_tick


class TestUnsnooze:
    """Test snooze expiry."""

    @pytest.mark.asyncio
    async def test_only_strictly_past_snoozes_resolved(self, db_session, service, make_detection):
        due = await service.create_from_detection(make_detection())
        boundary = await service.create_from_detection(make_detection())
        future = await service.create_from_detection(make_detection())
        await service.snooze(due.id, 1)
        await service.snooze(future.id, 30)
        boundary_snooze = await service.snooze(boundary.id, 5)
        now = boundary_snooze.snoozed_until

        result = await run_drift_tick(db_session, service, now=now)

        assert result.unsnoozed == 1
        assert (await service.get(due.id)).status == "pending"
        assert (await service.get(due.id)).snoozed_until is None
        assert (await service.get(boundary.id)).status == "snoozed"
        assert (await service.get(future.id)).status == "snoozed"


class TestScheduledExecution:
    """Test execution of due scheduled recommendations."""

    @pytest.mark.asyncio
    async def test_due_items_executed_future_untouched(
        self, db_session, service, control_plane, make_detection
    ):
        due = await service.create_from_detection(make_detection())
        later = await service.create_from_detection(make_detection())
        await service.schedule(due.id, utcnow() + timedelta(hours=1))
        await service.schedule(later.id, utcnow() + timedelta(days=3))

        result = await run_drift_tick(db_session, service, now=utcnow() + timedelta(hours=2))

        assert result.executed == 1
        assert result.failed == 0
        assert result.executions.success_count == 1
        assert (await service.get(due.id)).status == "executed"
        assert (await service.get(later.id)).status == "scheduled"
        assert len(control_plane.calls) == 1

        entries = await audit_crud.get_audit_entries(db_session)
        assert [e.executed_by for e in entries] == ["scheduler"]

    @pytest.mark.asyncio
    async def test_failure_does_not_abort_sweep(self, db_session, service, control_plane, make_detection):
        first = await service.create_from_detection(make_detection())
        second = await service.create_from_detection(make_detection())
        await service.schedule(first.id, utcnow() + timedelta(minutes=10))
        await service.schedule(second.id, utcnow() + timedelta(minutes=20))
        control_plane.fail_with = "API throttled"

        result = await run_drift_tick(db_session, service, now=utcnow() + timedelta(hours=1))

        assert result.failed == 2
        assert result.executed == 0
        assert (await service.get(first.id)).status == "approved"
        assert (await service.get(second.id)).status == "approved"
        assert len(await audit_crud.get_audit_entries(db_session)) == 2

    @pytest.mark.asyncio
    async def test_item_claimed_elsewhere_skipped(self, db_session, service, control_plane, make_detection):
        recommendation = await service.create_from_detection(make_detection())
        await service.schedule(recommendation.id, utcnow() + timedelta(minutes=5))
        now = utcnow() + timedelta(minutes=10)
        await recommendation_crud.claim_for_execution(db_session, recommendation.id, "api-worker", now, 300)

        result = await run_drift_tick(db_session, service, now=now)

        assert result.skipped == 1
        assert control_plane.calls == []
        assert (await service.get(recommendation.id)).status == "scheduled"

    @pytest.mark.asyncio
    async def test_item_due_exactly_now_untouched(self, db_session, service, control_plane, make_detection):
        recommendation = await service.create_from_detection(make_detection())
        scheduled = await service.schedule(recommendation.id, utcnow() + timedelta(hours=1))

        result = await run_drift_tick(db_session, service, now=scheduled.scheduled_for)

        assert result.executed == 0
        assert result.executions.results == []
        assert control_plane.calls == []
        assert (await service.get(recommendation.id)).status == "scheduled"

    @pytest.mark.asyncio
    async def test_store_error_on_first_item_does_not_abort_sweep(
        self, db_session, service, control_plane, make_detection, monkeypatch
    ):
        first = await service.create_from_detection(make_detection())
        second = await service.create_from_detection(make_detection())
        await service.schedule(first.id, utcnow() + timedelta(minutes=10))
        await service.schedule(second.id, utcnow() + timedelta(minutes=20))
        real_claim = recommendation_crud.claim_for_execution

        async def flaky_claim(db, recommendation_id, *args, **kwargs):
            if recommendation_id == first.id:
                raise StoreError("Failed to claim recommendation: database is locked")
            return await real_claim(db, recommendation_id, *args, **kwargs)

        monkeypatch.setattr(recommendation_crud, "claim_for_execution", flaky_claim)

        result = await run_drift_tick(db_session, service, now=utcnow() + timedelta(hours=1))

        assert result.failed == 1
        assert result.executed == 1
        assert result.executions.results[0].item_id == str(first.id)
        assert (await service.get(first.id)).status == "scheduled"
        assert (await service.get(second.id)).status == "executed"
        assert len(control_plane.calls) == 1

    @pytest.mark.asyncio
    async def test_driver_error_on_first_item_does_not_abort_sweep(
        self, db_session, service, control_plane, make_detection, monkeypatch
    ):
        first = await service.create_from_detection(make_detection())
        second = await service.create_from_detection(make_detection())
        await service.schedule(first.id, utcnow() + timedelta(minutes=10))
        await service.schedule(second.id, utcnow() + timedelta(minutes=20))
        first_id, second_id = first.id, second.id
        real_claim = recommendation_crud.claim_for_execution

        async def flaky_claim(db, recommendation_id, *args, **kwargs):
            if recommendation_id == first_id:
                raise OperationalError("UPDATE recommendations", {}, Exception("database is locked"))
            return await real_claim(db, recommendation_id, *args, **kwargs)

        monkeypatch.setattr(recommendation_crud, "claim_for_execution", flaky_claim)

        result = await run_drift_tick(db_session, service, now=utcnow() + timedelta(hours=1))

        assert result.failed == 1
        assert result.executed == 1
        assert (await service.get(second_id)).status == "executed"


class TestAutoSafePhase:
    """Test the automated-mode phase of the sweep."""

    @pytest.fixture
    def detector(self, make_detection):
        detector = AsyncMock(spec=DetectorClient)
        detector.detect_all.return_value = DetectionResult(
            detections=[
                make_detection(
                    scenario_id="orphaned_eip",
                    scenario_name="Orphaned Elastic IP",
                    resource_type="elastic_ips",
                    resource_id="eipalloc-1",
                    action="release_eip",
                    potential_savings=3.6,
                    mode=2,
                ),
                make_detection(),
            ]
        )
        return detector

    async def _add_eip(self, db_session):
        await cloud_resource_crud.create_resource(
            db_session,
            CloudResourceCreate(
                resource_type="elastic_ips",
                resource_id="eipalloc-1",
                env="dev",
                optimization_policy=OptimizationPolicy.AUTO_SAFE,
                state={"association_id": None},
            ),
        )

    @pytest.mark.asyncio
    async def test_manual_mode_skips_detector(self, db_session, service, detector):
        result = await run_drift_tick(db_session, service, detector=detector)

        assert result.execution_mode == "manual"
        detector.detect_all.assert_not_awaited()
        assert result.auto_safe.results == []

    @pytest.mark.asyncio
    async def test_automated_mode_executes_auto_safe_detections(
        self, db_session, service, control_plane, detector
    ):
        await self._add_eip(db_session)

        result = await run_drift_tick(db_session, service, detector=detector, auto_execute=True)

        assert result.execution_mode == "automated"
        assert result.detections == 2
        assert result.auto_safe_detections == 1
        assert result.auto_safe_savings == 3.6
        assert result.auto_safe.success_count == 1
        assert result.detection_error is None
        assert control_plane.calls[0]["action"] == "release_eip"

        [entry] = await audit_crud.get_audit_entries(db_session)
        assert entry.executed_by == "auto-safe-agent"

    @pytest.mark.asyncio
    async def test_automated_mode_without_detector(self, db_session, service):
        result = await run_drift_tick(db_session, service, auto_execute=True)

        assert result.execution_mode == "automated"
        assert result.detection_error == "No detector configured"
        assert result.auto_safe.results == []

    @pytest.mark.asyncio
    async def test_detector_error_does_not_abort_sweep(self, db_session, service, make_detection):
        snoozed = await service.create_from_detection(make_detection())
        await service.snooze(snoozed.id, 1)
        detector = AsyncMock(spec=DetectorClient)
        detector.detect_all.side_effect = StoreError("Detector unreachable")

        result = await run_drift_tick(
            db_session, service, now=utcnow() + timedelta(days=2), detector=detector, auto_execute=True
        )

        assert result.detection_error == "Detector unreachable"
        assert result.unsnoozed == 1


class TestExpiryAndStatus:
    """Test optional expiry and the status endpoint helper."""

    @pytest.mark.asyncio
    async def test_expiry_disabled_by_default(self, db_session, service, make_detection):
        recommendation = await service.create_from_detection(make_detection())

        result = await run_drift_tick(db_session, service, now=utcnow() + timedelta(days=365))

        assert result.expired == 0
        assert (await service.get(recommendation.id)).status == "pending"

    @pytest.mark.asyncio
    async def test_stale_items_expired(self, db_session, service, make_detection):
        stale = await service.create_from_detection(make_detection())
        approved = await service.create_from_detection(make_detection())
        await service.approve(approved.id)

        result = await run_drift_tick(db_session, service, now=utcnow() + timedelta(days=31), expiry_days=30)

        assert result.expired == 1
        assert (await service.get(stale.id)).status == "expired"
        assert (await service.get(approved.id)).status == "approved"

    @pytest.mark.asyncio
    async def test_status_counts_due_items(self, db_session, service, make_detection):
        snoozed = await service.create_from_detection(make_detection())
        scheduled = await service.create_from_detection(make_detection())
        await service.snooze(snoozed.id, 1)
        await service.schedule(scheduled.id, utcnow() + timedelta(hours=1))

        status = await get_drift_tick_status(db_session, 15, now=utcnow() + timedelta(days=2))

        assert status.due_snoozed == 1
        assert status.due_scheduled == 1
        assert status.interval_minutes == 15
        assert status.execution_mode == "manual"
        assert status.auto_safe_scenarios == 16
