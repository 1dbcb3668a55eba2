"""Tests for the action executor."""

import pytest

from costguard.crud import action_audit_log as audit_crud
from costguard.schemas.action import ExecuteActionParams
from costguard.services.action_executor import DEFAULT_EXECUTOR, ActionExecutor


@pytest.fixture
def params() -> ExecuteActionParams:
    return ExecuteActionParams(
        action="stop_rds",
        resource_type="rds_instances",
        resource_id="db-1",
        resource_name="orders-db",
        detection_id="det-1",
        scenario_id="idle_rds",
        details={"region": "us-east-1"},
    )


class TestExecuteAction:
    """Test that every call yields a result and exactly one audit entry."""

    @pytest.mark.asyncio
    async def test_success_recorded(self, db_session, control_plane, params):
        executor = ActionExecutor(db_session, control_plane)

        result = await executor.execute_action(params)

        assert result.success is True
        assert result.previous_state == {"status": "available"}
        assert result.new_state == {"status": "stopped"}
        assert control_plane.calls[0]["details"] == {"region": "us-east-1"}

        entries = await audit_crud.get_audit_entries(db_session)
        assert len(entries) == 1
        assert entries[0].success is True
        assert entries[0].executed_by == DEFAULT_EXECUTOR
        assert entries[0].detection_id == "det-1"

    @pytest.mark.asyncio
    async def test_control_plane_error_becomes_failed_result(self, db_session, control_plane, params):
        control_plane.fail_with = "AccessDenied"
        executor = ActionExecutor(db_session, control_plane)

        result = await executor.execute_action(params, executed_by="alice")

        assert result.success is False
        assert result.message == "AccessDenied"
        entries = await audit_crud.get_audit_entries(db_session)
        assert len(entries) == 1
        assert entries[0].success is False
        assert entries[0].executed_by == "alice"

    @pytest.mark.asyncio
    async def test_timeout_becomes_failed_result(self, db_session, control_plane, params):
        control_plane.delay = 0.5
        executor = ActionExecutor(db_session, control_plane, timeout_seconds=0.05)

        result = await executor.execute_action(params)

        assert result.success is False
        assert "timed out" in result.message
        assert len(await audit_crud.get_audit_entries(db_session, success=False)) == 1

    @pytest.mark.asyncio
    async def test_unexpected_exception_does_not_escape(self, db_session, control_plane, params, monkeypatch):
        async def boom(*args, **kwargs):
            raise RuntimeError("socket closed")

        monkeypatch.setattr(control_plane, "apply", boom)
        executor = ActionExecutor(db_session, control_plane)

        result = await executor.execute_action(params)

        assert result.success is False
        assert result.message == "socket closed"
        assert len(await audit_crud.get_audit_entries(db_session)) == 1
