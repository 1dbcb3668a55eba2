"""Action executor: runs one control-plane action and records it in the audit log."""

import asyncio
import time

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from costguard.core.time import utcnow
from costguard.crud import action_audit_log as audit_crud
from costguard.schemas.action import ActionResult, ExecuteActionParams
from costguard.schemas.audit import AuditLogCreate
from costguard.services.control_plane import ControlPlaneClient

logger = structlog.get_logger()

DEFAULT_EXECUTOR = "auto-safe-agent"


class ActionExecutor:
    """
    Executes optimization actions against a control plane.

    `execute_action` never raises: control-plane errors and timeouts come back
    as an ActionResult with success=False, and exactly one audit entry is
    written per call.
    """

    def __init__(
        self,
        db: AsyncSession,
        control_plane: ControlPlaneClient,
        timeout_seconds: float | None = 30.0,
        executed_by: str = DEFAULT_EXECUTOR,
    ) -> None:
        self.db = db
        self.control_plane = control_plane
        self.timeout_seconds = timeout_seconds
        self.executed_by = executed_by

    async def execute_action(self, params: ExecuteActionParams, executed_by: str | None = None) -> ActionResult:
        """
        Execute one action.

        Args:
            params: What to do and to which resource
            executed_by: Actor recorded in the audit log (defaults to the executor's)

        Returns:
            ActionResult describing the outcome
        """
        started = time.perf_counter()
        log = logger.bind(
            action=params.action,
            resource_type=params.resource_type,
            resource_id=params.resource_id,
            control_plane=self.control_plane.name,
        )
        log.info("executor.action_started")

        success = False
        previous_state = new_state = None
        try:
            outcome = await asyncio.wait_for(
                self.control_plane.apply(
                    params.resource_type, params.action, params.resource_id, params.details
                ),
                timeout=self.timeout_seconds,
            )
            success = outcome.success
            message = outcome.message
            previous_state, new_state = outcome.previous_state, outcome.new_state
        except asyncio.TimeoutError:
            message = f"Control plane call timed out after {self.timeout_seconds}s"
        except Exception as e:
            # Every failure becomes a recorded, unsuccessful result
            message = getattr(e, "message", None) or str(e) or e.__class__.__name__

        result = ActionResult(
            success=success,
            action=params.action,
            resource_id=params.resource_id,
            resource_type=params.resource_type,
            message=message,
            previous_state=previous_state,
            new_state=new_state,
            executed_at=utcnow(),
            duration_ms=round((time.perf_counter() - started) * 1000),
        )

        if result.success:
            log.info("executor.action_succeeded", duration_ms=result.duration_ms)
        else:
            log.warning("executor.action_failed", error=message, duration_ms=result.duration_ms)

        await self._record(params, result, executed_by or self.executed_by)
        return result

    async def _record(self, params: ExecuteActionParams, result: ActionResult, executed_by: str) -> None:
        entry = AuditLogCreate(
            action=params.action,
            resource_type=params.resource_type,
            resource_id=params.resource_id,
            resource_name=params.resource_name,
            scenario_id=params.scenario_id,
            detection_id=params.detection_id,
            success=result.success,
            message=result.message,
            previous_state=result.previous_state,
            new_state=result.new_state,
            executed_at=result.executed_at,
            duration_ms=result.duration_ms,
            executed_by=executed_by,
        )
        try:
            await audit_crud.create_audit_entry(self.db, entry)
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(
                "executor.audit_write_failed",
                action=params.action,
                resource_id=params.resource_id,
                error=str(e),
            )
