"""Auto-safe execution of mode-2 detections.

A detection is executed without a recommendation only when its scenario is
auto-safe and the resource it targets currently allows it: the inventory row
exists, its policy is auto_safe, and the policy lock would still accept
auto_safe (not manually locked, not production).
"""

from typing import Sequence

import structlog
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from costguard.crud import cloud_resource as cloud_resource_crud
from costguard.models.cloud_resource import OptimizationPolicy
from costguard.schemas.action import ExecuteActionParams
from costguard.schemas.batch import BatchItemOutcome, BatchResult, OutcomeStatus
from costguard.schemas.detection import Detection
from costguard.services.action_executor import ActionExecutor
from costguard.services.policy_lock import can_set_auto_safe, get_lock_reason
from costguard.services.scenarios import get_scenario, get_scenarios_by_mode

logger = structlog.get_logger()

AUTO_SAFE_MODE = 2


class AutoSafeRun(BaseModel):
    """Outcome of one auto-safe pass over a detection result."""

    detections: int = 0
    auto_safe_detections: int = 0
    auto_safe_savings: float = 0.0
    executions: BatchResult = Field(default_factory=BatchResult)


def auto_safe_scenario_ids() -> set[str]:
    return {s.id.value for s in get_scenarios_by_mode(AUTO_SAFE_MODE)}


async def run_auto_safe(
    db: AsyncSession,
    executor: ActionExecutor | None,
    detections: Sequence[Detection],
) -> AutoSafeRun:
    """
    Execute every eligible auto-safe detection, one at a time.

    Detections of approval-required scenarios are ignored. Each auto-safe
    detection yields exactly one outcome; a failure never stops the pass.

    Args:
        db: Database session
        executor: Executor used for the actions (None means no control plane)
        detections: Output of a detector run

    Returns:
        AutoSafeRun with counts and per-detection outcomes
    """
    auto_safe_ids = auto_safe_scenario_ids()
    candidates = [d for d in detections if d.scenario_id in auto_safe_ids]

    outcomes = []
    for detection in candidates:
        outcomes.append(await _execute_detection(db, executor, detection))

    run = AutoSafeRun(
        detections=len(detections),
        auto_safe_detections=len(candidates),
        auto_safe_savings=round(sum(d.potential_savings for d in candidates), 2),
        executions=BatchResult.fold(outcomes),
    )
    logger.info(
        "auto_safe.completed",
        detections=run.detections,
        auto_safe=run.auto_safe_detections,
        executed=run.executions.success_count,
        failed=run.executions.fail_count,
        skipped=run.executions.skipped_count,
    )
    return run


async def _execute_detection(
    db: AsyncSession, executor: ActionExecutor | None, detection: Detection
) -> BatchItemOutcome:
    scenario = get_scenario(detection.scenario_id)
    resource_type = scenario.resource_type.value

    try:
        resource = await cloud_resource_crud.get_resource(db, resource_type, detection.resource_id)
    except SQLAlchemyError as e:
        await db.rollback()
        logger.warning("auto_safe.lookup_failed", detection_id=detection.id, error=str(e))
        return BatchItemOutcome(item_id=detection.id, status=OutcomeStatus.FAILED, message=str(e))

    if resource is None:
        return BatchItemOutcome(item_id=detection.id, status=OutcomeStatus.SKIPPED, message="Resource not found")
    if resource.optimization_policy != OptimizationPolicy.AUTO_SAFE.value:
        return BatchItemOutcome(
            item_id=detection.id,
            status=OutcomeStatus.SKIPPED,
            message=f"Policy is {resource.optimization_policy}",
        )
    if not can_set_auto_safe(resource):
        return BatchItemOutcome(item_id=detection.id, status=OutcomeStatus.SKIPPED, message=get_lock_reason(resource))
    if executor is None:
        return BatchItemOutcome(item_id=detection.id, status=OutcomeStatus.FAILED, message="No control plane configured")

    result = await executor.execute_action(
        ExecuteActionParams(
            action=scenario.action.value,
            resource_type=resource_type,
            resource_id=detection.resource_id,
            resource_name=detection.resource_name,
            detection_id=detection.id,
            scenario_id=detection.scenario_id,
            details={"region": detection.region, **(detection.details or {})},
        )
    )
    status = OutcomeStatus.SUCCESS if result.success else OutcomeStatus.FAILED
    return BatchItemOutcome(item_id=detection.id, status=status, message=result.message)
