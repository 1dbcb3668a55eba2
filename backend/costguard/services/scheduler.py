"""Drift tick: periodic sweep resolving snooze expiry, scheduled execution and auto-safe actions."""

import uuid
from datetime import datetime, timedelta

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from costguard.core.errors import ConcurrentExecution, EngineError, StoreError
from costguard.core.time import utcnow
from costguard.crud import recommendation as recommendation_crud
from costguard.schemas.batch import BatchItemOutcome, BatchResult, OutcomeStatus
from costguard.schemas.drift_tick import DriftTickResult, DriftTickStatus
from costguard.services.auto_safe import AutoSafeRun, auto_safe_scenario_ids, run_auto_safe
from costguard.services.detector import DetectorClient
from costguard.services.recommender import RecommendationService

logger = structlog.get_logger()

SCHEDULER_ACTOR = "scheduler"
MANUAL = "manual"
AUTOMATED = "automated"


async def run_drift_tick(
    db: AsyncSession,
    service: RecommendationService,
    now: datetime | None = None,
    expiry_days: int | None = None,
    detector: DetectorClient | None = None,
    auto_execute: bool = False,
) -> DriftTickResult:
    """
    Run one sweep.

    1. Snoozed recommendations whose snooze ended strictly before `now` go back to pending.
    2. Scheduled recommendations due strictly before `now` are executed one
       at a time. Items claimed by another worker are skipped and per-item
       failures never stop the sweep.
    3. With `auto_execute`, the detector runs and every auto-safe detection
       on a resource whose policy is auto_safe is executed directly.
    4. When `expiry_days` is set, pending/snoozed recommendations older than
       that are expired.

    Args:
        db: Database session
        service: Recommendation service with an executor attached
        now: Sweep time (defaults to the current UTC time)
        expiry_days: Age after which untouched recommendations expire
        detector: Detector queried in automated mode
        auto_execute: Run the auto-safe phase

    Returns:
        DriftTickResult with per-phase counts
    """
    now = now or utcnow()
    worker = f"{SCHEDULER_ACTOR}:{uuid.uuid4().hex[:12]}"
    log = logger.bind(worker=worker)

    unsnoozed = await recommendation_crud.unsnooze_due(db, now)
    if unsnoozed:
        log.info("drift_tick.unsnoozed", count=unsnoozed)

    outcomes: list[BatchItemOutcome] = []
    for recommendation_id in await recommendation_crud.get_due_scheduled_ids(db, now):
        outcomes.append(await _execute_due(db, service, recommendation_id, worker, now))

    executions = BatchResult.fold(outcomes)

    auto_safe = AutoSafeRun()
    detection_error = None
    if auto_execute:
        auto_safe, detection_error = await _run_auto_safe_phase(db, service, detector)

    expired = 0
    if expiry_days:
        expired = await recommendation_crud.expire_stale(db, now - timedelta(days=expiry_days))
        if expired:
            log.info("drift_tick.expired", count=expired, expiry_days=expiry_days)

    result = DriftTickResult(
        ran_at=now,
        execution_mode=AUTOMATED if auto_execute else MANUAL,
        unsnoozed=unsnoozed,
        executed=executions.success_count,
        failed=executions.fail_count,
        skipped=executions.skipped_count,
        expired=expired,
        executions=executions,
        detections=auto_safe.detections,
        auto_safe_detections=auto_safe.auto_safe_detections,
        auto_safe_savings=auto_safe.auto_safe_savings,
        auto_safe=auto_safe.executions,
        detection_error=detection_error,
    )
    log.info(
        "drift_tick.completed",
        execution_mode=result.execution_mode,
        unsnoozed=result.unsnoozed,
        executed=result.executed,
        failed=result.failed,
        skipped=result.skipped,
        auto_safe_executed=result.auto_safe.success_count,
        expired=result.expired,
    )
    return result


async def _execute_due(
    db: AsyncSession,
    service: RecommendationService,
    recommendation_id: uuid.UUID,
    worker: str,
    now: datetime,
) -> BatchItemOutcome:
    item_id = str(recommendation_id)

    try:
        claimed = await recommendation_crud.claim_for_execution(
            db, recommendation_id, worker, now, service.lease_seconds
        )
        if not claimed:
            return BatchItemOutcome(
                item_id=item_id, status=OutcomeStatus.SKIPPED, message="claimed by another worker"
            )
        _, result = await service.execute(recommendation_id, actioned_by=SCHEDULER_ACTOR, worker_id=worker)
    except ConcurrentExecution as e:
        await _release(db, recommendation_id, worker)
        return BatchItemOutcome(item_id=item_id, status=OutcomeStatus.SKIPPED, message=e.message)
    except EngineError as e:
        return await _item_failed(db, recommendation_id, worker, e.message)
    except SQLAlchemyError as e:
        await db.rollback()
        return await _item_failed(db, recommendation_id, worker, str(e))

    if result.success:
        return BatchItemOutcome(item_id=item_id, status=OutcomeStatus.SUCCESS, message=result.message)
    return BatchItemOutcome(item_id=item_id, status=OutcomeStatus.FAILED, message=result.message)


async def _item_failed(
    db: AsyncSession, recommendation_id: uuid.UUID, worker: str, message: str
) -> BatchItemOutcome:
    logger.warning("drift_tick.item_failed", recommendation_id=str(recommendation_id), error=message)
    await _release(db, recommendation_id, worker)
    return BatchItemOutcome(item_id=str(recommendation_id), status=OutcomeStatus.FAILED, message=message)


async def _release(db: AsyncSession, recommendation_id: uuid.UUID, worker: str) -> None:
    # An unreleased lease expires after EXECUTION_LEASE_SECONDS
    try:
        await recommendation_crud.release_claim(db, recommendation_id, worker)
    except StoreError as e:
        logger.warning("drift_tick.release_failed", recommendation_id=str(recommendation_id), error=e.message)


async def _run_auto_safe_phase(
    db: AsyncSession, service: RecommendationService, detector: DetectorClient | None
) -> tuple[AutoSafeRun, str | None]:
    if detector is None:
        logger.warning("drift_tick.auto_safe_skipped", reason="detector_not_configured")
        return AutoSafeRun(), "No detector configured"

    try:
        result = await detector.detect_all()
    except EngineError as e:
        logger.warning("drift_tick.detection_failed", error=e.message)
        return AutoSafeRun(), e.message

    return await run_auto_safe(db, service.executor, result.detections), None


async def get_drift_tick_status(
    db: AsyncSession,
    interval_minutes: int,
    execution_mode: str = MANUAL,
    now: datetime | None = None,
) -> DriftTickStatus:
    now = now or utcnow()
    due_snoozed, due_scheduled = await recommendation_crud.count_due(db, now)
    return DriftTickStatus(
        checked_at=now,
        due_snoozed=due_snoozed,
        due_scheduled=due_scheduled,
        interval_minutes=interval_minutes,
        execution_mode=execution_mode,
        auto_safe_scenarios=len(auto_safe_scenario_ids()),
    )
