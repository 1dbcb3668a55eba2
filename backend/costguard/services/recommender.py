"""Recommendation lifecycle service.

Turns detections into recommendations and drives every status change through
the transition table in `costguard.services.state_machine`.
"""

import uuid
from datetime import datetime, timedelta
from typing import Any, Iterable, Sequence

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from costguard.core.config import settings as app_settings
from costguard.core.errors import (
    ConcurrentExecution,
    EngineError,
    IllegalTransition,
    InputValidationError,
    NotFoundError,
    StoreNotConfigured,
)
from costguard.core.time import to_naive_utc, utcnow
from costguard.crud import recommendation as recommendation_crud
from costguard.models.recommendation import (
    NON_TERMINAL_STATUSES,
    ImpactLevel,
    Recommendation,
    RecommendationStatus,
    RiskLevel,
)
from costguard.schemas.action import ActionResult, ExecuteActionParams
from costguard.schemas.batch import BatchItemOutcome, BatchResult, OutcomeStatus
from costguard.schemas.detection import Detection
from costguard.schemas.recommendation import Recommendation as RecommendationSchema
from costguard.schemas.recommendation import (
    RecommendationBatchResult,
    RecommendationCreate,
    RecommendationSummary,
    SavingsBreakdown,
)
from costguard.services.action_executor import ActionExecutor
from costguard.services.detector import DetectorClient
from costguard.services.explainer import Explainer
from costguard.services.policy_lock import is_production
from costguard.services.scenarios import ResourceType, render_description, render_title
from costguard.services.state_machine import (
    EXECUTABLE_STATUSES,
    RecommendationEvent,
    event_for_target,
    transition,
)

logger = structlog.get_logger()

APPROVAL_MODE = 3
MIN_SNOOZE_DAYS = 1
MAX_SNOOZE_DAYS = 30
DEFAULT_ACTOR = "user"
CREATED_BY = "waste-detector"

_STATEFUL_TYPES = {ResourceType.RDS_INSTANCES.value, ResourceType.CACHE_CLUSTERS.value}


def get_impact_level(potential_savings: float) -> ImpactLevel:
    """Classify monthly savings: >=500 critical, >=200 high, >=50 medium, else low."""
    if potential_savings >= 500:
        return ImpactLevel.CRITICAL
    if potential_savings >= 200:
        return ImpactLevel.HIGH
    if potential_savings >= 50:
        return ImpactLevel.MEDIUM
    return ImpactLevel.LOW


def get_risk_level(env: str | None, resource_type: str) -> RiskLevel:
    """Production is always high risk; stateful stores and staging are medium."""
    if is_production(env):
        return RiskLevel.HIGH
    is_staging = (env or "").strip().lower() == "staging"
    if resource_type in _STATEFUL_TYPES:
        return RiskLevel.MEDIUM if is_staging else RiskLevel.LOW
    if is_staging:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def build_recommendation(
    detection: Detection,
    title: str | None = None,
    description: str | None = None,
    ai_explanation: str | None = None,
) -> RecommendationCreate:
    """Derive the recommendation row for a detection."""
    return RecommendationCreate(
        detection_id=detection.id,
        scenario_id=detection.scenario_id,
        scenario_name=detection.scenario_name,
        resource_type=detection.resource_type,
        resource_id=detection.resource_id,
        resource_name=detection.resource_name,
        account_id=detection.account_id,
        region=detection.region,
        env=detection.env,
        action=detection.action,
        title=title
        or render_title(detection.scenario_id, detection.resource_name, detection.details),
        description=description
        or render_description(
            detection.scenario_id,
            detection.resource_name,
            detection.env,
            detection.potential_savings,
            detection.details,
        ),
        ai_explanation=ai_explanation,
        impact_level=get_impact_level(detection.potential_savings).value,
        confidence=detection.confidence,
        risk_level=get_risk_level(detection.env, detection.resource_type).value,
        current_monthly_cost=detection.monthly_cost,
        potential_savings=detection.potential_savings,
        details=detection.details,
        created_by=CREATED_BY,
    )


def parse_schedule_time(value: Any) -> datetime:
    """
    Parse a schedule time into naive UTC.

    Raises:
        InputValidationError: If the value is not a datetime or ISO-8601 string
    """
    if isinstance(value, datetime):
        return to_naive_utc(value)
    if isinstance(value, str) and value.strip():
        try:
            return to_naive_utc(datetime.fromisoformat(value.strip().replace("Z", "+00:00")))
        except ValueError:
            pass
    raise InputValidationError(f"Invalid schedule time: {value!r}")


def validate_snooze_days(days: Any) -> int:
    if isinstance(days, bool) or not isinstance(days, int):
        raise InputValidationError("Snooze days must be an integer between 1 and 30")
    if not MIN_SNOOZE_DAYS <= days <= MAX_SNOOZE_DAYS:
        raise InputValidationError(f"Snooze days must be between 1 and 30, got {days}")
    return days


class RecommendationService:
    """Creation, lookup and status transitions for recommendations."""

    def __init__(
        self,
        db: AsyncSession,
        executor: ActionExecutor | None = None,
        explainer: Explainer | None = None,
        lease_seconds: int | None = None,
    ) -> None:
        self.db = db
        self.executor = executor
        self.explainer = explainer
        self.lease_seconds = lease_seconds or app_settings.EXECUTION_LEASE_SECONDS

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_from_detections(self, detections: Sequence[Detection]) -> RecommendationBatchResult:
        """
        Create pending recommendations for mode-3 detections.

        Non-approval detections are skipped with reason "mode", detections that
        already have a live recommendation (or repeat inside the batch) with
        reason "duplicate". Survivors are inserted in a single transaction.

        Raises:
            StoreError: If the insert fails; nothing is written
        """
        outcomes: list[BatchItemOutcome] = []
        candidates: list[Detection] = []
        seen: set[str] = set()

        for detection in detections:
            if detection.mode != APPROVAL_MODE:
                outcomes.append(BatchItemOutcome(item_id=detection.id, status=OutcomeStatus.SKIPPED, message="mode"))
            elif detection.id in seen:
                outcomes.append(
                    BatchItemOutcome(item_id=detection.id, status=OutcomeStatus.SKIPPED, message="duplicate")
                )
            else:
                seen.add(detection.id)
                candidates.append(detection)

        existing = await recommendation_crud.get_active_detection_ids(self.db, seen)
        to_create = []
        for detection in candidates:
            if detection.id in existing:
                outcomes.append(
                    BatchItemOutcome(item_id=detection.id, status=OutcomeStatus.SKIPPED, message="duplicate")
                )
            else:
                to_create.append(detection)
                outcomes.append(BatchItemOutcome(item_id=detection.id, status=OutcomeStatus.SUCCESS, message="created"))

        created = await recommendation_crud.create_recommendations(
            self.db, [build_recommendation(d) for d in to_create]
        )

        result = RecommendationBatchResult(
            results=outcomes,
            created=[RecommendationSchema.model_validate(r) for r in created],
        )
        logger.info(
            "recommendation.batch_created",
            received=len(detections),
            created=result.success_count,
            skipped=result.skipped_count,
        )
        return result

    async def create_from_detection(
        self,
        detection: Detection,
        title: str | None = None,
        description: str | None = None,
        ai_explanation: str | None = None,
    ) -> Recommendation | None:
        """
        Create one recommendation, or return None when the detection is skipped.

        Caller-supplied title/description/explanation replace the generated ones.
        """
        if detection.mode != APPROVAL_MODE:
            logger.info("recommendation.skipped_mode", detection_id=detection.id, mode=detection.mode)
            return None

        if await recommendation_crud.get_active_detection_ids(self.db, [detection.id]):
            logger.info("recommendation.deduplicated", detection_id=detection.id)
            return None

        created = await recommendation_crud.create_recommendations(
            self.db, [build_recommendation(detection, title, description, ai_explanation)]
        )
        recommendation = created[0]
        logger.info(
            "recommendation.created",
            recommendation_id=str(recommendation.id),
            detection_id=detection.id,
            impact_level=recommendation.impact_level,
        )
        return recommendation

    async def generate(self, detector: DetectorClient) -> RecommendationBatchResult:
        """Run the detector and create recommendations from its output."""
        result = await detector.detect_all()
        return await self.create_from_detections(result.detections)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    async def get(self, recommendation_id: uuid.UUID) -> Recommendation:
        recommendation = await recommendation_crud.get_recommendation_by_id(
            self.db, recommendation_id, refresh=True
        )
        if recommendation is None:
            raise NotFoundError(f"Recommendation {recommendation_id} not found")
        return recommendation

    async def list_recommendations(
        self,
        statuses: Iterable[RecommendationStatus] | None = None,
        scenario_id: str | None = None,
        resource_type: str | None = None,
        impact_level: str | None = None,
        offset: int = 0,
        limit: int = 50,
    ) -> list[Recommendation]:
        return await recommendation_crud.get_recommendations(
            self.db, statuses, scenario_id, resource_type, impact_level, offset, limit
        )

    async def get_summary(self) -> RecommendationSummary:
        """Counts per status plus savings breakdowns over live recommendations."""
        rows = await recommendation_crud.get_status_aggregates(self.db)

        counts = {s.value: 0 for s in RecommendationStatus}
        pending_like = {
            RecommendationStatus.PENDING.value,
            RecommendationStatus.SNOOZED.value,
            RecommendationStatus.SCHEDULED.value,
        }
        live = {s.value for s in NON_TERMINAL_STATUSES}
        total_savings = pending_savings = 0.0
        by_type: dict[str, list[float]] = {}
        by_scenario: dict[str, list[float]] = {}

        for status, resource_type, scenario_id, count, savings in rows:
            savings = float(savings or 0)
            counts[status] = counts.get(status, 0) + count
            total_savings += savings
            if status in pending_like:
                pending_savings += savings
            if status in live:
                for bucket, key in ((by_type, resource_type), (by_scenario, scenario_id)):
                    entry = bucket.setdefault(key, [0, 0.0])
                    entry[0] += count
                    entry[1] += savings

        def _breakdown(bucket: dict[str, list[float]]) -> list[SavingsBreakdown]:
            items = [
                SavingsBreakdown(key=key, count=int(count), savings=round(savings, 2))
                for key, (count, savings) in bucket.items()
            ]
            return sorted(items, key=lambda item: item.savings, reverse=True)

        return RecommendationSummary(
            total=sum(counts.values()),
            **counts,
            total_potential_savings=round(total_savings, 2),
            pending_savings=round(pending_savings, 2),
            by_resource_type=_breakdown(by_type),
            by_scenario=_breakdown(by_scenario),
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def _apply_event(
        self,
        recommendation: Recommendation,
        event: RecommendationEvent,
        actioned_by: str | None,
        values: dict[str, Any] | None = None,
    ) -> Recommendation:
        current = recommendation.status
        new_status = transition(current, event)
        updated = await recommendation_crud.update_recommendation(
            self.db,
            recommendation,
            {"status": new_status.value, "actioned_by": actioned_by, **(values or {})},
            expected_status=current,
        )
        logger.info(
            f"recommendation.{event.value}",
            recommendation_id=str(recommendation.id),
            from_status=current,
            to_status=new_status.value,
            actioned_by=actioned_by,
        )
        return updated

    async def approve(self, recommendation_id: uuid.UUID, actioned_by: str = DEFAULT_ACTOR) -> Recommendation:
        recommendation = await self.get(recommendation_id)
        return await self._apply_event(
            recommendation, RecommendationEvent.APPROVE, actioned_by, {"snoozed_until": None}
        )

    async def reject(
        self,
        recommendation_id: uuid.UUID,
        reason: str | None = None,
        actioned_by: str = DEFAULT_ACTOR,
    ) -> Recommendation:
        recommendation = await self.get(recommendation_id)
        return await self._apply_event(
            recommendation, RecommendationEvent.REJECT, actioned_by, {"rejection_reason": reason}
        )

    async def snooze(
        self, recommendation_id: uuid.UUID, days: Any, actioned_by: str = DEFAULT_ACTOR
    ) -> Recommendation:
        """
        Hide a pending recommendation for `days` days (integer, 1 to 30).

        Raises:
            InputValidationError: If days is not an integer in range
            IllegalTransition: If the recommendation is not pending
        """
        days = validate_snooze_days(days)
        recommendation = await self.get(recommendation_id)
        return await self._apply_event(
            recommendation,
            RecommendationEvent.SNOOZE,
            actioned_by,
            {"snoozed_until": utcnow() + timedelta(days=days)},
        )

    async def schedule(
        self, recommendation_id: uuid.UUID, when: Any, actioned_by: str = DEFAULT_ACTOR
    ) -> Recommendation:
        """
        Schedule execution for a future time; the drift tick executes it once due.

        Raises:
            InputValidationError: If `when` is unparseable or not in the future
            IllegalTransition: If the recommendation is not pending or approved
        """
        scheduled_for = parse_schedule_time(when)
        if scheduled_for <= utcnow():
            raise InputValidationError("Scheduled time must be in the future")

        recommendation = await self.get(recommendation_id)
        return await self._apply_event(
            recommendation, RecommendationEvent.SCHEDULE, actioned_by, {"scheduled_for": scheduled_for}
        )

    async def execute(
        self,
        recommendation_id: uuid.UUID,
        actioned_by: str = DEFAULT_ACTOR,
        worker_id: str | None = None,
    ) -> tuple[Recommendation, ActionResult]:
        """
        Execute an approved or scheduled recommendation.

        Success moves it to executed; failure leaves it approved with no schedule. Either way
        the execution result is stored and one audit entry is written.

        Raises:
            IllegalTransition: If the recommendation is not executable (no side effects)
            ConcurrentExecution: If another worker holds the execution lease
        """
        recommendation = await self.get(recommendation_id)
        if RecommendationStatus(recommendation.status) not in EXECUTABLE_STATUSES:
            raise IllegalTransition(recommendation.status, "execute")
        if self.executor is None:
            raise StoreNotConfigured("No control plane configured")

        worker = worker_id or f"{actioned_by}:{uuid.uuid4().hex[:12]}"
        claimed = await recommendation_crud.claim_for_execution(
            self.db, recommendation.id, worker, utcnow(), self.lease_seconds
        )
        if not claimed:
            raise ConcurrentExecution(f"Recommendation {recommendation_id} is already being executed")

        try:
            recommendation = await recommendation_crud.get_recommendation_by_id(
                self.db, recommendation_id, refresh=True
            )
            if recommendation is None:
                raise NotFoundError(f"Recommendation {recommendation_id} not found")

            result = await self.executor.execute_action(
                ExecuteActionParams(
                    action=recommendation.action,
                    resource_type=recommendation.resource_type,
                    resource_id=recommendation.resource_id,
                    resource_name=recommendation.resource_name,
                    detection_id=recommendation.detection_id,
                    scenario_id=recommendation.scenario_id,
                    details={"region": recommendation.region, **(recommendation.details or {})},
                ),
                executed_by=actioned_by,
            )

            values: dict[str, Any] = {
                "execution_result": result.model_dump(mode="json"),
                "claimed_by": None,
                "claim_expires_at": None,
            }
            if result.success:
                values["executed_at"] = result.executed_at
            else:
                values["scheduled_for"] = None
            event = RecommendationEvent.EXECUTE_SUCCEEDED if result.success else RecommendationEvent.EXECUTE_FAILED
            recommendation = await self._apply_event(recommendation, event, actioned_by, values)
        except Exception:
            await recommendation_crud.release_claim(self.db, recommendation_id, worker)
            raise

        return recommendation, result

    async def execute_all(
        self,
        recommendation_ids: Sequence[uuid.UUID] | None = None,
        actioned_by: str = DEFAULT_ACTOR,
    ) -> BatchResult:
        """
        Execute several recommendations one at a time.

        With no ids, every approved recommendation is executed. Each item's
        outcome is folded into the result; one failure never stops the batch.
        """
        if recommendation_ids is None:
            approved = await recommendation_crud.get_recommendations(
                self.db, statuses=[RecommendationStatus.APPROVED], limit=None
            )
            recommendation_ids = [r.id for r in approved]

        outcomes: list[BatchItemOutcome] = []
        for recommendation_id in recommendation_ids:
            item_id = str(recommendation_id)
            try:
                _, result = await self.execute(recommendation_id, actioned_by=actioned_by)
            except ConcurrentExecution as e:
                outcomes.append(BatchItemOutcome(item_id=item_id, status=OutcomeStatus.SKIPPED, message=e.message))
                continue
            except EngineError as e:
                outcomes.append(BatchItemOutcome(item_id=item_id, status=OutcomeStatus.FAILED, message=e.message))
                continue
            except SQLAlchemyError as e:
                await self.db.rollback()
                logger.warning("recommendation.execute_store_error", recommendation_id=item_id, error=str(e))
                outcomes.append(BatchItemOutcome(item_id=item_id, status=OutcomeStatus.FAILED, message=str(e)))
                continue
            status = OutcomeStatus.SUCCESS if result.success else OutcomeStatus.FAILED
            outcomes.append(BatchItemOutcome(item_id=item_id, status=status, message=result.message))

        batch = BatchResult.fold(outcomes)
        logger.info(
            "recommendation.batch_executed",
            executed=batch.success_count,
            failed=batch.fail_count,
            skipped=batch.skipped_count,
        )
        return batch

    async def update(
        self,
        recommendation_id: uuid.UUID,
        user_notes: str | None = None,
        status: RecommendationStatus | str | None = None,
        override: bool = False,
        actioned_by: str | None = None,
    ) -> Recommendation:
        """
        Update notes and/or status.

        A status change must be reachable from the current status by a single
        event (snooze and schedule need their own endpoints). `override=True`
        is an administrative escape hatch that writes any status and is logged.
        """
        recommendation = await self.get(recommendation_id)
        values: dict[str, Any] = {}
        if user_notes is not None:
            values["user_notes"] = user_notes

        if status is not None and RecommendationStatus(status).value != recommendation.status:
            target = RecommendationStatus(status)
            if override:
                logger.warning(
                    "recommendation.status_override",
                    recommendation_id=str(recommendation.id),
                    from_status=recommendation.status,
                    to_status=target.value,
                    actioned_by=actioned_by,
                )
            else:
                event = event_for_target(recommendation.status, target)
                if event is None:
                    raise IllegalTransition(recommendation.status, f"move to '{target.value}'")
                if event in (RecommendationEvent.SNOOZE, RecommendationEvent.SCHEDULE):
                    raise InputValidationError(f"Use the {event.value} operation to set status '{target.value}'")
                if event == RecommendationEvent.UNSNOOZE:
                    values["snoozed_until"] = None
            values["status"] = target.value
            values["actioned_by"] = actioned_by or DEFAULT_ACTOR

        if not values:
            return recommendation

        return await recommendation_crud.update_recommendation(
            self.db,
            recommendation,
            values,
            expected_status=recommendation.status if "status" in values else None,
        )

    async def delete(self, recommendation_id: uuid.UUID) -> None:
        recommendation = await self.get(recommendation_id)
        await recommendation_crud.delete_recommendation(self.db, recommendation)
        logger.info("recommendation.deleted", recommendation_id=str(recommendation_id))

    async def explain(self, recommendation_id: uuid.UUID) -> str | None:
        """Best-effort explanation; never changes status and returns None on failure."""
        recommendation = await self.get(recommendation_id)
        if self.explainer is None:
            return None

        text = await self.explainer.explain(recommendation)
        if text:
            await recommendation_crud.update_recommendation(self.db, recommendation, {"ai_explanation": text})
        return text
