"""Recommendation lifecycle API endpoints."""

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request, Response, status

from costguard.api.deps import get_detector, get_recommendation_service
from costguard.core.errors import InputValidationError
from costguard.core.rate_limit import execute_limit
from costguard.models.recommendation import RecommendationStatus
from costguard.schemas.batch import BatchItemOutcome, BatchResult, OutcomeStatus
from costguard.schemas.recommendation import (
    ActorRequest,
    CreateRecommendationsRequest,
    ExecuteAllRequest,
    ExecuteResponse,
    ExplainResponse,
    Recommendation,
    RecommendationBatchResult,
    RecommendationSummary,
    RecommendationUpdate,
    RejectRequest,
    ScheduleRequest,
    SnoozeRequest,
)
from costguard.services.detector import DetectorClient
from costguard.services.recommender import RecommendationService

router = APIRouter()

Service = Annotated[RecommendationService, Depends(get_recommendation_service)]


def parse_status_filter(raw: str | None) -> list[RecommendationStatus] | None:
    """Parse "pending" or "pending,approved" into statuses."""
    if not raw:
        return None
    statuses = []
    for part in raw.split(","):
        part = part.strip().lower()
        if not part:
            continue
        try:
            statuses.append(RecommendationStatus(part))
        except ValueError:
            raise InputValidationError(f"Invalid status filter: {part}") from None
    return statuses or None


@router.get("", response_model=list[Recommendation])
async def list_recommendations(
    service: Service,
    status_filter: Annotated[str | None, Query(alias="status")] = None,
    scenario_id: str | None = None,
    resource_type: str | None = None,
    impact_level: str | None = None,
    limit: Annotated[int, Query(ge=1, le=500)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> list[Recommendation]:
    """
    List recommendations, newest first.

    Args:
        status_filter: One status or a comma-separated list
        scenario_id: Optional scenario filter
        resource_type: Optional resource type filter
        impact_level: Optional impact level filter
        limit: Page size
        offset: Rows to skip
    """
    recommendations = await service.list_recommendations(
        statuses=parse_status_filter(status_filter),
        scenario_id=scenario_id,
        resource_type=resource_type,
        impact_level=impact_level,
        offset=offset,
        limit=limit,
    )
    return [Recommendation.model_validate(r) for r in recommendations]


@router.get("/summary", response_model=RecommendationSummary)
async def get_recommendation_summary(service: Service) -> RecommendationSummary:
    """Counts per status and savings breakdowns."""
    return await service.get_summary()


@router.post("", response_model=RecommendationBatchResult, status_code=status.HTTP_201_CREATED)
async def create_recommendations(
    body: CreateRecommendationsRequest,
    service: Service,
    detector: Annotated[DetectorClient | None, Depends(get_detector)],
) -> RecommendationBatchResult:
    """
    Create recommendations from detections.

    The body carries exactly one source:
    - `generate: true` runs the configured detector
    - `detection` creates a single recommendation (title/description may be overridden)
    - `detections` creates a batch in one transaction

    Skipped detections (non-approval mode, duplicates) are reported per item.
    """
    if body.generate:
        if detector is None:
            raise InputValidationError("No detector configured")
        return await service.generate(detector)

    if body.detection is not None:
        detection = body.detection
        created = await service.create_from_detection(
            detection,
            title=body.title,
            description=body.description,
            ai_explanation=body.ai_explanation,
        )
        if created is None:
            return RecommendationBatchResult(
                results=[BatchItemOutcome(item_id=detection.id, status=OutcomeStatus.SKIPPED, message="skipped")]
            )
        return RecommendationBatchResult(
            results=[BatchItemOutcome(item_id=detection.id, status=OutcomeStatus.SUCCESS, message="created")],
            created=[Recommendation.model_validate(created)],
        )

    return await service.create_from_detections(body.detections or [])


@router.post("/execute-all", response_model=BatchResult)
@execute_limit
async def execute_all_recommendations(
    request: Request,
    response: Response,
    service: Service,
    body: ExecuteAllRequest | None = None,
) -> BatchResult:
    """
    Execute the given recommendations (or every approved one) sequentially.

    Per-item failures are reported in the result and never abort the batch.
    """
    body = body or ExecuteAllRequest()
    return await service.execute_all(body.recommendation_ids, actioned_by=body.actioned_by)


@router.get("/{recommendation_id}", response_model=Recommendation)
async def get_recommendation(recommendation_id: uuid.UUID, service: Service) -> Recommendation:
    return Recommendation.model_validate(await service.get(recommendation_id))


@router.post("/{recommendation_id}/approve", response_model=Recommendation)
async def approve_recommendation(
    recommendation_id: uuid.UUID,
    service: Service,
    body: ActorRequest | None = None,
) -> Recommendation:
    """Approve a pending, snoozed or scheduled recommendation."""
    body = body or ActorRequest()
    return Recommendation.model_validate(await service.approve(recommendation_id, actioned_by=body.actioned_by))


@router.post("/{recommendation_id}/reject", response_model=Recommendation)
async def reject_recommendation(
    recommendation_id: uuid.UUID,
    service: Service,
    body: RejectRequest | None = None,
) -> Recommendation:
    body = body or RejectRequest()
    recommendation = await service.reject(recommendation_id, reason=body.reason, actioned_by=body.actioned_by)
    return Recommendation.model_validate(recommendation)


@router.post("/{recommendation_id}/snooze", response_model=Recommendation)
async def snooze_recommendation(
    recommendation_id: uuid.UUID,
    body: SnoozeRequest,
    service: Service,
) -> Recommendation:
    """Snooze a pending recommendation for 1 to 30 days."""
    recommendation = await service.snooze(recommendation_id, body.days, actioned_by=body.actioned_by)
    return Recommendation.model_validate(recommendation)


@router.post("/{recommendation_id}/schedule", response_model=Recommendation)
async def schedule_recommendation(
    recommendation_id: uuid.UUID,
    body: ScheduleRequest,
    service: Service,
) -> Recommendation:
    """Schedule execution at a future time (ISO-8601)."""
    recommendation = await service.schedule(recommendation_id, body.scheduled_for, actioned_by=body.actioned_by)
    return Recommendation.model_validate(recommendation)


@router.post("/{recommendation_id}/execute", response_model=ExecuteResponse)
@execute_limit
async def execute_recommendation(
    request: Request,
    response: Response,
    recommendation_id: uuid.UUID,
    service: Service,
    body: ActorRequest | None = None,
) -> ExecuteResponse:
    """
    Execute an approved or scheduled recommendation against the control plane.

    A failed action still returns 200: the recommendation stays approved and
    `result.success` is false. Rate limited.

    Raises:
        IllegalTransition (400): If the recommendation is not executable
        ConcurrentExecution (409): If another worker is executing it
    """
    body = body or ActorRequest()
    recommendation, result = await service.execute(recommendation_id, actioned_by=body.actioned_by)
    return ExecuteResponse(recommendation=Recommendation.model_validate(recommendation), result=result)


@router.post("/{recommendation_id}/explain", response_model=ExplainResponse)
async def explain_recommendation(recommendation_id: uuid.UUID, service: Service) -> ExplainResponse:
    """Generate and store a plain-language explanation (best effort)."""
    text = await service.explain(recommendation_id)
    return ExplainResponse(recommendation_id=recommendation_id, ai_explanation=text)


@router.patch("/{recommendation_id}", response_model=Recommendation)
async def update_recommendation(
    recommendation_id: uuid.UUID,
    body: RecommendationUpdate,
    service: Service,
) -> Recommendation:
    """
    Update notes and/or status.

    Status changes follow the transition table unless `override` is set.
    """
    recommendation = await service.update(
        recommendation_id,
        user_notes=body.user_notes,
        status=body.status,
        override=body.override,
        actioned_by=body.actioned_by,
    )
    return Recommendation.model_validate(recommendation)


@router.delete("/{recommendation_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_recommendation(recommendation_id: uuid.UUID, service: Service) -> None:
    await service.delete(recommendation_id)
