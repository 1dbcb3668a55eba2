"""Drift tick API endpoints (manual trigger and status)."""

from typing import Annotated

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from costguard.api.deps import get_db, get_detector, get_recommendation_service
from costguard.core.config import settings
from costguard.core.rate_limit import drift_tick_limit
from costguard.schemas.drift_tick import DriftTickRequest, DriftTickResult, DriftTickStatus
from costguard.services.detector import DetectorClient
from costguard.services.recommender import RecommendationService
from costguard.services.scheduler import AUTOMATED, get_drift_tick_status, run_drift_tick

router = APIRouter()


@router.post("", response_model=DriftTickResult)
@drift_tick_limit
async def trigger_drift_tick(
    request: Request,
    response: Response,
    db: Annotated[AsyncSession, Depends(get_db)],
    service: Annotated[RecommendationService, Depends(get_recommendation_service)],
    detector: Annotated[DetectorClient | None, Depends(get_detector)],
    body: DriftTickRequest | None = None,
) -> DriftTickResult:
    """
    Run one sweep now instead of waiting for the beat schedule.

    `auto_execute` overrides EXECUTION_MODE for this run only.
    """
    if body is not None and body.auto_execute is not None:
        auto_execute = body.auto_execute
    else:
        auto_execute = settings.EXECUTION_MODE == AUTOMATED

    return await run_drift_tick(
        db,
        service,
        expiry_days=settings.RECOMMENDATION_EXPIRY_DAYS,
        detector=detector,
        auto_execute=auto_execute,
    )


@router.get("", response_model=DriftTickStatus)
async def drift_tick_status(db: Annotated[AsyncSession, Depends(get_db)]) -> DriftTickStatus:
    """How many snoozed and scheduled recommendations are currently due."""
    return await get_drift_tick_status(db, settings.DRIFT_TICK_INTERVAL_MINUTES, settings.EXECUTION_MODE)
