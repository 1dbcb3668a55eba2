"""API dependencies."""

from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from costguard.core.config import settings
from costguard.core.database import get_db
from costguard.services.action_executor import ActionExecutor
from costguard.services.control_plane import ControlPlaneClient
from costguard.services.detector import DetectorClient
from costguard.services.explainer import Explainer
from costguard.services.recommender import RecommendationService

__all__ = [
    "get_db",
    "get_control_plane",
    "get_detector",
    "get_explainer",
    "get_executor",
    "get_recommendation_service",
]


def get_control_plane(request: Request) -> ControlPlaneClient | None:
    return getattr(request.app.state, "control_plane", None)


def get_detector(request: Request) -> DetectorClient | None:
    return getattr(request.app.state, "detector", None)


def get_explainer(request: Request) -> Explainer | None:
    return getattr(request.app.state, "explainer", None)


def get_executor(
    db: Annotated[AsyncSession, Depends(get_db)],
    control_plane: Annotated[ControlPlaneClient | None, Depends(get_control_plane)],
) -> ActionExecutor | None:
    if control_plane is None:
        return None
    return ActionExecutor(
        db,
        control_plane,
        timeout_seconds=settings.CONTROL_PLANE_TIMEOUT_SECONDS,
        executed_by=settings.EXECUTED_BY_DEFAULT,
    )


def get_recommendation_service(
    db: Annotated[AsyncSession, Depends(get_db)],
    executor: Annotated[ActionExecutor | None, Depends(get_executor)],
    explainer: Annotated[Explainer | None, Depends(get_explainer)],
) -> RecommendationService:
    return RecommendationService(db, executor=executor, explainer=explainer)
