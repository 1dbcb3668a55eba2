"""Celery tasks for periodic lifecycle work."""

import asyncio
from typing import Any, Awaitable, Callable

import structlog

from costguard.core.config import settings
from costguard.core.database import Database
from costguard.core.errors import StoreNotConfigured
from costguard.services.action_executor import ActionExecutor
from costguard.services.control_plane import build_control_plane
from costguard.services.detector import HttpDetectorClient
from costguard.services.recommender import RecommendationService
from costguard.services.scheduler import AUTOMATED, run_drift_tick
from costguard.workers.celery_app import celery_app

logger = structlog.get_logger()


def _run(coro_factory: Callable[[], Awaitable[dict[str, Any]]]) -> dict[str, Any]:
    # Get or create event loop for Celery solo pool
    try:
        loop = asyncio.get_event_loop()
        if loop.is_closed():
            loop = asyncio.new_event_loop()
            asyncio.set_event_loop(loop)
    except RuntimeError:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)

    return loop.run_until_complete(coro_factory())


def _open_database() -> Database:
    database = Database.from_settings(settings)
    if database is None:
        raise StoreNotConfigured()
    return database


@celery_app.task(name="costguard.workers.tasks.run_drift_tick_task")
def run_drift_tick_task() -> dict[str, Any]:
    """
    Periodic sweep: unsnooze due items, execute due scheduled ones and, in
    automated mode, run auto-safe detections.

    Returns:
        The DriftTickResult as a JSON-compatible dict
    """
    return _run(_run_drift_tick_async)


async def _run_drift_tick_async() -> dict[str, Any]:
    database = _open_database()
    try:
        control_plane = build_control_plane(settings, database.session_factory)
        async with database.session() as db:
            executor = None
            if control_plane is not None:
                executor = ActionExecutor(
                    db,
                    control_plane,
                    timeout_seconds=settings.CONTROL_PLANE_TIMEOUT_SECONDS,
                    executed_by=settings.EXECUTED_BY_DEFAULT,
                )
            service = RecommendationService(db, executor=executor)
            result = await run_drift_tick(
                db,
                service,
                expiry_days=settings.RECOMMENDATION_EXPIRY_DAYS,
                detector=HttpDetectorClient.from_settings(settings),
                auto_execute=settings.EXECUTION_MODE == AUTOMATED,
            )
            return result.model_dump(mode="json")
    finally:
        await database.dispose()


@celery_app.task(name="costguard.workers.tasks.generate_recommendations")
def generate_recommendations() -> dict[str, Any]:
    """Pull detections from the configured detector and create recommendations."""
    return _run(_generate_recommendations_async)


async def _generate_recommendations_async() -> dict[str, Any]:
    detector = HttpDetectorClient.from_settings(settings)
    if detector is None:
        logger.warning("tasks.generate_skipped", reason="detector_not_configured")
        return {"status": "skipped", "reason": "No detector configured"}

    database = _open_database()
    try:
        async with database.session() as db:
            service = RecommendationService(db)
            result = await service.generate(detector)
            logger.info(
                "tasks.generate_completed",
                created=result.success_count,
                skipped=result.skipped_count,
            )
            return result.model_dump(mode="json")
    finally:
        await database.dispose()
