"""CRUD operations for recommendations."""

import uuid
from datetime import datetime, timedelta
from typing import Any, Iterable

import structlog
from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from costguard.core.errors import ConcurrentExecution, NotFoundError, StoreError
from costguard.models.recommendation import (
    NON_TERMINAL_STATUSES,
    Recommendation,
    RecommendationStatus,
)
from costguard.schemas.recommendation import RecommendationCreate
from costguard.services.state_machine import EXECUTABLE_STATUSES

logger = structlog.get_logger()

_NON_TERMINAL = [s.value for s in NON_TERMINAL_STATUSES]


async def _write(db: AsyncSession, stmt: Any, what: str) -> Any:
    """Execute and commit one write, turning driver errors into StoreError."""
    try:
        result = await db.execute(stmt)
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("recommendation.write_failed", operation=what, error=str(exc))
        raise StoreError(f"Failed to {what}: {exc}") from exc
    return result


async def create_recommendations(
    db: AsyncSession, items_in: list[RecommendationCreate]
) -> list[Recommendation]:
    """
    Insert several recommendations in one transaction.

    Args:
        db: Database session
        items_in: Rows to insert

    Returns:
        Created recommendation objects

    Raises:
        StoreError: If any insert fails; nothing is written in that case
    """
    recommendations = [Recommendation(**item.model_dump(mode="json")) for item in items_in]
    if not recommendations:
        return []

    db.add_all(recommendations)
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        logger.warning("recommendation.insert_conflict", count=len(recommendations), error=str(exc.orig))
        raise StoreError(
            "A live recommendation already exists for one of these detections; retry the batch"
        ) from exc
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("recommendation.insert_failed", count=len(recommendations), error=str(exc))
        raise StoreError(f"Failed to insert recommendations: {exc}") from exc

    return recommendations


async def get_recommendation_by_id(
    db: AsyncSession, recommendation_id: uuid.UUID, refresh: bool = False
) -> Recommendation | None:
    """
    Get recommendation by ID.

    Args:
        db: Database session
        recommendation_id: Recommendation UUID
        refresh: Overwrite any stale copy held in the session's identity map

    Returns:
        Recommendation object or None if not found
    """
    stmt = select(Recommendation).where(Recommendation.id == recommendation_id)
    if refresh:
        stmt = stmt.execution_options(populate_existing=True)
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def get_recommendations(
    db: AsyncSession,
    statuses: Iterable[RecommendationStatus] | None = None,
    scenario_id: str | None = None,
    resource_type: str | None = None,
    impact_level: str | None = None,
    skip: int = 0,
    limit: int | None = 50,
) -> list[Recommendation]:
    """
    List recommendations, newest first.

    Args:
        db: Database session
        statuses: Optional set of statuses to include
        scenario_id: Optional scenario filter
        resource_type: Optional resource type filter
        impact_level: Optional impact level filter
        skip: Number of records to skip
        limit: Maximum number of records to return (None for all)

    Returns:
        List of recommendation objects
    """
    query = select(Recommendation)
    if statuses:
        query = query.where(Recommendation.status.in_([RecommendationStatus(s).value for s in statuses]))
    if scenario_id:
        query = query.where(Recommendation.scenario_id == scenario_id)
    if resource_type:
        query = query.where(Recommendation.resource_type == resource_type)
    if impact_level:
        query = query.where(Recommendation.impact_level == impact_level)

    query = query.order_by(Recommendation.created_at.desc(), Recommendation.id).offset(skip)
    if limit is not None:
        query = query.limit(limit)
    result = await db.execute(query)
    return list(result.scalars().all())


async def get_active_detection_ids(db: AsyncSession, detection_ids: Iterable[str]) -> set[str]:
    """Return the subset of `detection_ids` that already have a non-terminal recommendation."""
    detection_ids = list(set(detection_ids))
    if not detection_ids:
        return set()

    result = await db.execute(
        select(Recommendation.detection_id).where(
            Recommendation.detection_id.in_(detection_ids),
            Recommendation.status.in_(_NON_TERMINAL),
        )
    )
    return set(result.scalars().all())


async def update_recommendation(
    db: AsyncSession,
    recommendation: Recommendation,
    values: dict[str, Any],
    expected_status: str | None = None,
) -> Recommendation:
    """
    Write `values` to a recommendation.

    When `expected_status` is given the write is conditional on the row still
    holding that status, so two concurrent transitions cannot both win.

    Returns:
        The refreshed recommendation

    Raises:
        ConcurrentExecution: If the row changed status underneath us
        StoreError: If the write failed
    """
    stmt = update(Recommendation).where(Recommendation.id == recommendation.id)
    if expected_status is not None:
        stmt = stmt.where(Recommendation.status == expected_status)
    stmt = stmt.values(**values).execution_options(synchronize_session=False)

    try:
        result = await db.execute(stmt)
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        raise StoreError(f"Failed to update recommendation {recommendation.id}: {exc}") from exc

    if result.rowcount == 0:
        raise ConcurrentExecution(
            f"Recommendation {recommendation.id} was modified concurrently; reload and retry"
        )

    refreshed = await get_recommendation_by_id(db, recommendation.id, refresh=True)
    if refreshed is None:
        raise NotFoundError(f"Recommendation {recommendation.id} not found")
    return refreshed


async def delete_recommendation(db: AsyncSession, recommendation: Recommendation) -> None:
    await _write(
        db,
        delete(Recommendation).where(Recommendation.id == recommendation.id),
        f"delete recommendation {recommendation.id}",
    )


async def claim_for_execution(
    db: AsyncSession,
    recommendation_id: uuid.UUID,
    worker: str,
    now: datetime,
    lease_seconds: int,
) -> bool:
    """
    Atomically take the execution lease.

    The claim succeeds only if the recommendation is executable and no other
    worker holds an unexpired lease.

    Returns:
        True if this worker now holds the lease
    """
    stmt = (
        update(Recommendation)
        .where(
            Recommendation.id == recommendation_id,
            Recommendation.status.in_([s.value for s in EXECUTABLE_STATUSES]),
            or_(
                Recommendation.claimed_by.is_(None),
                Recommendation.claim_expires_at < now,
                Recommendation.claimed_by == worker,
            ),
        )
        .values(claimed_by=worker, claim_expires_at=now + timedelta(seconds=lease_seconds))
        .execution_options(synchronize_session=False)
    )
    result = await _write(db, stmt, f"claim recommendation {recommendation_id}")
    return result.rowcount == 1


async def release_claim(db: AsyncSession, recommendation_id: uuid.UUID, worker: str) -> None:
    await _write(
        db,
        update(Recommendation)
        .where(Recommendation.id == recommendation_id, Recommendation.claimed_by == worker)
        .values(claimed_by=None, claim_expires_at=None)
        .execution_options(synchronize_session=False),
        f"release claim on recommendation {recommendation_id}",
    )


async def unsnooze_due(db: AsyncSession, now: datetime) -> int:
    """
    Move snoozed recommendations whose snooze has passed back to pending.

    Returns:
        Number of recommendations unsnoozed
    """
    result = await _write(
        db,
        update(Recommendation)
        .where(
            Recommendation.status == RecommendationStatus.SNOOZED.value,
            Recommendation.snoozed_until < now,
        )
        .values(status=RecommendationStatus.PENDING.value, snoozed_until=None)
        .execution_options(synchronize_session=False),
        "unsnooze due recommendations",
    )
    return result.rowcount


async def get_due_scheduled_ids(db: AsyncSession, now: datetime) -> list[uuid.UUID]:
    """IDs of scheduled recommendations whose time is strictly in the past, oldest first."""
    result = await db.execute(
        select(Recommendation.id)
        .where(
            Recommendation.status == RecommendationStatus.SCHEDULED.value,
            Recommendation.scheduled_for < now,
        )
        .order_by(Recommendation.scheduled_for)
    )
    return list(result.scalars().all())


async def count_due(db: AsyncSession, now: datetime) -> tuple[int, int]:
    """Return (due snoozed, due scheduled) counts."""
    snoozed = await db.scalar(
        select(func.count(Recommendation.id)).where(
            Recommendation.status == RecommendationStatus.SNOOZED.value,
            Recommendation.snoozed_until < now,
        )
    )
    scheduled = await db.scalar(
        select(func.count(Recommendation.id)).where(
            Recommendation.status == RecommendationStatus.SCHEDULED.value,
            Recommendation.scheduled_for < now,
        )
    )
    return snoozed or 0, scheduled or 0


async def expire_stale(db: AsyncSession, cutoff: datetime) -> int:
    """Expire pending/snoozed recommendations created before `cutoff`."""
    result = await _write(
        db,
        update(Recommendation)
        .where(
            Recommendation.status.in_(
                [RecommendationStatus.PENDING.value, RecommendationStatus.SNOOZED.value]
            ),
            Recommendation.created_at < cutoff,
        )
        .values(status=RecommendationStatus.EXPIRED.value, snoozed_until=None, actioned_by="scheduler")
        .execution_options(synchronize_session=False),
        "expire stale recommendations",
    )
    return result.rowcount


async def get_status_aggregates(db: AsyncSession) -> list[tuple[str, str, str, int, float]]:
    """
    Aggregate recommendations by status, resource type and scenario.

    Returns:
        Rows of (status, resource_type, scenario_id, count, potential_savings)
    """
    result = await db.execute(
        select(
            Recommendation.status,
            Recommendation.resource_type,
            Recommendation.scenario_id,
            func.count(Recommendation.id),
            func.coalesce(func.sum(Recommendation.potential_savings), 0.0),
        ).group_by(
            Recommendation.status,
            Recommendation.resource_type,
            Recommendation.scenario_id,
        )
    )
    return [tuple(row) for row in result.all()]


async def get_savings_by_detection_ids(db: AsyncSession, detection_ids: Iterable[str]) -> dict[str, float]:
    """Map detection id to the potential savings of its most recent recommendation."""
    detection_ids = list({d for d in detection_ids if d})
    if not detection_ids:
        return {}

    result = await db.execute(
        select(Recommendation.detection_id, Recommendation.potential_savings)
        .where(Recommendation.detection_id.in_(detection_ids))
        .order_by(Recommendation.created_at)
    )
    # Later rows overwrite earlier ones, so the newest recommendation wins
    return {detection_id: savings for detection_id, savings in result.all()}
