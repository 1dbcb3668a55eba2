"""CRUD operations for the action audit log.

The log is append-only: there is deliberately no update or delete here.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from costguard.models.action_audit_log import ActionAuditLog
from costguard.schemas.audit import AuditLogCreate


async def create_audit_entry(db: AsyncSession, entry_in: AuditLogCreate) -> ActionAuditLog:
    """
    Append one audit entry.

    Args:
        db: Database session
        entry_in: Audit entry data

    Returns:
        Created audit entry
    """
    entry = ActionAuditLog(**entry_in.model_dump())
    db.add(entry)
    await db.commit()
    await db.refresh(entry)
    return entry


async def get_audit_entries(
    db: AsyncSession,
    limit: int = 50,
    success: bool | None = None,
    scenario_id: str | None = None,
    resource_type: str | None = None,
    detection_id: str | None = None,
) -> list[ActionAuditLog]:
    """
    List audit entries, most recent first.

    Args:
        db: Database session
        limit: Maximum number of entries to return
        success: Only successful (True) or failed (False) entries
        scenario_id: Optional scenario filter
        resource_type: Optional resource type filter
        detection_id: Optional detection filter

    Returns:
        List of audit entries
    """
    query = select(ActionAuditLog)
    if success is not None:
        query = query.where(ActionAuditLog.success == success)
    if scenario_id:
        query = query.where(ActionAuditLog.scenario_id == scenario_id)
    if resource_type:
        query = query.where(ActionAuditLog.resource_type == resource_type)
    if detection_id:
        query = query.where(ActionAuditLog.detection_id == detection_id)

    query = query.order_by(ActionAuditLog.executed_at.desc(), ActionAuditLog.created_at.desc()).limit(limit)
    result = await db.execute(query)
    return list(result.scalars().all())


async def get_all_audit_entries(db: AsyncSession) -> list[ActionAuditLog]:
    """All entries, oldest first (used for statistics)."""
    result = await db.execute(select(ActionAuditLog).order_by(ActionAuditLog.executed_at))
    return list(result.scalars().all())
