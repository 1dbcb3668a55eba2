"""Action audit log API endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from costguard.api.deps import get_db
from costguard.crud import action_audit_log as audit_crud
from costguard.schemas.audit import AuditLogEntry, ExecutionStats
from costguard.services.audit_stats import get_execution_stats

router = APIRouter()


@router.get("", response_model=list[AuditLogEntry])
async def list_audit_entries(
    db: Annotated[AsyncSession, Depends(get_db)],
    limit: Annotated[int, Query(ge=1, le=1000)] = 50,
    success: bool | None = None,
    scenario_id: str | None = None,
    resource_type: str | None = None,
) -> list[AuditLogEntry]:
    """List executed actions, most recent first."""
    entries = await audit_crud.get_audit_entries(
        db,
        limit=limit,
        success=success,
        scenario_id=scenario_id,
        resource_type=resource_type,
    )
    return [AuditLogEntry.model_validate(e) for e in entries]


@router.get("/stats", response_model=ExecutionStats)
async def get_audit_stats(db: Annotated[AsyncSession, Depends(get_db)]) -> ExecutionStats:
    """
    Execution statistics: per-period savings, success rate, per-scenario
    totals and a 30-day trend.
    """
    return await get_execution_stats(db)
