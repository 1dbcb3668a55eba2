"""Audit log and execution statistics schemas."""

import uuid
from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict


class AuditLogCreate(BaseModel):
    action: str
    resource_type: str
    resource_id: str
    resource_name: str | None = None
    scenario_id: str | None = None
    detection_id: str | None = None
    success: bool
    message: str | None = None
    previous_state: dict[str, Any] | None = None
    new_state: dict[str, Any] | None = None
    executed_at: datetime
    duration_ms: int | None = None
    executed_by: str


class AuditLogEntry(AuditLogCreate):
    """Schema for audit log response."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    created_at: datetime


class PeriodStats(BaseModel):
    actions: int = 0
    savings: float = 0.0


class ScenarioSavings(BaseModel):
    scenario_id: str
    actions: int
    savings: float


class TrendPoint(BaseModel):
    day: date
    actions: int
    savings: float
    cumulative_savings: float


class ExecutionStats(BaseModel):
    """Realized savings and execution counts across time buckets."""

    today: PeriodStats
    this_week: PeriodStats
    this_month: PeriodStats
    this_year: PeriodStats
    all_time: PeriodStats
    total_executions: int
    successful_executions: int
    failed_executions: int
    success_rate: float
    by_scenario: list[ScenarioSavings]
    trend: list[TrendPoint]
