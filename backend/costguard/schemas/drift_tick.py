"""Drift tick (scheduler sweep) schemas."""

from datetime import datetime

from pydantic import BaseModel, Field

from costguard.schemas.batch import BatchResult


class DriftTickRequest(BaseModel):
    # None falls back to the EXECUTION_MODE setting
    auto_execute: bool | None = None


class DriftTickResult(BaseModel):
    ran_at: datetime
    execution_mode: str = "manual"
    unsnoozed: int = 0
    executed: int = 0
    failed: int = 0
    skipped: int = 0
    expired: int = 0
    executions: BatchResult = Field(default_factory=BatchResult)

    # Auto-safe phase (automated mode only)
    detections: int = 0
    auto_safe_detections: int = 0
    auto_safe_savings: float = 0.0
    auto_safe: BatchResult = Field(default_factory=BatchResult)
    detection_error: str | None = None


class DriftTickStatus(BaseModel):
    """What the next drift tick would pick up."""

    checked_at: datetime
    due_snoozed: int
    due_scheduled: int
    interval_minutes: int
    execution_mode: str
    auto_safe_scenarios: int
