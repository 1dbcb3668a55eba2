"""Action executor input/output schemas."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class ExecuteActionParams(BaseModel):
    """What to do, to which resource, and on behalf of which detection."""

    action: str
    resource_type: str
    resource_id: str
    resource_name: str
    detection_id: str | None = None
    scenario_id: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)


class ActionResult(BaseModel):
    """Outcome of one control-plane action. `success=False` is a normal outcome."""

    success: bool
    action: str
    resource_id: str
    resource_type: str
    message: str
    previous_state: dict[str, Any] | None = None
    new_state: dict[str, Any] | None = None
    executed_at: datetime
    duration_ms: int


class ExecuteActionRequest(ExecuteActionParams):
    """POST /execute-action body; every identifier is required."""

    action: str = Field(min_length=1)
    resource_type: str = Field(min_length=1)
    resource_id: str = Field(min_length=1)
    resource_name: str = Field(min_length=1)
    detection_id: str = Field(min_length=1)
    scenario_id: str = Field(min_length=1)
    executed_by: str | None = None
