"""Recommendation schemas for API requests/responses."""

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from costguard.models.recommendation import RecommendationStatus
from costguard.schemas.action import ActionResult
from costguard.schemas.batch import BatchResult
from costguard.schemas.detection import Detection


class RecommendationBase(BaseModel):
    """Base recommendation schema."""

    detection_id: str
    scenario_id: str
    scenario_name: str
    resource_type: str
    resource_id: str
    resource_name: str
    account_id: str
    region: str
    env: str
    action: str
    title: str
    description: str
    impact_level: str
    confidence: int = Field(ge=0, le=100)
    risk_level: str
    current_monthly_cost: float
    potential_savings: float
    details: dict[str, Any] = Field(default_factory=dict)


class RecommendationCreate(RecommendationBase):
    """Schema for inserting a recommendation row."""

    ai_explanation: str | None = None
    status: RecommendationStatus = RecommendationStatus.PENDING
    created_by: str = "waste-detector"


class RecommendationUpdate(BaseModel):
    """PATCH body: notes are always writable; status goes through the transition table."""

    user_notes: str | None = None
    status: RecommendationStatus | None = None
    override: bool = False
    actioned_by: str | None = None


class Recommendation(RecommendationBase):
    """Schema for recommendation response."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    ai_explanation: str | None
    status: RecommendationStatus
    snoozed_until: datetime | None
    scheduled_for: datetime | None
    rejection_reason: str | None
    user_notes: str | None
    executed_at: datetime | None
    execution_result: dict[str, Any] | None
    created_at: datetime
    updated_at: datetime
    created_by: str
    actioned_by: str | None


class ActorRequest(BaseModel):
    actioned_by: str = "user"


class RejectRequest(ActorRequest):
    reason: str | None = None


class SnoozeRequest(ActorRequest):
    # Validated by the service so bad values map to 400 with a clear message
    days: Any = None


class ScheduleRequest(ActorRequest):
    scheduled_for: Any = None


class ExecuteAllRequest(ActorRequest):
    # None executes every approved recommendation
    recommendation_ids: list[uuid.UUID] | None = None


class CreateRecommendationsRequest(BaseModel):
    """
    POST /recommendations body.

    Exactly one of `generate`, `detection` or `detections` drives the call.
    """

    generate: bool = False
    detection: Detection | None = None
    detections: list[Detection] | None = None
    title: str | None = None
    description: str | None = None
    ai_explanation: str | None = None

    @model_validator(mode="after")
    def check_one_source(self) -> "CreateRecommendationsRequest":
        sources = sum([self.generate, self.detection is not None, self.detections is not None])
        if sources != 1:
            raise ValueError("Provide exactly one of 'generate', 'detection' or 'detections'")
        return self


class RecommendationBatchResult(BatchResult):
    """Creation outcome: outcomes per detection plus the rows inserted."""

    created: list[Recommendation] = Field(default_factory=list)


class ExecuteResponse(BaseModel):
    recommendation: Recommendation
    result: ActionResult


class ExplainResponse(BaseModel):
    recommendation_id: uuid.UUID
    ai_explanation: str | None


class SavingsBreakdown(BaseModel):
    key: str
    count: int
    savings: float


class RecommendationSummary(BaseModel):
    total: int
    pending: int
    approved: int
    rejected: int
    snoozed: int
    scheduled: int
    executed: int
    expired: int
    total_potential_savings: float
    pending_savings: float
    by_resource_type: list[SavingsBreakdown]
    by_scenario: list[SavingsBreakdown]
