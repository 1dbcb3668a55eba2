"""Detection schemas (detector output, never persisted)."""

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class Detection(BaseModel):
    """
    A single waste finding emitted by the detector.

    Accepts both snake_case and the detector's camelCase keys.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str
    scenario_id: str = Field(validation_alias=AliasChoices("scenario_id", "scenarioId"))
    scenario_name: str = Field(validation_alias=AliasChoices("scenario_name", "scenarioName"))
    resource_type: str = Field(validation_alias=AliasChoices("resource_type", "resourceType"))
    resource_id: str = Field(validation_alias=AliasChoices("resource_id", "resourceId"))
    resource_name: str = Field(validation_alias=AliasChoices("resource_name", "resourceName"))
    account_id: str = Field(validation_alias=AliasChoices("account_id", "accountId"))
    region: str
    env: str = "unknown"
    action: str
    monthly_cost: float = Field(default=0.0, validation_alias=AliasChoices("monthly_cost", "monthlyCost"))
    potential_savings: float = Field(
        default=0.0, validation_alias=AliasChoices("potential_savings", "potentialSavings")
    )
    confidence: int = Field(default=80, ge=0, le=100)
    details: dict[str, Any] = Field(default_factory=dict)
    mode: int = 3


class DetectionResult(BaseModel):
    detections: list[Detection] = Field(default_factory=list)
    total_potential_savings: float = 0.0
