"""Optimization policy schemas."""

from pydantic import BaseModel, Field

from costguard.models.cloud_resource import OptimizationPolicy


class PolicyState(BaseModel):
    resource_type: str
    resource_id: str
    policy: OptimizationPolicy
    label: str
    description: str
    locked: bool
    env: str | None
    can_set_auto_safe: bool
    lock_reason: str | None = None


class PolicyUpdate(BaseModel):
    policy: OptimizationPolicy


class PolicyUpdateResponse(BaseModel):
    success: bool = True
    resource_type: str
    resource_id: str
    previous_policy: OptimizationPolicy
    new_policy: OptimizationPolicy


class BulkPolicyTarget(BaseModel):
    resource_type: str
    resource_id: str


class BulkPolicyUpdate(BaseModel):
    resources: list[BulkPolicyTarget] = Field(min_length=1)
    policy: OptimizationPolicy
