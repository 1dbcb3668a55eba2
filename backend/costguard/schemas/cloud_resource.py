"""Cloud resource inventory schemas."""

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from costguard.models.cloud_resource import OptimizationPolicy


class CloudResourceBase(BaseModel):
    resource_type: str
    resource_id: str
    resource_name: str | None = None
    account_id: str | None = None
    region: str | None = None
    env: str | None = None


class CloudResourceCreate(CloudResourceBase):
    optimization_policy: OptimizationPolicy = OptimizationPolicy.RECOMMEND_ONLY
    optimization_policy_locked: bool = False
    state: dict[str, Any] = Field(default_factory=dict)


class CloudResource(CloudResourceBase):
    """Schema for cloud resource response."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    optimization_policy: OptimizationPolicy
    optimization_policy_locked: bool
    state: dict[str, Any]
    deleted: bool
    created_at: datetime
    updated_at: datetime
