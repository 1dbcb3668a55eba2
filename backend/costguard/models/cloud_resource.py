"""Cloud resource inventory model (policy subject and simulated control plane)."""

import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, Boolean, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from costguard.core.database import Base
from costguard.core.time import utcnow


class OptimizationPolicy(str, Enum):
    """How far the agent may go on a resource."""

    AUTO_SAFE = "auto_safe"
    RECOMMEND_ONLY = "recommend_only"
    IGNORE = "ignore"


class CloudResource(Base):
    """Inventory row for one cloud resource."""

    __tablename__ = "cloud_resources"
    __table_args__ = (
        UniqueConstraint("resource_type", "resource_id", name="uq_cloud_resources_type_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
        index=True,
    )
    resource_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    resource_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    resource_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    account_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    region: Mapped[str | None] = mapped_column(String(50), nullable=True)
    env: Mapped[str | None] = mapped_column(String(50), nullable=True, index=True)
    optimization_policy: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=OptimizationPolicy.RECOMMEND_ONLY.value,
    )
    optimization_policy_locked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # Control-plane attributes (instance_type, desired_capacity, status, ...)
    state: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self) -> str:
        """String representation."""
        return f"<CloudResource {self.resource_type}:{self.resource_id}>"
