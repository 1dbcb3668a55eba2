"""Recommendation database model."""

import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, CheckConstraint, Float, Index, Integer, String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from costguard.core.database import Base
from costguard.core.time import utcnow


class RecommendationStatus(str, Enum):
    """Recommendation lifecycle status."""

    PENDING = "pending"  # Waiting for a human decision
    APPROVED = "approved"  # Approved, ready to execute
    REJECTED = "rejected"  # Terminal
    SNOOZED = "snoozed"  # Hidden until snoozed_until
    SCHEDULED = "scheduled"  # Executed by the drift tick after scheduled_for
    EXECUTED = "executed"  # Terminal
    EXPIRED = "expired"  # Terminal


NON_TERMINAL_STATUSES = (
    RecommendationStatus.PENDING,
    RecommendationStatus.APPROVED,
    RecommendationStatus.SNOOZED,
    RecommendationStatus.SCHEDULED,
)
TERMINAL_STATUSES = (
    RecommendationStatus.REJECTED,
    RecommendationStatus.EXECUTED,
    RecommendationStatus.EXPIRED,
)


class ImpactLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


_ACTIVE_DETECTION_CLAUSE = text(
    "status IN ({})".format(", ".join(f"'{s.value}'" for s in NON_TERMINAL_STATUSES))
)


class Recommendation(Base):
    """A gated, auditable optimization action derived from a detection."""

    __tablename__ = "recommendations"
    __table_args__ = (
        # At most one live recommendation per detection
        Index(
            "uq_recommendations_active_detection",
            "detection_id",
            unique=True,
            postgresql_where=_ACTIVE_DETECTION_CLAUSE,
            sqlite_where=_ACTIVE_DETECTION_CLAUSE,
        ),
        Index("ix_recommendations_status_created", "status", "created_at"),
        CheckConstraint("confidence >= 0 AND confidence <= 100", name="ck_recommendations_confidence"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
        index=True,
    )
    detection_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    scenario_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    scenario_name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Resource
    resource_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    resource_id: Mapped[str] = mapped_column(String(255), nullable=False)
    resource_name: Mapped[str] = mapped_column(String(255), nullable=False)
    account_id: Mapped[str] = mapped_column(String(255), nullable=False)
    region: Mapped[str] = mapped_column(String(50), nullable=False)
    env: Mapped[str] = mapped_column(String(50), nullable=False, default="unknown")

    # Content
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    ai_explanation: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Scoring
    impact_level: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    confidence: Mapped[int] = mapped_column(Integer, nullable=False, default=80)
    risk_level: Mapped[str] = mapped_column(String(20), nullable=False)
    current_monthly_cost: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    potential_savings: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    details: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    # Lifecycle
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=RecommendationStatus.PENDING.value,
        index=True,
    )
    snoozed_until: Mapped[datetime | None] = mapped_column(nullable=True)
    scheduled_for: Mapped[datetime | None] = mapped_column(nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    user_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    executed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    execution_result: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    # Execution lease
    claimed_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    claim_expires_at: Mapped[datetime | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)
    created_by: Mapped[str] = mapped_column(String(255), nullable=False, default="waste-detector")
    actioned_by: Mapped[str | None] = mapped_column(String(255), nullable=True)

    @property
    def is_terminal(self) -> bool:
        return self.status in {s.value for s in TERMINAL_STATUSES}

    def __repr__(self) -> str:
        """String representation."""
        return f"<Recommendation {self.scenario_id}:{self.resource_id} ({self.status})>"
