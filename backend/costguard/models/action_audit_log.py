"""Action audit log database model (append-only)."""

import uuid
from datetime import datetime

from sqlalchemy import JSON, Boolean, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from costguard.core.database import Base
from costguard.core.time import utcnow


class ActionAuditLog(Base):
    """One row per control-plane action attempt, successful or not."""

    __tablename__ = "action_audit_log"
    __table_args__ = (
        Index("ix_action_audit_log_executed_at", "executed_at"),
        Index("ix_action_audit_log_resource", "resource_type", "resource_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
        index=True,
    )
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    resource_type: Mapped[str] = mapped_column(String(50), nullable=False)
    resource_id: Mapped[str] = mapped_column(String(255), nullable=False)
    resource_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    scenario_id: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    detection_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, index=True)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    previous_state: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    new_state: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    executed_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    executed_by: Mapped[str] = mapped_column(String(255), nullable=False, default="auto-safe-agent")
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    def __repr__(self) -> str:
        """String representation."""
        outcome = "ok" if self.success else "failed"
        return f"<ActionAuditLog {self.action}:{self.resource_id} {outcome}>"
