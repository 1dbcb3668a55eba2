"""Database models."""

from costguard.models.action_audit_log import ActionAuditLog
from costguard.models.cloud_resource import CloudResource, OptimizationPolicy
from costguard.models.recommendation import (
    ImpactLevel,
    Recommendation,
    RecommendationStatus,
    RiskLevel,
)

__all__ = [
    "ActionAuditLog",
    "CloudResource",
    "ImpactLevel",
    "OptimizationPolicy",
    "Recommendation",
    "RecommendationStatus",
    "RiskLevel",
]
