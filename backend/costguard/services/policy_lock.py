"""Policy lock validation.

Pure functions deciding whether a resource's optimization policy may change.
Every policy mutation path (single update, bulk update, presets) goes through
`validate_policy_update`.
"""

from typing import Protocol

from pydantic import BaseModel

from costguard.models.cloud_resource import OptimizationPolicy
from costguard.services.scenarios import ResourceType

PRODUCTION_ENVS = frozenset({"prod", "production"})

# Low-risk resource types that can usually be toggled
ALWAYS_TOGGLEABLE = frozenset(
    {
        ResourceType.S3_BUCKETS,
        ResourceType.LOG_GROUPS,
        ResourceType.ELASTIC_IPS,
        ResourceType.VOLUMES,
        ResourceType.SNAPSHOTS,
    }
)

MANUAL_LOCK_ERROR = "This resource has been manually locked. Contact an administrator to unlock it."
PRODUCTION_AUTO_SAFE_ERROR = "Production resources cannot be set to auto_safe. This is enforced for safety."

POLICY_LABELS: dict[OptimizationPolicy, str] = {
    OptimizationPolicy.AUTO_SAFE: "Auto-Safe",
    OptimizationPolicy.RECOMMEND_ONLY: "Recommend Only",
    OptimizationPolicy.IGNORE: "Ignore",
}

POLICY_DESCRIPTIONS: dict[OptimizationPolicy, str] = {
    OptimizationPolicy.AUTO_SAFE: "Agent can automatically optimize this resource",
    OptimizationPolicy.RECOMMEND_ONLY: "Agent will recommend changes but require approval",
    OptimizationPolicy.IGNORE: "Agent will not touch this resource",
}


class PolicySubject(Protocol):
    """Anything carrying the two fields the lock looks at."""

    env: str | None
    optimization_policy_locked: bool


class PolicyValidation(BaseModel):
    valid: bool
    error: str | None = None


def is_production(env: str | None) -> bool:
    return (env or "").strip().lower() in PRODUCTION_ENVS


def validate_policy_update(resource: PolicySubject, new_policy: OptimizationPolicy | str) -> PolicyValidation:
    """
    Decide whether `resource` may move to `new_policy`.

    Rules, in order:
    1. A manually locked resource rejects every change.
    2. A production resource rejects auto_safe.
    3. Anything else is allowed.
    """
    new_policy = OptimizationPolicy(new_policy)

    if resource.optimization_policy_locked:
        return PolicyValidation(valid=False, error=MANUAL_LOCK_ERROR)

    if is_production(resource.env) and new_policy == OptimizationPolicy.AUTO_SAFE:
        return PolicyValidation(valid=False, error=PRODUCTION_AUTO_SAFE_ERROR)

    return PolicyValidation(valid=True)


def can_set_auto_safe(resource: PolicySubject) -> bool:
    return validate_policy_update(resource, OptimizationPolicy.AUTO_SAFE).valid


def get_lock_reason(resource: PolicySubject) -> str | None:
    """Human-readable reason why auto_safe is unavailable, if it is."""
    if resource.optimization_policy_locked:
        return "Manually locked by administrator"
    if is_production(resource.env):
        return "Production environment protection"
    return None


class PolicyPreset(BaseModel):
    name: str
    description: str
    auto_safe: frozenset[ResourceType]
    recommend_only: frozenset[ResourceType]

    def policy_for(self, resource_type: str) -> OptimizationPolicy | None:
        if resource_type in {t.value for t in self.auto_safe}:
            return OptimizationPolicy.AUTO_SAFE
        if resource_type in {t.value for t in self.recommend_only}:
            return OptimizationPolicy.RECOMMEND_ONLY
        return None


_ALL_TYPES = frozenset(ResourceType)

POLICY_PRESETS: dict[str, PolicyPreset] = {
    "conservative": PolicyPreset(
        name="Conservative",
        description="All resources require approval before any action",
        auto_safe=frozenset(),
        recommend_only=_ALL_TYPES,
    ),
    "balanced": PolicyPreset(
        name="Balanced",
        description="Low-risk resources are optimized automatically, compute and data stores need approval",
        auto_safe=ALWAYS_TOGGLEABLE,
        recommend_only=_ALL_TYPES - ALWAYS_TOGGLEABLE,
    ),
    "aggressive": PolicyPreset(
        name="Aggressive",
        description="Everything except stateful and traffic-serving resources is optimized automatically",
        auto_safe=ALWAYS_TOGGLEABLE | {ResourceType.INSTANCES, ResourceType.LAMBDA_FUNCTIONS},
        recommend_only=frozenset(
            {
                ResourceType.AUTOSCALING_GROUPS,
                ResourceType.RDS_INSTANCES,
                ResourceType.CACHE_CLUSTERS,
                ResourceType.LOAD_BALANCERS,
            }
        ),
    ),
}
