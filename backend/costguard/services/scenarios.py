"""Waste scenario catalog and typed detail payloads.

Each scenario id maps to a pydantic payload class describing the measured
fields the detector attaches to a detection. The payload class renders the
recommendation title and description, substituting only fields that were
actually measured.
"""

from enum import Enum
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError


class ScenarioId(str, Enum):
    # Mode 2: auto-safe
    FORGOTTEN_PREVIEW = "forgotten_preview"
    OVER_PROVISIONED_ASG = "over_provisioned_asg"
    IDLE_CI_RUNNER = "idle_ci_runner"
    S3_NO_LIFECYCLE = "s3_no_lifecycle"
    LOG_NO_RETENTION = "log_no_retention"
    OFF_HOURS_DEV = "off_hours_dev"
    STALE_FEATURE_ENV = "stale_feature_env"
    ORPHANED_EIP = "orphaned_eip"
    UNATTACHED_VOLUME = "unattached_volume"
    OLD_SNAPSHOT = "old_snapshot"
    IDLE_INSTANCE = "idle_instance"
    GP2_VOLUME = "gp2_volume"
    UNUSED_LAMBDA = "unused_lambda"
    ORPHANED_SNAPSHOT = "orphaned_snapshot"
    MULTI_AZ_NON_PROD = "multi_az_non_prod"
    S3_NO_VERSION_EXPIRATION = "s3_no_version_expiration"
    # Mode 3: approval required
    IDLE_RDS = "idle_rds"
    IDLE_CACHE = "idle_cache"
    IDLE_LOAD_BALANCER = "idle_load_balancer"
    OVER_PROVISIONED_LAMBDA = "over_provisioned_lambda"
    OVER_PROVISIONED_INSTANCE = "over_provisioned_instance"
    STATIC_ASG = "static_asg"
    EMPTY_LOAD_BALANCER = "empty_load_balancer"
    OVER_CONFIGURED_LAMBDA_TIMEOUT = "over_configured_lambda_timeout"


class ResourceType(str, Enum):
    AUTOSCALING_GROUPS = "autoscaling_groups"
    INSTANCES = "instances"
    S3_BUCKETS = "s3_buckets"
    LOG_GROUPS = "log_groups"
    ELASTIC_IPS = "elastic_ips"
    VOLUMES = "volumes"
    SNAPSHOTS = "snapshots"
    RDS_INSTANCES = "rds_instances"
    CACHE_CLUSTERS = "cache_clusters"
    LOAD_BALANCERS = "load_balancers"
    LAMBDA_FUNCTIONS = "lambda_functions"


class ActionType(str, Enum):
    TERMINATE_ASG = "terminate_asg"
    SCALE_DOWN_ASG = "scale_down_asg"
    TERMINATE_INSTANCE = "terminate_instance"
    STOP_INSTANCE = "stop_instance"
    RIGHTSIZE_INSTANCE = "rightsize_instance"
    ADD_LIFECYCLE_POLICY = "add_lifecycle_policy"
    SET_RETENTION = "set_retention"
    RELEASE_EIP = "release_eip"
    DELETE_VOLUME = "delete_volume"
    DELETE_SNAPSHOT = "delete_snapshot"
    STOP_RDS = "stop_rds"
    DOWNSIZE_RDS = "downsize_rds"
    DELETE_CACHE = "delete_cache"
    DELETE_LB = "delete_lb"
    RIGHTSIZE_LAMBDA = "rightsize_lambda"
    UPGRADE_VOLUME_TYPE = "upgrade_volume_type"
    DELETE_LAMBDA = "delete_lambda"
    DELETE_ORPHANED_SNAPSHOT = "delete_orphaned_snapshot"
    ENABLE_ASG_SCALING = "enable_asg_scaling"
    DISABLE_MULTI_AZ = "disable_multi_az"
    DELETE_EMPTY_LB = "delete_empty_lb"
    ADD_VERSION_EXPIRATION = "add_version_expiration"
    OPTIMIZE_LAMBDA_TIMEOUT = "optimize_lambda_timeout"


class WasteScenario(BaseModel):
    """Static catalog entry for one scenario."""

    model_config = ConfigDict(frozen=True)

    id: ScenarioId
    name: str
    description: str
    mode: int  # 2 = auto-safe, 3 = approval required
    resource_type: ResourceType
    action: ActionType
    severity: str
    base_confidence: int


def _scenario(
    id: ScenarioId,
    name: str,
    description: str,
    mode: int,
    resource_type: ResourceType,
    action: ActionType,
    severity: str,
    base_confidence: int,
) -> tuple[ScenarioId, WasteScenario]:
    return id, WasteScenario(
        id=id,
        name=name,
        description=description,
        mode=mode,
        resource_type=resource_type,
        action=action,
        severity=severity,
        base_confidence=base_confidence,
    )


R = ResourceType
A = ActionType

WASTE_SCENARIOS: dict[ScenarioId, WasteScenario] = dict(
    [
        _scenario(ScenarioId.FORGOTTEN_PREVIEW, "Forgotten Preview Environment",
                  "Preview environment with idle instances that should be cleaned up",
                  2, R.AUTOSCALING_GROUPS, A.TERMINATE_ASG, "medium", 85),
        _scenario(ScenarioId.OVER_PROVISIONED_ASG, "Over-provisioned Auto Scaling Group",
                  "ASG with more capacity than needed based on utilization",
                  2, R.AUTOSCALING_GROUPS, A.SCALE_DOWN_ASG, "medium", 75),
        _scenario(ScenarioId.IDLE_CI_RUNNER, "Idle CI Runner",
                  "CI runner that completed its job and is now idle",
                  2, R.INSTANCES, A.TERMINATE_INSTANCE, "low", 95),
        _scenario(ScenarioId.S3_NO_LIFECYCLE, "S3 Bucket Without Lifecycle Policy",
                  "Bucket storing data in expensive Standard tier without tiering",
                  2, R.S3_BUCKETS, A.ADD_LIFECYCLE_POLICY, "low", 90),
        _scenario(ScenarioId.LOG_NO_RETENTION, "Log Group Without Retention",
                  "Log group accumulating data indefinitely",
                  2, R.LOG_GROUPS, A.SET_RETENTION, "low", 90),
        _scenario(ScenarioId.OFF_HOURS_DEV, "Dev Instance Running Off-Hours",
                  "Development instance running during weekends or nights",
                  2, R.INSTANCES, A.STOP_INSTANCE, "low", 80),
        _scenario(ScenarioId.STALE_FEATURE_ENV, "Stale Feature Branch Environment",
                  "Feature environment older than 7 days with low usage",
                  2, R.AUTOSCALING_GROUPS, A.TERMINATE_ASG, "medium", 85),
        _scenario(ScenarioId.ORPHANED_EIP, "Orphaned Elastic IP",
                  "Elastic IP not attached to any resource",
                  2, R.ELASTIC_IPS, A.RELEASE_EIP, "low", 98),
        _scenario(ScenarioId.UNATTACHED_VOLUME, "Unattached EBS Volume",
                  "EBS volume not attached to any instance",
                  2, R.VOLUMES, A.DELETE_VOLUME, "medium", 85),
        _scenario(ScenarioId.OLD_SNAPSHOT, "Old EBS Snapshot",
                  "Snapshot older than 90 days that may no longer be needed",
                  2, R.SNAPSHOTS, A.DELETE_SNAPSHOT, "low", 70),
        _scenario(ScenarioId.IDLE_INSTANCE, "Idle Instance",
                  "Instance with very low CPU utilization for extended period",
                  2, R.INSTANCES, A.STOP_INSTANCE, "medium", 80),
        _scenario(ScenarioId.GP2_VOLUME, "GP2 Volume (Upgrade to GP3)",
                  "EBS volume using older gp2 type, gp3 offers 20% cost savings with better performance",
                  2, R.VOLUMES, A.UPGRADE_VOLUME_TYPE, "low", 95),
        _scenario(ScenarioId.UNUSED_LAMBDA, "Unused Lambda Function",
                  "Lambda function with zero invocations in the last 7 days",
                  2, R.LAMBDA_FUNCTIONS, A.DELETE_LAMBDA, "low", 90),
        _scenario(ScenarioId.ORPHANED_SNAPSHOT, "Orphaned EBS Snapshot",
                  "Snapshot whose source volume no longer exists",
                  2, R.SNAPSHOTS, A.DELETE_ORPHANED_SNAPSHOT, "medium", 85),
        _scenario(ScenarioId.MULTI_AZ_NON_PROD, "Multi-AZ on Non-Production RDS",
                  "RDS instance with Multi-AZ enabled in dev/staging environment, unnecessary redundancy",
                  2, R.RDS_INSTANCES, A.DISABLE_MULTI_AZ, "medium", 90),
        _scenario(ScenarioId.S3_NO_VERSION_EXPIRATION, "S3 Bucket Without Version Expiration",
                  "Versioned bucket without noncurrent version expiration, old versions accumulating costs",
                  2, R.S3_BUCKETS, A.ADD_VERSION_EXPIRATION, "low", 85),
        _scenario(ScenarioId.IDLE_RDS, "Idle RDS Instance",
                  "RDS instance with very low CPU and connections",
                  3, R.RDS_INSTANCES, A.STOP_RDS, "high", 75),
        _scenario(ScenarioId.IDLE_CACHE, "Idle Cache Cluster",
                  "ElastiCache cluster with minimal usage",
                  3, R.CACHE_CLUSTERS, A.DELETE_CACHE, "high", 70),
        _scenario(ScenarioId.IDLE_LOAD_BALANCER, "Idle Load Balancer",
                  "Load balancer with near-zero traffic",
                  3, R.LOAD_BALANCERS, A.DELETE_LB, "medium", 80),
        _scenario(ScenarioId.OVER_PROVISIONED_LAMBDA, "Over-provisioned Lambda Function",
                  "Lambda with much more memory allocated than used",
                  3, R.LAMBDA_FUNCTIONS, A.RIGHTSIZE_LAMBDA, "low", 85),
        _scenario(ScenarioId.OVER_PROVISIONED_INSTANCE, "Over-provisioned EC2 Instance",
                  "EC2 instance with much more CPU/memory than utilized",
                  3, R.INSTANCES, A.RIGHTSIZE_INSTANCE, "medium", 80),
        _scenario(ScenarioId.STATIC_ASG, "Static Auto Scaling Group",
                  "ASG with min=max=desired capacity, consider enabling dynamic scaling",
                  3, R.AUTOSCALING_GROUPS, A.ENABLE_ASG_SCALING, "low", 75),
        _scenario(ScenarioId.EMPTY_LOAD_BALANCER, "Load Balancer with No Targets",
                  "Load balancer with zero registered or healthy targets",
                  3, R.LOAD_BALANCERS, A.DELETE_EMPTY_LB, "medium", 85),
        _scenario(ScenarioId.OVER_CONFIGURED_LAMBDA_TIMEOUT, "Over-Configured Lambda Timeout",
                  "Lambda with timeout much higher than actual execution duration",
                  3, R.LAMBDA_FUNCTIONS, A.OPTIMIZE_LAMBDA_TIMEOUT, "low", 80),
    ]
)

del R, A


def get_scenario(scenario_id: str) -> WasteScenario | None:
    try:
        return WASTE_SCENARIOS[ScenarioId(scenario_id)]
    except ValueError:
        return None


def get_scenarios_by_mode(mode: int) -> list[WasteScenario]:
    return [s for s in WASTE_SCENARIOS.values() if s.mode == mode]


def _num(value: float | int) -> str:
    """Render a number without a trailing .0 for whole values."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


# ---------------------------------------------------------------------------
# Detail payloads
# ---------------------------------------------------------------------------


class ScenarioDetails(BaseModel):
    """
    Base payload: measured fields attached to a detection.

    Fields accept the detector's camelCase keys as well as snake_case names.
    Unknown keys are kept so they survive into the stored `details` column.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    title_template: ClassVar[str | None] = None

    def title(self, scenario: WasteScenario, resource_name: str) -> str:
        if self.title_template is None:
            return f"{scenario.name}: {resource_name}"
        return self.title_template.format(name=resource_name)

    def describe(self, scenario: WasteScenario, resource_name: str, env: str) -> list[str]:
        return [scenario.description]


class IdleRdsDetails(ScenarioDetails):
    title_template = "Stop idle RDS instance: {name}"

    instance_class: str | None = Field(default=None, alias="instanceClass")
    avg_cpu_7d: float | None = Field(default=None, alias="avgCpu7d")
    avg_connections_7d: float | None = Field(default=None, alias="avgConnections7d")

    def describe(self, scenario, resource_name, env):
        parts = [f'RDS instance "{resource_name}"']
        if self.instance_class:
            parts.append(f"({self.instance_class})")
        parts.append("detected as idle.")
        if self.avg_cpu_7d is not None:
            parts.append(f"Average CPU: {_num(self.avg_cpu_7d)}%.")
        if self.avg_connections_7d is not None:
            parts.append(f"Average connections: {_num(self.avg_connections_7d)}.")
        return parts


class IdleCacheDetails(ScenarioDetails):
    title_template = "Delete idle cache cluster: {name}"

    node_type: str | None = Field(default=None, alias="nodeType")
    avg_cpu_7d: float | None = Field(default=None, alias="avgCpu7d")
    avg_connections_7d: float | None = Field(default=None, alias="avgConnections7d")

    def describe(self, scenario, resource_name, env):
        parts = [f'Cache cluster "{resource_name}"']
        if self.node_type:
            parts.append(f"({self.node_type})")
        parts.append("detected as idle.")
        if self.avg_cpu_7d is not None:
            parts.append(f"Average CPU: {_num(self.avg_cpu_7d)}%.")
        if self.avg_connections_7d is not None:
            parts.append(f"Average connections: {_num(self.avg_connections_7d)}.")
        return parts


class IdleLoadBalancerDetails(ScenarioDetails):
    title_template = "Delete idle load balancer: {name}"

    avg_request_count_7d: float | None = Field(default=None, alias="avgRequestCount7d")

    def describe(self, scenario, resource_name, env):
        parts = [f'Load balancer "{resource_name}" detected as idle.']
        if self.avg_request_count_7d is not None:
            parts.append(f"Requests (7d): {_num(self.avg_request_count_7d)}.")
        return parts


class OverProvisionedLambdaDetails(ScenarioDetails):
    title_template = "Rightsize Lambda function: {name}"

    current_memory_mb: int | None = Field(default=None, alias="currentMemoryMb")
    recommended_memory_mb: int | None = Field(default=None, alias="recommendedMemoryMb")

    def describe(self, scenario, resource_name, env):
        parts = [f'Lambda function "{resource_name}" is over-provisioned.']
        if self.current_memory_mb:
            parts.append(f"Current memory: {self.current_memory_mb}MB.")
        if self.recommended_memory_mb:
            parts.append(f"Recommended: {self.recommended_memory_mb}MB.")
        return parts


class OverProvisionedInstanceDetails(ScenarioDetails):
    title_template = "Rightsize EC2 instance: {name}"

    current_instance_type: str | None = Field(default=None, alias="currentInstanceType")
    recommended_instance_type: str | None = Field(default=None, alias="recommendedInstanceType")
    avg_cpu_7d: float | None = Field(default=None, alias="avgCpu7d")
    current_memory_pct: float | None = Field(default=None, alias="currentMemoryPct")

    def describe(self, scenario, resource_name, env):
        parts = [f'EC2 instance "{resource_name}" is over-provisioned.']
        if self.current_instance_type:
            parts.append(f"Current type: {self.current_instance_type}.")
        if self.recommended_instance_type:
            parts.append(f"Recommended: {self.recommended_instance_type}.")
        if self.avg_cpu_7d is not None:
            parts.append(f"Avg CPU: {_num(self.avg_cpu_7d)}%.")
        if self.current_memory_pct is not None:
            parts.append(f"Memory: {_num(self.current_memory_pct)}%.")
        return parts


class OverProvisionedAsgDetails(ScenarioDetails):
    title_template = "Scale down ASG: {name}"

    current_capacity: int | None = Field(default=None, alias="currentCapacity")
    recommended_capacity: int | None = Field(default=None, alias="recommendedCapacity")

    def describe(self, scenario, resource_name, env):
        parts = [f'Auto Scaling Group "{resource_name}" is over-provisioned.']
        if self.current_capacity:
            parts.append(f"Current capacity: {self.current_capacity}.")
        if self.recommended_capacity:
            parts.append(f"Recommended: {self.recommended_capacity}.")
        return parts


class Gp2VolumeDetails(ScenarioDetails):
    title_template = "Upgrade EBS volume to gp3: {name}"

    size_gib: float | None = Field(default=None, alias="sizeGib")

    def describe(self, scenario, resource_name, env):
        parts = [f'EBS volume "{resource_name}" is using gp2 type.']
        if self.size_gib:
            parts.append(f"Size: {_num(self.size_gib)}GB.")
        parts.append("Upgrading to gp3 offers ~20% cost savings with better baseline performance.")
        return parts


class UnusedLambdaDetails(ScenarioDetails):
    title_template = "Delete unused Lambda function: {name}"

    memory_mb: int | None = Field(default=None, alias="memoryMb")

    def describe(self, scenario, resource_name, env):
        parts = [f'Lambda function "{resource_name}" has had zero invocations in the last 7 days.']
        if self.memory_mb:
            parts.append(f"Memory: {self.memory_mb}MB.")
        parts.append("Consider deleting unused functions to eliminate monitoring costs.")
        return parts


class OrphanedSnapshotDetails(ScenarioDetails):
    title_template = "Delete orphaned snapshot: {name}"

    size_gib: float | None = Field(default=None, alias="sizeGib")
    days_old: int | None = Field(default=None, alias="daysOld")

    def describe(self, scenario, resource_name, env):
        parts = [f'Snapshot "{resource_name}" is orphaned, its source volume no longer exists.']
        if self.size_gib:
            parts.append(f"Size: {_num(self.size_gib)}GB.")
        if self.days_old:
            parts.append(f"Age: {self.days_old} days.")
        return parts


class StaticAsgDetails(ScenarioDetails):
    title_template = "Enable dynamic scaling for ASG: {name}"

    current_capacity: int | None = Field(default=None, alias="currentCapacity")

    def describe(self, scenario, resource_name, env):
        parts = [f'ASG "{resource_name}" has static scaling (min=max=desired).']
        if self.current_capacity:
            parts.append(f"Fixed capacity: {self.current_capacity} instances.")
        parts.append("Enabling dynamic scaling can reduce costs during low demand periods.")
        return parts


class MultiAzNonProdDetails(ScenarioDetails):
    title_template = "Disable Multi-AZ for non-prod RDS: {name}"

    instance_class: str | None = Field(default=None, alias="instanceClass")

    def describe(self, scenario, resource_name, env):
        parts = [f'RDS instance "{resource_name}" has Multi-AZ enabled in {env} environment.']
        if self.instance_class:
            parts.append(f"Instance class: {self.instance_class}.")
        parts.append("Multi-AZ is unnecessary for non-production workloads and doubles the cost.")
        return parts


class EmptyLoadBalancerDetails(ScenarioDetails):
    title_template = "Delete empty load balancer: {name}"

    target_count: int | None = Field(default=None, alias="targetCount")

    def describe(self, scenario, resource_name, env):
        parts = [f'Load balancer "{resource_name}" has no registered targets.']
        if self.target_count is not None:
            parts.append(f"Target count: {self.target_count}.")
        parts.append("Empty load balancers incur base charges (~$16/mo) with no benefit.")
        return parts


class S3NoVersionExpirationDetails(ScenarioDetails):
    title_template = "Add version expiration to S3 bucket: {name}"

    def describe(self, scenario, resource_name, env):
        return [
            f'S3 bucket "{resource_name}" has versioning enabled but no noncurrent version expiration.',
            "Old versions accumulate indefinitely, increasing storage costs.",
            "Add a lifecycle rule to expire noncurrent versions after 30 days.",
        ]


class LambdaTimeoutDetails(ScenarioDetails):
    title_template = "Optimize Lambda timeout: {name}"

    current_timeout: int | None = Field(default=None, alias="currentTimeout")
    avg_duration_ms: float | None = Field(default=None, alias="avgDurationMs")
    recommended_timeout: int | None = Field(default=None, alias="recommendedTimeout")

    def describe(self, scenario, resource_name, env):
        parts = [f'Lambda function "{resource_name}" has excessive timeout configuration.']
        if self.current_timeout:
            parts.append(f"Current timeout: {self.current_timeout}s.")
        if self.avg_duration_ms:
            parts.append(f"Avg duration: {self.avg_duration_ms / 1000:.1f}s.")
        if self.recommended_timeout:
            parts.append(f"Recommended: {self.recommended_timeout}s.")
        return parts


class GenericScenarioDetails(ScenarioDetails):
    """Scenarios without dedicated measured fields."""


SCENARIO_DETAILS: dict[ScenarioId, type[ScenarioDetails]] = {
    ScenarioId.FORGOTTEN_PREVIEW: GenericScenarioDetails,
    ScenarioId.OVER_PROVISIONED_ASG: OverProvisionedAsgDetails,
    ScenarioId.IDLE_CI_RUNNER: GenericScenarioDetails,
    ScenarioId.S3_NO_LIFECYCLE: GenericScenarioDetails,
    ScenarioId.LOG_NO_RETENTION: GenericScenarioDetails,
    ScenarioId.OFF_HOURS_DEV: GenericScenarioDetails,
    ScenarioId.STALE_FEATURE_ENV: GenericScenarioDetails,
    ScenarioId.ORPHANED_EIP: GenericScenarioDetails,
    ScenarioId.UNATTACHED_VOLUME: GenericScenarioDetails,
    ScenarioId.OLD_SNAPSHOT: GenericScenarioDetails,
    ScenarioId.IDLE_INSTANCE: GenericScenarioDetails,
    ScenarioId.GP2_VOLUME: Gp2VolumeDetails,
    ScenarioId.UNUSED_LAMBDA: UnusedLambdaDetails,
    ScenarioId.ORPHANED_SNAPSHOT: OrphanedSnapshotDetails,
    ScenarioId.MULTI_AZ_NON_PROD: MultiAzNonProdDetails,
    ScenarioId.S3_NO_VERSION_EXPIRATION: S3NoVersionExpirationDetails,
    ScenarioId.IDLE_RDS: IdleRdsDetails,
    ScenarioId.IDLE_CACHE: IdleCacheDetails,
    ScenarioId.IDLE_LOAD_BALANCER: IdleLoadBalancerDetails,
    ScenarioId.OVER_PROVISIONED_LAMBDA: OverProvisionedLambdaDetails,
    ScenarioId.OVER_PROVISIONED_INSTANCE: OverProvisionedInstanceDetails,
    ScenarioId.STATIC_ASG: StaticAsgDetails,
    ScenarioId.EMPTY_LOAD_BALANCER: EmptyLoadBalancerDetails,
    ScenarioId.OVER_CONFIGURED_LAMBDA_TIMEOUT: LambdaTimeoutDetails,
}


def parse_details(scenario_id: str, details: dict[str, Any] | None) -> ScenarioDetails:
    """
    Parse raw detector details into the scenario's payload class.

    Fields whose values fail validation are dropped rather than rendered,
    so a malformed metric never ends up in recommendation text.
    """
    details = details or {}
    try:
        payload_cls = SCENARIO_DETAILS[ScenarioId(scenario_id)]
    except ValueError:
        payload_cls = GenericScenarioDetails

    try:
        return payload_cls.model_validate(details)
    except ValidationError as exc:
        bad_keys = {str(err["loc"][0]) for err in exc.errors() if err["loc"]}
        for name, field in payload_cls.model_fields.items():
            if name in bad_keys or field.alias in bad_keys:
                bad_keys.update({name, field.alias})
        cleaned = {k: v for k, v in details.items() if k not in bad_keys}
        return payload_cls.model_validate(cleaned)


def render_title(scenario_id: str, resource_name: str, details: dict[str, Any] | None = None) -> str:
    scenario = get_scenario(scenario_id)
    if scenario is None:
        return f"Optimize {resource_name}"
    return parse_details(scenario_id, details).title(scenario, resource_name)


def render_description(
    scenario_id: str,
    resource_name: str,
    env: str,
    potential_savings: float | None,
    details: dict[str, Any] | None = None,
) -> str:
    """Render the recommendation description, always ending with the savings line."""
    scenario = get_scenario(scenario_id)
    if scenario is None:
        parts = [f'Optimization opportunity for "{resource_name}".']
    else:
        parts = parse_details(scenario_id, details).describe(scenario, resource_name, env)

    parts.append(f"Potential savings: ${potential_savings or 0:.2f}/month.")
    return " ".join(parts)
