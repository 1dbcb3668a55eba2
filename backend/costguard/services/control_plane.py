"""Control-plane clients that apply optimization actions to cloud resources."""

from abc import ABC, abstractmethod
from typing import Any, Callable, NamedTuple

import aioboto3
import structlog
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from costguard.core.config import Settings
from costguard.core.errors import ExecutionFailure
from costguard.crud import cloud_resource as cloud_resource_crud
from costguard.services.scenarios import ActionType

logger = structlog.get_logger()


class ControlPlaneResult(BaseModel):
    success: bool
    message: str
    previous_state: dict[str, Any] | None = None
    new_state: dict[str, Any] | None = None


class ControlPlaneClient(ABC):
    """
    Abstract base class for control-plane implementations.

    Implementations capture the resource state before and after the change
    and raise ExecutionFailure when the action cannot be applied.
    """

    name: str = "base"

    @abstractmethod
    async def apply(
        self,
        resource_type: str,
        action: str,
        resource_id: str,
        details: dict[str, Any],
    ) -> ControlPlaneResult:
        """
        Apply one action to one resource.

        Args:
            resource_type: Resource type (e.g. 'instances')
            action: Action type (e.g. 'stop_instance')
            resource_id: Cloud identifier of the resource
            details: Detection details (recommended sizes, region, ...)

        Returns:
            ControlPlaneResult with previous and new state snapshots

        Raises:
            ExecutionFailure: If the action cannot be applied
        """
        pass


# ---------------------------------------------------------------------------
# Inventory control plane
# ---------------------------------------------------------------------------


class _Change(NamedTuple):
    previous: dict[str, Any]
    new: dict[str, Any]
    message: str
    delete: bool = False


def _require(state: dict[str, Any], key: str, name: str) -> Any:
    if state.get(key) is None:
        raise ExecutionFailure(f"Resource {name} has no '{key}' attribute")
    return state[key]


def _stop_instance(name: str, state: dict, details: dict) -> _Change:
    current = _require(state, "state", name)
    if current in ("stopped", "terminated"):
        raise ExecutionFailure(f"Instance {name} is already {current}")
    return _Change({"state": current}, {"state": "stopped"}, f"Instance {name} stopped successfully")


def _terminate_instance(name: str, state: dict, details: dict) -> _Change:
    current = _require(state, "state", name)
    if current == "terminated":
        raise ExecutionFailure(f"Instance {name} is already terminated")
    return _Change({"state": current}, {"state": "terminated"}, f"Instance {name} terminated successfully")


def _rightsize_instance(name: str, state: dict, details: dict) -> _Change:
    current = _require(state, "instance_type", name)
    recommended = details.get("recommendedInstanceType")
    if not recommended:
        raise ExecutionFailure("No recommended instance type provided for rightsizing")
    return _Change(
        {"instance_type": current},
        {"instance_type": recommended},
        f"Instance {name} rightsized from {current} to {recommended}",
    )


def _asg_capacity(state: dict, name: str) -> dict[str, int]:
    return {
        "desired_capacity": _require(state, "desired_capacity", name),
        "min_size": _require(state, "min_size", name),
        "max_size": _require(state, "max_size", name),
    }


def _terminate_asg(name: str, state: dict, details: dict) -> _Change:
    return _Change(
        _asg_capacity(state, name),
        {"desired_capacity": 0, "min_size": 0, "max_size": 0},
        f"ASG {name} terminated (scaled to 0)",
    )


def _scale_down_asg(name: str, state: dict, details: dict) -> _Change:
    previous = _asg_capacity(state, name)
    new_desired = details.get("recommendedCapacity") or max(1, previous["desired_capacity"] // 2)
    new_min = min(new_desired, previous["min_size"])
    return _Change(
        previous,
        {"desired_capacity": new_desired, "min_size": new_min},
        f"ASG {name} scaled down from {previous['desired_capacity']} to {new_desired}",
    )


def _enable_asg_scaling(name: str, state: dict, details: dict) -> _Change:
    previous = _asg_capacity(state, name)
    new_max = max(previous["desired_capacity"] * 2, 4)
    return _Change(
        previous,
        {"min_size": 1, "max_size": new_max},
        f"ASG {name} scaling enabled (min: 1, max: {new_max})",
    )


def _stop_rds(name: str, state: dict, details: dict) -> _Change:
    current = _require(state, "status", name)
    if current == "stopped":
        raise ExecutionFailure(f"RDS instance {name} is already stopped")
    return _Change({"status": current}, {"status": "stopped"}, f"RDS instance {name} stopped successfully")


RDS_SIZE_LADDER = ["db.t3.micro", "db.t3.small", "db.t3.medium", "db.t3.large", "db.t3.xlarge"]


def _downsize_rds(name: str, state: dict, details: dict) -> _Change:
    current = _require(state, "instance_class", name)
    if current not in RDS_SIZE_LADDER[1:]:
        raise ExecutionFailure(f"RDS instance {name} ({current}) cannot be downsized further")
    new_class = RDS_SIZE_LADDER[RDS_SIZE_LADDER.index(current) - 1]
    return _Change(
        {"instance_class": current},
        {"instance_class": new_class},
        f"RDS instance {name} downsized from {current} to {new_class}",
    )


def _disable_multi_az(name: str, state: dict, details: dict) -> _Change:
    return _Change(
        {"multi_az": state.get("multi_az", True)},
        {"multi_az": False},
        f"Multi-AZ disabled for RDS {name}",
    )


def _rightsize_lambda(name: str, state: dict, details: dict) -> _Change:
    current = _require(state, "memory_mb", name)
    new_memory = details.get("recommendedMemoryMb") or max(128, current // 2)
    return _Change(
        {"memory_mb": current},
        {"memory_mb": new_memory},
        f"Lambda {name} rightsized from {current}MB to {new_memory}MB",
    )


def _optimize_lambda_timeout(name: str, state: dict, details: dict) -> _Change:
    current = _require(state, "timeout_seconds", name)
    recommended = details.get("recommendedTimeout")
    if not recommended:
        raise ExecutionFailure("No recommended timeout provided for optimization")
    return _Change(
        {"timeout_seconds": current},
        {"timeout_seconds": recommended},
        f"Lambda {name} timeout optimized from {current}s to {recommended}s",
    )


def _upgrade_volume_type(name: str, state: dict, details: dict) -> _Change:
    current = _require(state, "volume_type", name)
    if current == "gp3":
        raise ExecutionFailure(f"Volume {name} is already gp3")
    return _Change({"volume_type": current}, {"volume_type": "gp3"}, f"Volume {name} upgraded from {current} to gp3")


def _set_retention(name: str, state: dict, details: dict) -> _Change:
    return _Change(
        {"retention_in_days": state.get("retention_in_days")},
        {"retention_in_days": 30},
        f"Retention set to 30 days for {name}",
    )


def _add_lifecycle_policy(name: str, state: dict, details: dict) -> _Change:
    rules = [
        {
            "id": "intelligent-tiering",
            "status": "Enabled",
            "transitions": [
                {"days": 30, "storage_class": "INTELLIGENT_TIERING"},
                {"days": 90, "storage_class": "GLACIER"},
            ],
        }
    ]
    return _Change(
        {"lifecycle_rules": state.get("lifecycle_rules")},
        {"lifecycle_rules": rules},
        f"Lifecycle policy added to bucket {name}",
    )


def _add_version_expiration(name: str, state: dict, details: dict) -> _Change:
    existing = list(state.get("lifecycle_rules") or [])
    rule = {
        "id": "expire-noncurrent-versions",
        "status": "Enabled",
        "noncurrent_version_expiration": {"days": 30},
    }
    return _Change(
        {"lifecycle_rules": state.get("lifecycle_rules")},
        {"lifecycle_rules": [*existing, rule]},
        f"Version expiration (30 days) added to bucket {name}",
    )


def _deleter(label: str) -> Callable[[str, dict, dict], _Change]:
    def _delete(name: str, state: dict, details: dict) -> _Change:
        return _Change(dict(state), {"deleted": True}, f"{label} {name} deleted successfully", delete=True)

    return _delete


def _release_eip(name: str, state: dict, details: dict) -> _Change:
    return _Change(
        {"public_ip": state.get("public_ip"), "association_id": state.get("association_id")},
        {"released": True},
        f"Elastic IP {state.get('public_ip') or name} released successfully",
        delete=True,
    )


INVENTORY_HANDLERS: dict[ActionType, Callable[[str, dict, dict], _Change]] = {
    ActionType.STOP_INSTANCE: _stop_instance,
    ActionType.TERMINATE_INSTANCE: _terminate_instance,
    ActionType.RIGHTSIZE_INSTANCE: _rightsize_instance,
    ActionType.TERMINATE_ASG: _terminate_asg,
    ActionType.SCALE_DOWN_ASG: _scale_down_asg,
    ActionType.ENABLE_ASG_SCALING: _enable_asg_scaling,
    ActionType.STOP_RDS: _stop_rds,
    ActionType.DOWNSIZE_RDS: _downsize_rds,
    ActionType.DISABLE_MULTI_AZ: _disable_multi_az,
    ActionType.DELETE_CACHE: _deleter("Cache cluster"),
    ActionType.DELETE_LB: _deleter("Load balancer"),
    ActionType.DELETE_EMPTY_LB: _deleter("Load balancer"),
    ActionType.RIGHTSIZE_LAMBDA: _rightsize_lambda,
    ActionType.DELETE_LAMBDA: _deleter("Lambda function"),
    ActionType.OPTIMIZE_LAMBDA_TIMEOUT: _optimize_lambda_timeout,
    ActionType.DELETE_VOLUME: _deleter("Volume"),
    ActionType.UPGRADE_VOLUME_TYPE: _upgrade_volume_type,
    ActionType.DELETE_SNAPSHOT: _deleter("Snapshot"),
    ActionType.DELETE_ORPHANED_SNAPSHOT: _deleter("Snapshot"),
    ActionType.RELEASE_EIP: _release_eip,
    ActionType.ADD_LIFECYCLE_POLICY: _add_lifecycle_policy,
    ActionType.ADD_VERSION_EXPIRATION: _add_version_expiration,
    ActionType.SET_RETENTION: _set_retention,
}


class InventoryControlPlane(ControlPlaneClient):
    """
    Applies actions to the `cloud_resources` inventory table.

    Each apply runs in its own session so a failed change never leaks into
    the caller's transaction.
    """

    name = "inventory"

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def apply(self, resource_type, action, resource_id, details):
        try:
            handler = INVENTORY_HANDLERS[ActionType(action)]
        except ValueError:
            raise ExecutionFailure(f"Unknown action: {action}") from None

        async with self.session_factory() as db:
            resource = await cloud_resource_crud.get_resource(db, resource_type, resource_id)
            if resource is None:
                raise ExecutionFailure(f"Resource not found: {resource_type}/{resource_id}")

            state = dict(resource.state or {})
            change = handler(resource.resource_name or resource_id, state, details or {})

            if change.delete:
                resource.deleted = True
            else:
                state.update(change.new)
                resource.state = state
            await db.commit()

        logger.info(
            "control_plane.applied",
            control_plane=self.name,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
        )
        return ControlPlaneResult(
            success=True,
            message=change.message,
            previous_state=change.previous,
            new_state=change.new,
        )


# ---------------------------------------------------------------------------
# AWS control plane
# ---------------------------------------------------------------------------


class AWSControlPlane(ControlPlaneClient):
    """Applies actions through the AWS APIs for actions with a direct equivalent."""

    name = "aws"

    def __init__(self, access_key: str, secret_key: str, default_region: str = "us-east-1") -> None:
        self.default_region = default_region
        self.config = Config(
            connect_timeout=10,
            read_timeout=30,
            retries={"max_attempts": 3, "mode": "standard"},
        )
        self.session = aioboto3.Session(
            aws_access_key_id=access_key or None,
            aws_secret_access_key=secret_key or None,
        )
        self._handlers = {
            ActionType.STOP_INSTANCE: self._stop_instance,
            ActionType.TERMINATE_INSTANCE: self._terminate_instance,
            ActionType.RELEASE_EIP: self._release_eip,
            ActionType.DELETE_VOLUME: self._delete_volume,
            ActionType.UPGRADE_VOLUME_TYPE: self._upgrade_volume_type,
            ActionType.DELETE_SNAPSHOT: self._delete_snapshot,
            ActionType.DELETE_ORPHANED_SNAPSHOT: self._delete_snapshot,
            ActionType.STOP_RDS: self._stop_rds,
            ActionType.DISABLE_MULTI_AZ: self._disable_multi_az,
            ActionType.SET_RETENTION: self._set_retention,
            ActionType.TERMINATE_ASG: self._terminate_asg,
            ActionType.SCALE_DOWN_ASG: self._scale_down_asg,
            ActionType.DELETE_LAMBDA: self._delete_lambda,
            ActionType.RIGHTSIZE_LAMBDA: self._rightsize_lambda,
            ActionType.OPTIMIZE_LAMBDA_TIMEOUT: self._optimize_lambda_timeout,
            ActionType.DELETE_CACHE: self._delete_cache,
            ActionType.DELETE_LB: self._delete_lb,
            ActionType.DELETE_EMPTY_LB: self._delete_lb,
        }

    @classmethod
    def from_settings(cls, settings: Settings) -> "AWSControlPlane":
        return cls(settings.AWS_ACCESS_KEY_ID, settings.AWS_SECRET_ACCESS_KEY, settings.AWS_DEFAULT_REGION)

    def _client(self, service: str, details: dict[str, Any]):
        region = details.get("region") or self.default_region
        return self.session.client(service, region_name=region, config=self.config)

    async def apply(self, resource_type, action, resource_id, details):
        try:
            handler = self._handlers[ActionType(action)]
        except (ValueError, KeyError):
            raise ExecutionFailure(f"Action {action} is not supported by the AWS control plane") from None

        try:
            change = await handler(resource_id, details or {})
        except ClientError as e:
            error = e.response.get("Error", {})
            raise ExecutionFailure(f"{error.get('Code', 'ClientError')}: {error.get('Message', str(e))}") from e
        except BotoCoreError as e:
            raise ExecutionFailure(f"AWS call failed: {e}") from e

        logger.info("control_plane.applied", control_plane=self.name, action=action, resource_id=resource_id)
        return ControlPlaneResult(
            success=True,
            message=change.message,
            previous_state=change.previous,
            new_state=change.new,
        )

    async def _instance_state(self, ec2, instance_id: str) -> str | None:
        response = await ec2.describe_instances(InstanceIds=[instance_id])
        for reservation in response.get("Reservations", []):
            for instance in reservation.get("Instances", []):
                return instance.get("State", {}).get("Name")
        return None

    async def _stop_instance(self, resource_id: str, details: dict) -> _Change:
        async with self._client("ec2", details) as ec2:
            previous = await self._instance_state(ec2, resource_id)
            await ec2.stop_instances(InstanceIds=[resource_id])
        return _Change({"state": previous}, {"state": "stopping"}, f"Instance {resource_id} stopping")

    async def _terminate_instance(self, resource_id: str, details: dict) -> _Change:
        async with self._client("ec2", details) as ec2:
            previous = await self._instance_state(ec2, resource_id)
            await ec2.terminate_instances(InstanceIds=[resource_id])
        return _Change({"state": previous}, {"state": "shutting-down"}, f"Instance {resource_id} terminating")

    async def _release_eip(self, resource_id: str, details: dict) -> _Change:
        async with self._client("ec2", details) as ec2:
            await ec2.release_address(AllocationId=resource_id)
        return _Change({"allocation_id": resource_id}, {"released": True}, f"Elastic IP {resource_id} released")

    async def _delete_volume(self, resource_id: str, details: dict) -> _Change:
        async with self._client("ec2", details) as ec2:
            await ec2.delete_volume(VolumeId=resource_id)
        return _Change({"volume_id": resource_id}, {"deleted": True}, f"Volume {resource_id} deleted")

    async def _upgrade_volume_type(self, resource_id: str, details: dict) -> _Change:
        async with self._client("ec2", details) as ec2:
            response = await ec2.modify_volume(VolumeId=resource_id, VolumeType="gp3")
        modification = response.get("VolumeModification", {})
        return _Change(
            {"volume_type": modification.get("OriginalVolumeType", "gp2")},
            {"volume_type": "gp3"},
            f"Volume {resource_id} upgrade to gp3 started",
        )

    async def _delete_snapshot(self, resource_id: str, details: dict) -> _Change:
        async with self._client("ec2", details) as ec2:
            await ec2.delete_snapshot(SnapshotId=resource_id)
        return _Change({"snapshot_id": resource_id}, {"deleted": True}, f"Snapshot {resource_id} deleted")

    async def _stop_rds(self, resource_id: str, details: dict) -> _Change:
        async with self._client("rds", details) as rds:
            response = await rds.stop_db_instance(DBInstanceIdentifier=resource_id)
        status = response.get("DBInstance", {}).get("DBInstanceStatus")
        return _Change({"status": "available"}, {"status": status or "stopping"}, f"RDS instance {resource_id} stopping")

    async def _disable_multi_az(self, resource_id: str, details: dict) -> _Change:
        async with self._client("rds", details) as rds:
            await rds.modify_db_instance(DBInstanceIdentifier=resource_id, MultiAZ=False, ApplyImmediately=True)
        return _Change({"multi_az": True}, {"multi_az": False}, f"Multi-AZ disabled for RDS {resource_id}")

    async def _set_retention(self, resource_id: str, details: dict) -> _Change:
        async with self._client("logs", details) as logs:
            await logs.put_retention_policy(logGroupName=resource_id, retentionInDays=30)
        return _Change({"retention_in_days": None}, {"retention_in_days": 30}, f"Retention set to 30 days for {resource_id}")

    async def _describe_asg(self, autoscaling, name: str) -> dict[str, int]:
        response = await autoscaling.describe_auto_scaling_groups(AutoScalingGroupNames=[name])
        groups = response.get("AutoScalingGroups", [])
        if not groups:
            raise ExecutionFailure(f"ASG not found: {name}")
        group = groups[0]
        return {
            "desired_capacity": group["DesiredCapacity"],
            "min_size": group["MinSize"],
            "max_size": group["MaxSize"],
        }

    async def _terminate_asg(self, resource_id: str, details: dict) -> _Change:
        async with self._client("autoscaling", details) as autoscaling:
            previous = await self._describe_asg(autoscaling, resource_id)
            await autoscaling.update_auto_scaling_group(
                AutoScalingGroupName=resource_id, MinSize=0, MaxSize=0, DesiredCapacity=0
            )
        return _Change(previous, {"desired_capacity": 0, "min_size": 0, "max_size": 0}, f"ASG {resource_id} scaled to 0")

    async def _scale_down_asg(self, resource_id: str, details: dict) -> _Change:
        async with self._client("autoscaling", details) as autoscaling:
            previous = await self._describe_asg(autoscaling, resource_id)
            new_desired = details.get("recommendedCapacity") or max(1, previous["desired_capacity"] // 2)
            new_min = min(new_desired, previous["min_size"])
            await autoscaling.update_auto_scaling_group(
                AutoScalingGroupName=resource_id, MinSize=new_min, DesiredCapacity=new_desired
            )
        return _Change(
            previous,
            {"desired_capacity": new_desired, "min_size": new_min},
            f"ASG {resource_id} scaled down from {previous['desired_capacity']} to {new_desired}",
        )

    async def _delete_lambda(self, resource_id: str, details: dict) -> _Change:
        async with self._client("lambda", details) as lambda_client:
            await lambda_client.delete_function(FunctionName=resource_id)
        return _Change({"function_name": resource_id}, {"deleted": True}, f"Lambda function {resource_id} deleted")

    async def _update_lambda(self, resource_id: str, details: dict, key: str, **config) -> dict[str, Any]:
        async with self._client("lambda", details) as lambda_client:
            current = await lambda_client.get_function_configuration(FunctionName=resource_id)
            await lambda_client.update_function_configuration(FunctionName=resource_id, **config)
        return {"previous": current.get(key)}

    async def _rightsize_lambda(self, resource_id: str, details: dict) -> _Change:
        new_memory = details.get("recommendedMemoryMb")
        if not new_memory:
            raise ExecutionFailure("No recommended memory provided for rightsizing")
        previous = await self._update_lambda(resource_id, details, "MemorySize", MemorySize=int(new_memory))
        return _Change(
            {"memory_mb": previous["previous"]},
            {"memory_mb": new_memory},
            f"Lambda {resource_id} rightsized to {new_memory}MB",
        )

    async def _optimize_lambda_timeout(self, resource_id: str, details: dict) -> _Change:
        recommended = details.get("recommendedTimeout")
        if not recommended:
            raise ExecutionFailure("No recommended timeout provided for optimization")
        previous = await self._update_lambda(resource_id, details, "Timeout", Timeout=int(recommended))
        return _Change(
            {"timeout_seconds": previous["previous"]},
            {"timeout_seconds": recommended},
            f"Lambda {resource_id} timeout set to {recommended}s",
        )

    async def _delete_cache(self, resource_id: str, details: dict) -> _Change:
        async with self._client("elasticache", details) as elasticache:
            await elasticache.delete_cache_cluster(CacheClusterId=resource_id)
        return _Change({"cluster_id": resource_id}, {"deleted": True}, f"Cache cluster {resource_id} deleted")

    async def _delete_lb(self, resource_id: str, details: dict) -> _Change:
        async with self._client("elbv2", details) as elbv2:
            await elbv2.delete_load_balancer(LoadBalancerArn=resource_id)
        return _Change({"load_balancer_arn": resource_id}, {"deleted": True}, f"Load balancer {resource_id} deleted")


def build_control_plane(
    settings: Settings, session_factory: async_sessionmaker[AsyncSession] | None
) -> ControlPlaneClient | None:
    """Select the control plane configured by CONTROL_PLANE."""
    if settings.CONTROL_PLANE == "aws":
        return AWSControlPlane.from_settings(settings)
    if session_factory is None:
        return None
    return InventoryControlPlane(session_factory)
