"""Optimization policy changes for single resources, bulk selections and presets.

All paths go through the policy lock before writing.
"""

from typing import Iterable

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from costguard.core.errors import InputValidationError, NotFoundError, PolicyViolation, StoreError
from costguard.crud import cloud_resource as cloud_resource_crud
from costguard.models.cloud_resource import CloudResource, OptimizationPolicy
from costguard.schemas.batch import BatchItemOutcome, BatchResult, OutcomeStatus
from costguard.schemas.policy import BulkPolicyTarget, PolicyState, PolicyUpdateResponse
from costguard.services.policy_lock import (
    POLICY_DESCRIPTIONS,
    POLICY_LABELS,
    POLICY_PRESETS,
    can_set_auto_safe,
    get_lock_reason,
    validate_policy_update,
)
from costguard.services.scenarios import ResourceType

logger = structlog.get_logger()


def normalize_resource_type(raw: str) -> str:
    """
    Accept URL-style ("autoscaling-groups") or stored ("autoscaling_groups") names.

    Raises:
        InputValidationError: If the type is unknown
    """
    candidate = raw.strip().lower().replace("-", "_")
    try:
        return ResourceType(candidate).value
    except ValueError:
        raise InputValidationError(f"Invalid resource type: {raw}") from None


async def _get_resource_or_404(db: AsyncSession, resource_type: str, resource_id: str) -> CloudResource:
    resource = await cloud_resource_crud.get_resource(db, resource_type, resource_id)
    if resource is None:
        raise NotFoundError(f"Resource not found: {resource_type}/{resource_id}")
    return resource


def policy_state(resource: CloudResource) -> PolicyState:
    policy = OptimizationPolicy(resource.optimization_policy)
    return PolicyState(
        resource_type=resource.resource_type,
        resource_id=resource.resource_id,
        policy=policy,
        label=POLICY_LABELS[policy],
        description=POLICY_DESCRIPTIONS[policy],
        locked=resource.optimization_policy_locked,
        env=resource.env,
        can_set_auto_safe=can_set_auto_safe(resource),
        lock_reason=get_lock_reason(resource),
    )


async def get_policy(db: AsyncSession, resource_type: str, resource_id: str) -> PolicyState:
    resource = await _get_resource_or_404(db, normalize_resource_type(resource_type), resource_id)
    return policy_state(resource)


async def update_policy(
    db: AsyncSession, resource_type: str, resource_id: str, new_policy: OptimizationPolicy
) -> PolicyUpdateResponse:
    """
    Change one resource's policy.

    Raises:
        NotFoundError: If the resource does not exist
        PolicyViolation: If the policy lock rejects the change
    """
    resource = await _get_resource_or_404(db, normalize_resource_type(resource_type), resource_id)
    previous = await cloud_resource_crud.set_policy(db, resource, new_policy)
    logger.info(
        "policy.updated",
        resource_type=resource.resource_type,
        resource_id=resource_id,
        previous_policy=previous.value,
        new_policy=OptimizationPolicy(new_policy).value,
    )
    return PolicyUpdateResponse(
        resource_type=resource.resource_type,
        resource_id=resource_id,
        previous_policy=previous,
        new_policy=new_policy,
    )


async def _apply_to_resource(
    db: AsyncSession, resource: CloudResource, new_policy: OptimizationPolicy
) -> BatchItemOutcome:
    item_id = resource.resource_id
    validation = validate_policy_update(resource, new_policy)
    if not validation.valid:
        return BatchItemOutcome(item_id=item_id, status=OutcomeStatus.SKIPPED, message=validation.error or "")

    try:
        await cloud_resource_crud.set_policy(db, resource, new_policy)
    except PolicyViolation as e:
        return BatchItemOutcome(item_id=item_id, status=OutcomeStatus.SKIPPED, message=e.message)
    except StoreError as e:
        return BatchItemOutcome(item_id=item_id, status=OutcomeStatus.FAILED, message=e.message)
    return BatchItemOutcome(item_id=item_id, status=OutcomeStatus.SUCCESS, message=f"Updated to {new_policy.value}")


async def bulk_update_policy(
    db: AsyncSession, targets: Iterable[BulkPolicyTarget], new_policy: OptimizationPolicy
) -> BatchResult:
    """
    Apply one policy to many resources, sequentially.

    Locked or production resources the lock rejects are skipped; missing
    resources fail. One item's outcome never affects another's.
    """
    new_policy = OptimizationPolicy(new_policy)
    outcomes = []
    for target in targets:
        try:
            resource_type = normalize_resource_type(target.resource_type)
        except InputValidationError as e:
            outcomes.append(BatchItemOutcome(item_id=target.resource_id, status=OutcomeStatus.FAILED, message=e.message))
            continue

        resource = await cloud_resource_crud.get_resource(db, resource_type, target.resource_id)
        if resource is None:
            outcomes.append(
                BatchItemOutcome(item_id=target.resource_id, status=OutcomeStatus.FAILED, message="Resource not found")
            )
            continue
        outcomes.append(await _apply_to_resource(db, resource, new_policy))

    result = BatchResult.fold(outcomes)
    logger.info(
        "policy.bulk_updated",
        policy=new_policy.value,
        success=result.success_count,
        failed=result.fail_count,
        skipped=result.skipped_count,
    )
    return result


async def apply_policy_preset(db: AsyncSession, preset_name: str) -> BatchResult:
    """
    Apply a named preset (conservative, balanced, aggressive).

    Only resources whose current policy differs from the preset's are touched.

    Raises:
        InputValidationError: If the preset does not exist
    """
    preset = POLICY_PRESETS.get(preset_name.strip().lower())
    if preset is None:
        raise InputValidationError(
            f"Unknown preset '{preset_name}'. Available: {', '.join(sorted(POLICY_PRESETS))}"
        )

    resources = await cloud_resource_crud.get_resources_by_types(db, [t.value for t in ResourceType])
    outcomes = []
    for resource in resources:
        target = preset.policy_for(resource.resource_type)
        if target is None or resource.optimization_policy == target.value:
            continue
        outcomes.append(await _apply_to_resource(db, resource, target))

    result = BatchResult.fold(outcomes)
    logger.info(
        "policy.preset_applied",
        preset=preset_name,
        success=result.success_count,
        skipped=result.skipped_count,
    )
    return result
