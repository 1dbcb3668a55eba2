"""CRUD operations for the cloud resource inventory."""

from typing import Iterable

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from costguard.core.errors import PolicyViolation, StoreError
from costguard.models.cloud_resource import CloudResource, OptimizationPolicy
from costguard.schemas.cloud_resource import CloudResourceCreate
from costguard.services.policy_lock import validate_policy_update


async def create_resource(db: AsyncSession, resource_in: CloudResourceCreate) -> CloudResource:
    resource = CloudResource(**resource_in.model_dump(mode="json"))
    db.add(resource)
    await db.commit()
    await db.refresh(resource)
    return resource


async def get_resource(
    db: AsyncSession, resource_type: str, resource_id: str, include_deleted: bool = False
) -> CloudResource | None:
    """
    Get a resource by type and cloud identifier.

    Args:
        db: Database session
        resource_type: Resource type (e.g. 'instances')
        resource_id: Cloud identifier
        include_deleted: Also return resources removed by an executed action

    Returns:
        CloudResource object or None if not found
    """
    query = select(CloudResource).where(
        CloudResource.resource_type == resource_type,
        CloudResource.resource_id == resource_id,
    )
    if not include_deleted:
        query = query.where(CloudResource.deleted.is_(False))
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def get_resources_by_types(db: AsyncSession, resource_types: Iterable[str]) -> list[CloudResource]:
    result = await db.execute(
        select(CloudResource)
        .where(
            CloudResource.resource_type.in_(list(resource_types)),
            CloudResource.deleted.is_(False),
        )
        .order_by(CloudResource.resource_type, CloudResource.resource_id)
    )
    return list(result.scalars().all())


async def set_policy(
    db: AsyncSession, resource: CloudResource, new_policy: OptimizationPolicy
) -> OptimizationPolicy:
    """
    Change a resource's optimization policy.

    The policy lock is re-checked here so no caller can write around it.

    Returns:
        The previous policy

    Raises:
        PolicyViolation: If the policy lock rejects the change
        StoreError: If the write fails
    """
    validation = validate_policy_update(resource, new_policy)
    if not validation.valid:
        raise PolicyViolation(validation.error or "Policy change rejected")

    previous = OptimizationPolicy(resource.optimization_policy)
    resource.optimization_policy = OptimizationPolicy(new_policy).value
    try:
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        raise StoreError(f"Failed to update policy for {resource.resource_id}: {exc}") from exc
    await db.refresh(resource)
    return previous
