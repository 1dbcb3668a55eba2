"""Resource optimization policy API endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from costguard.api.deps import get_db
from costguard.core.rate_limit import bulk_policy_limit
from costguard.schemas.batch import BatchResult
from costguard.schemas.policy import BulkPolicyUpdate, PolicyState, PolicyUpdate, PolicyUpdateResponse
from costguard.services import resource_policy

router = APIRouter()


@router.post("/policy/bulk", response_model=BatchResult)
@bulk_policy_limit
async def bulk_update_policy(
    request: Request,
    response: Response,
    body: BulkPolicyUpdate,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> BatchResult:
    """
    Apply one policy to many resources.

    Resources the policy lock rejects (locked, or production with auto_safe)
    are reported as skipped with the reason; the rest are updated.
    """
    return await resource_policy.bulk_update_policy(db, body.resources, body.policy)


@router.post("/policy/presets/{preset}", response_model=BatchResult)
async def apply_policy_preset(
    preset: str,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> BatchResult:
    """Apply a preset (conservative, balanced, aggressive) across all resources."""
    return await resource_policy.apply_policy_preset(db, preset)


@router.get("/{resource_type}/{resource_id}/policy", response_model=PolicyState)
async def get_resource_policy(
    resource_type: str,
    resource_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> PolicyState:
    """
    Current policy plus whether auto_safe may be set and why not.

    `resource_type` accepts URL form (`rds-instances`) or stored form (`rds_instances`).
    """
    return await resource_policy.get_policy(db, resource_type, resource_id)


@router.patch("/{resource_type}/{resource_id}/policy", response_model=PolicyUpdateResponse)
async def update_resource_policy(
    resource_type: str,
    resource_id: str,
    body: PolicyUpdate,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> PolicyUpdateResponse:
    """
    Change a resource's optimization policy.

    Raises:
        PolicyViolation (403): Locked resource, or auto_safe on production
        NotFoundError (404): Unknown resource
    """
    return await resource_policy.update_policy(db, resource_type, resource_id, body.policy)
