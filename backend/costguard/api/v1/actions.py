"""Direct action execution endpoint."""

from typing import Annotated

from fastapi import APIRouter, Depends, Request, Response

from costguard.api.deps import get_executor
from costguard.core.errors import InputValidationError, StoreNotConfigured
from costguard.core.rate_limit import execute_limit
from costguard.schemas.action import ActionResult, ExecuteActionParams, ExecuteActionRequest
from costguard.services.action_executor import ActionExecutor
from costguard.services.scenarios import ActionType, ResourceType

router = APIRouter()


@router.post("", response_model=ActionResult)
@execute_limit
async def execute_action(
    request: Request,
    response: Response,
    body: ExecuteActionRequest,
    executor: Annotated[ActionExecutor | None, Depends(get_executor)],
) -> ActionResult:
    """
    Execute one action against the control plane, outside any recommendation.

    A failed action still returns 200 with `success` false; either way one
    audit entry is written. Rate limited.

    Raises:
        InputValidationError (400): Unknown action or resource type
        StoreNotConfigured (401): No database or no control plane
    """
    if body.action not in {a.value for a in ActionType}:
        raise InputValidationError(f"Unknown action: {body.action}")
    if body.resource_type not in {t.value for t in ResourceType}:
        raise InputValidationError(f"Invalid resource type: {body.resource_type}")

    if executor is None:
        raise StoreNotConfigured("No control plane configured")

    params = ExecuteActionParams(**body.model_dump(exclude={"executed_by"}))
    return await executor.execute_action(params, executed_by=body.executed_by)
