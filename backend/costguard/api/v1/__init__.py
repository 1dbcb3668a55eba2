"""API v1 router configuration."""

from fastapi import APIRouter

from costguard.api.v1 import actions, audit, drift_tick, recommendations, resources

api_router = APIRouter()

api_router.include_router(recommendations.router, prefix="/recommendations", tags=["recommendations"])
api_router.include_router(resources.router, prefix="/resources", tags=["resource-policies"])
api_router.include_router(audit.router, prefix="/audit-log", tags=["audit-log"])
api_router.include_router(drift_tick.router, prefix="/drift-tick", tags=["drift-tick"])
api_router.include_router(actions.router, prefix="/execute-action", tags=["actions"])
