"""Rate limiting configuration using SlowAPI and Redis."""

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from costguard.core.config import settings


def get_client_identifier(request: Request) -> str:
    """
    Get rate limit identifier from request.

    Uses the X-Actor header when the caller identifies itself, otherwise
    the client IP address.
    """
    actor = request.headers.get("X-Actor")
    if actor:
        return f"actor:{actor}"
    return f"ip:{get_remote_address(request)}"


# Initialize SlowAPI limiter with Redis backend
limiter = Limiter(
    key_func=get_client_identifier,
    storage_uri=settings.REDIS_URL,
    enabled=settings.RATE_LIMIT_ENABLED,
    default_limits=[settings.RATE_LIMIT_API_DEFAULT],
    headers_enabled=True,
)

# Endpoints touching the control plane or many rows at once
execute_limit = limiter.limit(settings.RATE_LIMIT_EXECUTE)
drift_tick_limit = limiter.limit(settings.RATE_LIMIT_DRIFT_TICK)
bulk_policy_limit = limiter.limit(settings.RATE_LIMIT_BULK_POLICY)
