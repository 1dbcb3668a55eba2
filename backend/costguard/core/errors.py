"""Domain exceptions raised by the recommendation engine.

Every exception carries the HTTP status it maps to, so the API layer can
translate it with a single exception handler.
"""

from fastapi import status


class EngineError(Exception):
    """Base class for all recommendation engine errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InputValidationError(EngineError):
    """Malformed input (bad snooze days, unparseable date, unknown policy...)."""

    status_code = status.HTTP_400_BAD_REQUEST


class IllegalTransition(InputValidationError):
    """Requested event is not allowed from the recommendation's current status."""

    def __init__(self, current_status: str, event: str) -> None:
        super().__init__(f"Cannot {event} a recommendation with status '{current_status}'")
        self.current_status = current_status
        self.event = event


class PolicyViolation(EngineError):
    """Optimization policy change rejected by the policy lock."""

    status_code = status.HTTP_403_FORBIDDEN


class NotFoundError(EngineError):
    status_code = status.HTTP_404_NOT_FOUND


class ConcurrentExecution(EngineError):
    """Another worker holds the execution lease for this recommendation."""

    status_code = status.HTTP_409_CONFLICT


class StoreNotConfigured(EngineError):
    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, message: str = "Not connected to database") -> None:
        super().__init__(message)


class StoreError(EngineError):
    """Persistence failure (constraint violation, connection loss...)."""


class ExecutionFailure(EngineError):
    """Raised by control-plane clients; the executor turns it into an ActionResult."""
