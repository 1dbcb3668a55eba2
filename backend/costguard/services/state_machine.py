"""Recommendation status transition table.

Every status change goes through `transition`; anything not listed in
TRANSITIONS is rejected before a write happens.
"""

from enum import Enum

from costguard.core.errors import IllegalTransition
from costguard.models.recommendation import RecommendationStatus as S


class RecommendationEvent(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    SNOOZE = "snooze"
    SCHEDULE = "schedule"
    EXECUTE_SUCCEEDED = "execute_succeeded"
    EXECUTE_FAILED = "execute_failed"
    UNSNOOZE = "unsnooze"
    EXPIRE = "expire"


E = RecommendationEvent

TRANSITIONS: dict[tuple[S, E], S] = {
    (S.PENDING, E.APPROVE): S.APPROVED,
    (S.SNOOZED, E.APPROVE): S.APPROVED,
    (S.PENDING, E.REJECT): S.REJECTED,
    (S.APPROVED, E.REJECT): S.REJECTED,
    (S.SNOOZED, E.REJECT): S.REJECTED,
    (S.SCHEDULED, E.REJECT): S.REJECTED,
    (S.PENDING, E.SNOOZE): S.SNOOZED,
    (S.PENDING, E.SCHEDULE): S.SCHEDULED,
    (S.APPROVED, E.SCHEDULE): S.SCHEDULED,
    (S.APPROVED, E.EXECUTE_SUCCEEDED): S.EXECUTED,
    (S.SCHEDULED, E.EXECUTE_SUCCEEDED): S.EXECUTED,
    (S.APPROVED, E.EXECUTE_FAILED): S.APPROVED,
    (S.SCHEDULED, E.EXECUTE_FAILED): S.APPROVED,
    (S.SNOOZED, E.UNSNOOZE): S.PENDING,
    (S.PENDING, E.EXPIRE): S.EXPIRED,
    (S.SNOOZED, E.EXPIRE): S.EXPIRED,
}

del E

EXECUTABLE_STATUSES = frozenset({S.APPROVED, S.SCHEDULED})
EXECUTION_EVENTS = frozenset({RecommendationEvent.EXECUTE_SUCCEEDED, RecommendationEvent.EXECUTE_FAILED})


def can_transition(current: S | str, event: RecommendationEvent | str) -> bool:
    return (S(current), RecommendationEvent(event)) in TRANSITIONS


def transition(current: S | str, event: RecommendationEvent | str) -> S:
    """
    Return the status reached by applying `event` to `current`.

    Raises:
        IllegalTransition: If the pair is not in the table
    """
    current, event = S(current), RecommendationEvent(event)
    try:
        return TRANSITIONS[(current, event)]
    except KeyError:
        raise IllegalTransition(current.value, event.value) from None


def event_for_target(current: S | str, target: S | str) -> RecommendationEvent | None:
    """
    Find a single event moving `current` to `target`, if one exists.

    Execution outcomes are only produced by the executor and never matched.
    """
    current, target = S(current), S(target)
    for (from_status, event), to_status in TRANSITIONS.items():
        if event in EXECUTION_EVENTS:
            continue
        if from_status == current and to_status == target:
            return event
    return None
