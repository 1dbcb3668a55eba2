"""Batch outcome folding."""

from enum import Enum
from typing import Iterable

from pydantic import BaseModel, Field, computed_field


class OutcomeStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class BatchItemOutcome(BaseModel):
    """Result of one item in a batch operation."""

    item_id: str
    status: OutcomeStatus
    message: str = ""

    @property
    def success(self) -> bool:
        return self.status == OutcomeStatus.SUCCESS


class BatchResult(BaseModel):
    """Per-item outcomes of a batch with the counts derived from them."""

    results: list[BatchItemOutcome] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def success_count(self) -> int:
        return self._count(OutcomeStatus.SUCCESS)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def fail_count(self) -> int:
        return self._count(OutcomeStatus.FAILED)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def skipped_count(self) -> int:
        return self._count(OutcomeStatus.SKIPPED)

    def _count(self, status: OutcomeStatus) -> int:
        return sum(1 for outcome in self.results if outcome.status == status)

    @classmethod
    def fold(cls, outcomes: Iterable[BatchItemOutcome]) -> "BatchResult":
        return cls(results=list(outcomes))
