"""Queue-side job records."""

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class JobState(StrEnum):
    ENQUEUED = "enqueued"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"  # waiting for a retry
    DEAD_LETTERED = "dead_lettered"


@dataclass(slots=True)
class Job:
    """One delivery of a queued job as seen by a worker."""

    id: str
    name: str
    payload: dict[str, Any]
    attempt: int
    max_attempts: int
    state: JobState = JobState.ACTIVE
    last_error: str | None = None


@dataclass(slots=True)
class JobOutcome:
    """What a handler reports back for a job that did not raise."""

    abort_reason: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def aborted(self) -> bool:
        return self.abort_reason is not None


def compute_backoff(attempt: int, base_delay: float, max_delay: float) -> float:
    """Exponential retry delay after the given (1-based) failed attempt."""
    if attempt < 1:
        attempt = 1
    return min(max_delay, base_delay * (2 ** (attempt - 1)))
