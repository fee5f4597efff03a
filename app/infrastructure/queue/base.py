"""
Job queue contract.

Delivery is at-least-once: a job can reach a handler more than once, so
handlers must make a repeated delivery harmless.
"""

from typing import Any, Protocol

from app.infrastructure.queue.models import Job


class JobQueue(Protocol):
    async def enqueue(
        self, name: str, payload: dict[str, Any], *, max_attempts: int | None = None
    ) -> str:
        """Persist a job and return its id."""

    async def reserve(self, name: str) -> Job | None:
        """Hand out the next ready job of this name, or None when there is nothing to do."""

    async def ack(self, job: Job) -> None:
        """Mark a delivered job completed."""

    async def fail(self, job: Job, error: str, *, retriable: bool = True) -> str:
        """
        Report a failed delivery.

        Schedules a retry with backoff, or dead-letters the job when it is not
        retriable or has used up its attempts. Returns the resulting state.
        """
