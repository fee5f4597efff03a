"""
Queue consumer runtime.

Polls the queue for each registered job name, runs up to `concurrency`
jobs of each name at once, and reports every delivery back to the queue:
ack on success, retriable failure for transient errors, dead-letter for
errors a retry cannot fix.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any

import pydantic
import structlog

from app.infrastructure.observability.logging import get_logger, log_job_outcome
from app.infrastructure.queue.base import JobQueue
from app.infrastructure.queue.jobs import PAYLOAD_MODELS, JobName, JobPayload
from app.infrastructure.queue.models import Job, JobOutcome

logger = get_logger(__name__)

JobHandler = Callable[[Any], Awaitable[JobOutcome | None]]


def _is_retriable(error: Exception) -> bool:
    # Errors from this codebase say whether a retry can help; anything else
    # (network, driver, unexpected) gets the benefit of the doubt.
    return bool(getattr(error, "recoverable", True))


class JobConsumer:
    """Dispatches queued jobs to registered handlers."""

    def __init__(
        self,
        queue: JobQueue,
        *,
        concurrency: int = 5,
        poll_interval: float = 1.0,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._queue = queue
        self._concurrency = concurrency
        self._poll_interval = poll_interval
        self._handlers: dict[str, JobHandler] = {}
        self._stop = asyncio.Event()

    @property
    def job_names(self) -> list[str]:
        return list(self._handlers)

    def register(self, name: JobName | str, handler: JobHandler) -> None:
        name = str(name)
        if name in self._handlers:
            raise ValueError(f"Handler already registered for job '{name}'")
        self._handlers[name] = handler

    def stop(self) -> None:
        self._stop.set()

    def _parse_payload(self, job: Job) -> JobPayload | dict[str, Any]:
        try:
            model = PAYLOAD_MODELS[JobName(job.name)]
        except ValueError:
            return job.payload
        return model.model_validate(job.payload)

    async def process_job(self, job: Job) -> str:
        """
        Run one delivery through its handler and report the result.

        Returns "completed", "aborted", or the queue state after a failure.
        """
        handler = self._handlers.get(job.name)
        log = logger.bind(job_name=job.name, job_id=job.id, attempt=job.attempt)
        started = time.perf_counter()

        with structlog.contextvars.bound_contextvars(job_name=job.name, job_id=job.id):
            if handler is None:
                log.error("No handler registered for job")
                outcome = await self._queue.fail(job, f"No handler for job '{job.name}'", retriable=False)
            else:
                outcome = await self._dispatch(job, handler, log)

        log_job_outcome(job.name, job.id, outcome, job.attempt, (time.perf_counter() - started) * 1000)
        return outcome

    async def _dispatch(self, job: Job, handler: JobHandler, log) -> str:
        try:
            payload = self._parse_payload(job)
            result = await handler(payload)
        except pydantic.ValidationError as e:
            log.error("Job payload rejected", error=str(e))
            return await self._queue.fail(job, f"Invalid payload: {e}", retriable=False)
        except Exception as e:
            retriable = _is_retriable(e)
            log.warning(
                "Job handler failed",
                error=str(e),
                error_type=type(e).__name__,
                retriable=retriable,
            )
            return await self._queue.fail(job, f"{type(e).__name__}: {e}", retriable=retriable)

        await self._queue.ack(job)
        if result is not None and result.aborted:
            log.info("Job aborted", abort_reason=result.abort_reason)
            return "aborted"
        return "completed"

    async def process_next(self, name: JobName | str) -> str | None:
        """Reserve and process a single job; None when the queue is empty."""
        job = await self._queue.reserve(str(name))
        if job is None:
            return None
        return await self.process_job(job)

    async def run(self) -> None:
        """Consume every registered job name until stop() is called."""
        if not self._handlers:
            raise RuntimeError("No job handlers registered")

        logger.info(
            "Job consumer starting",
            job_names=self.job_names,
            concurrency=self._concurrency,
        )
        await asyncio.gather(*(self._poll(name) for name in self._handlers))
        logger.info("Job consumer stopped")

    async def _idle(self) -> None:
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=self._poll_interval)
        except TimeoutError:
            pass

    async def _run_guarded(self, job: Job, slots: asyncio.Semaphore) -> None:
        try:
            await self.process_job(job)
        except Exception as e:
            # Reporting to the queue failed; the ack deadline will redeliver the job.
            logger.error(
                "Could not report job result",
                job_name=job.name,
                job_id=job.id,
                error=str(e),
            )
        finally:
            slots.release()

    async def _poll(self, name: str) -> None:
        slots = asyncio.Semaphore(self._concurrency)
        in_flight: set[asyncio.Task] = set()

        while not self._stop.is_set():
            await slots.acquire()
            try:
                job = await self._queue.reserve(name)
            except Exception as e:
                slots.release()
                logger.error("Failed to reserve job", job_name=name, error=str(e))
                await self._idle()
                continue

            if job is None:
                slots.release()
                await self._idle()
                continue

            task = asyncio.create_task(self._run_guarded(job, slots))
            in_flight.add(task)
            task.add_done_callback(in_flight.discard)

        if in_flight:
            logger.info("Waiting for in-flight jobs", job_name=name, count=len(in_flight))
            await asyncio.gather(*in_flight, return_exceptions=True)
