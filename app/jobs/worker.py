"""
Background worker runner.

Reads the job names to consume from CLI args or the WORKER_JOBS environment
variable ("all" or a comma-separated list) and runs a queue consumer for
them until SIGINT/SIGTERM.
"""

import asyncio
import os
import signal
import sys

from app.config import get_settings
from app.container import ServiceContainer
from app.infrastructure.observability.logging import get_logger, setup_logging
from app.infrastructure.queue.jobs import JobName

logger = get_logger(__name__)

JOB_REGISTRY: dict[str, JobName] = {name.value: name for name in JobName}


def _resolve_job_names(raw: str | None = None) -> list[JobName]:
    """Pick the target jobs from CLI args or the WORKER_JOBS env variable."""
    if raw is None:
        raw = sys.argv[1] if len(sys.argv) > 1 else os.getenv("WORKER_JOBS", "all")

    requested = [part.strip().lower() for part in raw.split(",") if part.strip()]
    if not requested or requested == ["all"]:
        return list(JOB_REGISTRY.values())

    unknown = [name for name in requested if name not in JOB_REGISTRY]
    if unknown:
        raise ValueError(
            f"Unknown worker job(s) {', '.join(unknown)}. "
            f"Available jobs: {', '.join(sorted(JOB_REGISTRY.keys()))}"
        )
    return [JOB_REGISTRY[name] for name in dict.fromkeys(requested)]


async def run_worker(job_names: str | None = None) -> None:
    """Start services, consume the requested jobs, shut down cleanly."""
    names = _resolve_job_names(job_names)
    settings = get_settings()
    container = ServiceContainer(settings)

    await container.start()
    try:
        consumer = container.build_consumer(names)

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, consumer.stop)
            except NotImplementedError:
                logger.debug("Signal handlers unsupported on this platform", signal=sig.name)

        logger.info("Starting background worker", jobs=[name.value for name in names])
        await consumer.run()
    finally:
        await container.stop()


def main() -> None:
    """CLI entrypoint."""
    setup_logging(log_level=get_settings().LOG_LEVEL)
    asyncio.run(run_worker())


if __name__ == "__main__":
    main()
