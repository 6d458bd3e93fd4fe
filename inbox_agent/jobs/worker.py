"""
Worker process entrypoint.

    inbox-agent-worker daily_agent_scheduler   # hourly sweeps, runs forever
    inbox-agent-worker daily_agent_sweep       # a single sweep, then exit

The job name may also come from WORKER_JOB; the scheduler is the default.
"""

import asyncio
import os
import sys
from collections.abc import Awaitable, Callable

from inbox_agent.features.daily_agent.jobs.daily_agent_job import (
    run_daily_agent_sweep,
    start_daily_agent_scheduler,
)
from inbox_agent.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

DEFAULT_JOB = "daily_agent_scheduler"

JOB_REGISTRY: dict[str, Callable[[], Awaitable[None]]] = {
    DEFAULT_JOB: start_daily_agent_scheduler,
    "daily_agent_sweep": run_daily_agent_sweep,
}


def _normalize(name: str) -> str:
    return name.strip().lower()


def _resolve_job_name() -> str:
    if len(sys.argv) > 1:
        return _normalize(sys.argv[1])
    return _normalize(os.getenv("WORKER_JOB", DEFAULT_JOB))


async def run_worker(job_name: str | None = None) -> None:
    name = _normalize(job_name or _resolve_job_name())
    job = JOB_REGISTRY.get(name)
    if job is None:
        raise ValueError(f"Unknown worker job '{name}', expected one of: {sorted(JOB_REGISTRY)}")

    logger.info("Worker starting", job=name)
    await job()


def main() -> None:
    asyncio.run(run_worker())


if __name__ == "__main__":
    main()
