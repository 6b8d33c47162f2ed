from __future__ import annotations

import asyncio
import uuid
from typing import Any, Awaitable, Callable, Optional

import structlog

from ..services.ports import JobTriggerService

logger = structlog.get_logger(__name__)

JobHandler = Callable[[dict[str, Any]], Awaitable[None]]


class LocalJobTrigger(JobTriggerService):
    """
    In-process job runner: each trigger becomes a task that sleeps for its delay
    and then runs the registered handler. Jobs do not survive a restart.
    """

    def __init__(self, *, max_concurrent_jobs: int = 3) -> None:
        self._handlers: dict[str, JobHandler] = {}
        self._semaphore = asyncio.Semaphore(max_concurrent_jobs)
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._running = True

    def register(self, job_name: str, handler: JobHandler) -> None:
        self._handlers[job_name] = handler
        logger.debug("job_registered", job=job_name)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def trigger_now(self, job_name: str, payload: dict[str, Any], *, delay_seconds: float = 0) -> str:
        job_id = f"{job_name}:{uuid.uuid4().hex[:12]}"
        if not self._running:
            logger.warning("job_rejected_stopped", job=job_name, job_id=job_id)
            return job_id
        handler = self._handlers.get(job_name)
        if handler is None:
            logger.warning("job_not_registered", job=job_name, job_id=job_id)
            return job_id
        task = asyncio.create_task(self._run(job_id, handler, dict(payload), delay_seconds))
        self._tasks[job_id] = task
        task.add_done_callback(lambda t: self._on_task_done(job_id, t))
        logger.info("job_triggered", job=job_name, job_id=job_id, delay_seconds=delay_seconds)
        return job_id

    async def _run(self, job_id: str, handler: JobHandler, payload: dict[str, Any], delay_seconds: float) -> None:
        if delay_seconds > 0:
            await asyncio.sleep(delay_seconds)
        async with self._semaphore:
            logger.debug("job_started", job_id=job_id)
            await handler(payload)
            logger.info("job_completed", job_id=job_id)

    def _on_task_done(self, job_id: str, task: asyncio.Task[None]) -> None:
        self._tasks.pop(job_id, None)
        if task.cancelled():
            return
        if task.exception():
            logger.error("job_failed", job_id=job_id, error=str(task.exception()))

    async def wait_idle(self, timeout: Optional[float] = None) -> None:
        tasks = list(self._tasks.values())
        if tasks:
            await asyncio.wait(tasks, timeout=timeout)

    async def stop(self) -> None:
        self._running = False
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("job_trigger_stopped", cancelled=len(tasks))
