from __future__ import annotations

import asyncio
import time
from typing import Callable

import structlog

from ..models import UserIdentity
from ..services.ports import JobTriggerService

logger = structlog.get_logger(__name__)

CROSS_CHAT_CLEANUP_JOB = "cross_chat_cleanup"


class CrossChatCleanupScheduler:
    """
    Triggers the cross-chat message cleanup job after a ban.

    The job is delayed so the ban settles before messages are swept, and repeat
    triggers for the same user inside the dedup window are dropped.
    """

    def __init__(
        self,
        jobs: JobTriggerService,
        *,
        delay_seconds: float = 15.0,
        dedup_window_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._jobs = jobs
        self._delay_seconds = delay_seconds
        self._dedup_window = dedup_window_seconds
        self._clock = clock
        self._last_triggered: dict[int, float] = {}
        self._lock = asyncio.Lock()

    async def schedule(self, user: UserIdentity, *, reason: str) -> bool:
        async with self._lock:
            now = self._clock()
            last = self._last_triggered.get(user.id)
            if last is not None and now - last < self._dedup_window:
                logger.debug("cleanup_deduplicated", user_id=user.id, since_last=round(now - last, 2))
                return False
            self._last_triggered[user.id] = now
            self._prune(now)

        job_id = await self._jobs.trigger_now(
            CROSS_CHAT_CLEANUP_JOB,
            {"user_id": user.id, "reason": reason},
            delay_seconds=self._delay_seconds,
        )
        logger.info("cleanup_scheduled", user_id=user.id, job_id=job_id, delay_seconds=self._delay_seconds)
        return True

    def _prune(self, now: float) -> None:
        expired = [user_id for user_id, at in self._last_triggered.items() if now - at >= self._dedup_window]
        for user_id in expired:
            del self._last_triggered[user_id]
