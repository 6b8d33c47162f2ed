from __future__ import annotations

import asyncio
import re
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from typing import Iterable, Optional

import structlog

from ...models import CheckResult, DetectionCheckRequest, DetectionCheckResponse
from ...utils.concurrency import run_blocking
from .base import ContentCheck

logger = structlog.get_logger(__name__)


class StopWordsCheck(ContentCheck):
    name = "stop_words"

    def __init__(
        self,
        words: Iterable[str],
        *,
        confidence: int = 90,
        weight: float = 1.0,
        max_workers: int = 2,
    ) -> None:
        self._words = [word.strip() for word in words if word and word.strip()]
        self._confidence = confidence
        self.weight = weight
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="stop-words")
        self._pattern: Optional[re.Pattern[str]] = None
        self._lock = asyncio.Lock()

    def should_execute(self, request: DetectionCheckRequest) -> bool:
        return bool(self._words) and super().should_execute(request)

    def _compile(self) -> re.Pattern[str]:
        alternatives = "|".join(re.escape(word) for word in sorted(self._words, key=len, reverse=True))
        return re.compile(rf"(?<!\w)(?:{alternatives})(?!\w)", re.IGNORECASE | re.MULTILINE)

    async def _compiled(self) -> re.Pattern[str]:
        async with self._lock:
            if self._pattern is None:
                self._pattern = await run_blocking(self._compile)
            return self._pattern

    async def warmup(self) -> None:
        if self._words:
            await self._compiled()
        logger.info("stop_words_warmup_completed", words=len(self._words))

    async def evaluate(self, request: DetectionCheckRequest) -> DetectionCheckResponse:
        pattern = self._pattern or await self._compiled()
        loop = asyncio.get_running_loop()
        matches = await loop.run_in_executor(self._executor, partial(self._find_all, pattern), request.message)
        if not matches:
            return DetectionCheckResponse.clean(self.name, "No stop words found")
        logger.info("stop_words_match", message_id=request.message_id, user_id=request.user.id, matches=matches)
        return DetectionCheckResponse(
            self.name,
            CheckResult.SPAM,
            self._confidence,
            f"Stop words found: {', '.join(matches)}",
        )

    @staticmethod
    def _find_all(pattern: re.Pattern[str], text: str) -> list[str]:
        found: list[str] = []
        for match in pattern.finditer(text):
            word = match.group(0).lower()
            if word not in found:
                found.append(word)
        return found

    async def close(self) -> None:
        await run_blocking(self._executor.shutdown, False)
