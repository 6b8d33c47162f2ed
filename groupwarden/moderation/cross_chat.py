from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable

import structlog

from ..storage.base import ManagedChatsRepository

logger = structlog.get_logger(__name__)

ChatAction = Callable[[int], Awaitable[None]]


@dataclass(slots=True)
class CrossChatResult:
    success_count: int = 0
    fail_count: int = 0
    skipped_count: int = 0


class CrossChatExecutor:
    """Runs one chat-level action across every active managed chat."""

    def __init__(self, chats: ManagedChatsRepository, *, concurrency_limit: int = 5) -> None:
        self._chats = chats
        self._semaphore = asyncio.Semaphore(concurrency_limit)

    async def execute(self, action: ChatAction, action_name: str) -> CrossChatResult:
        result = CrossChatResult()
        targets: list[int] = []
        for chat in await self._chats.list_active_chats():
            if not chat.active or not chat.healthy:
                result.skipped_count += 1
                continue
            targets.append(chat.chat_id)

        outcomes = await asyncio.gather(*(self._run(action, action_name, chat_id) for chat_id in targets))
        result.success_count = sum(1 for ok in outcomes if ok)
        result.fail_count = len(outcomes) - result.success_count
        logger.info(
            "cross_chat_action_complete",
            action=action_name,
            success=result.success_count,
            failed=result.fail_count,
            skipped=result.skipped_count,
        )
        return result

    async def _run(self, action: ChatAction, action_name: str, chat_id: int) -> bool:
        async with self._semaphore:
            try:
                await action(chat_id)
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # pylint: disable=broad-except
                logger.warning("cross_chat_action_failed", action=action_name, chat_id=chat_id, error=str(exc))
                return False
        return True
