from __future__ import annotations

import asyncio

import pytest

from groupwarden.models import ManagedChat
from groupwarden.moderation.cross_chat import CrossChatExecutor
from tests.fakes import InMemoryStorage


@pytest.mark.asyncio
async def test_counts_successes_failures_and_skips() -> None:
    storage = InMemoryStorage(
        [
            ManagedChat(chat_id=1),
            ManagedChat(chat_id=2),
            ManagedChat(chat_id=3, healthy=False),
            ManagedChat(chat_id=4, active=False),
        ]
    )
    touched: list[int] = []

    async def action(chat_id: int) -> None:
        if chat_id == 2:
            raise RuntimeError("not enough rights")
        touched.append(chat_id)

    result = await CrossChatExecutor(storage).execute(action, "ban")

    assert touched == [1]
    assert (result.success_count, result.fail_count, result.skipped_count) == (1, 1, 1)


@pytest.mark.asyncio
async def test_concurrency_is_bounded() -> None:
    storage = InMemoryStorage([ManagedChat(chat_id=index) for index in range(6)])
    running = 0
    peak = 0

    async def action(chat_id: int) -> None:
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0.01)
        running -= 1

    result = await CrossChatExecutor(storage, concurrency_limit=2).execute(action, "ban")

    assert result.success_count == 6
    assert peak == 2
