from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

T = TypeVar("T")


async def run_blocking(func: Callable[..., T], *args: Any, loop: asyncio.AbstractEventLoop | None = None) -> T:
    """Run a blocking callable in the default executor."""
    event_loop = loop or asyncio.get_running_loop()
    return await event_loop.run_in_executor(None, lambda: func(*args))


@dataclass(slots=True)
class DeadlineOutcome(Generic[T]):
    """Results of :func:`gather_until`, keyed by the caller-supplied label."""

    completed: dict[str, T] = field(default_factory=dict)
    failed: dict[str, BaseException] = field(default_factory=dict)
    unfinished: list[str] = field(default_factory=list)
    cancelled: bool = False


async def gather_until(
    factories: dict[str, Callable[[], Awaitable[T]]],
    *,
    deadline: float,
    cancel_event: Optional[asyncio.Event] = None,
) -> DeadlineOutcome[T]:
    """
    Run labelled coroutines concurrently until ``deadline`` (loop time).

    Coroutines still running when the deadline passes or ``cancel_event`` is set
    are cancelled and awaited before returning, and reported in ``unfinished``.
    Cancellation of the caller propagates after the same cleanup.
    """
    loop = asyncio.get_running_loop()
    outcome: DeadlineOutcome[T] = DeadlineOutcome()
    tasks = {label: asyncio.ensure_future(factory()) for label, factory in factories.items()}
    pending = set(tasks.values())
    cancel_waiter = asyncio.ensure_future(cancel_event.wait()) if cancel_event is not None else None

    try:
        while pending:
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            watched = pending | {cancel_waiter} if cancel_waiter is not None else pending
            done, _ = await asyncio.wait(watched, timeout=remaining, return_when=asyncio.FIRST_COMPLETED)
            pending -= done
            if cancel_waiter is not None and cancel_waiter in done:
                outcome.cancelled = True
                break
    finally:
        for task in pending:
            task.cancel()
        if cancel_waiter is not None:
            cancel_waiter.cancel()
        leftovers = [*pending, cancel_waiter] if cancel_waiter is not None else list(pending)
        await asyncio.gather(*leftovers, return_exceptions=True)

    for label, task in tasks.items():
        if task.cancelled():
            outcome.unfinished.append(label)
        elif task.exception() is not None:
            outcome.failed[label] = task.exception()
        else:
            outcome.completed[label] = task.result()
    return outcome
