from __future__ import annotations

import abc
import asyncio
from datetime import datetime, timezone
from typing import Callable, Generic, TypeVar

import structlog

from ..intents import ModerationIntent
from ..results import HandlerResult

logger = structlog.get_logger(__name__)

IntentT = TypeVar("IntentT", bound=ModerationIntent)
ResultT = TypeVar("ResultT", bound=HandlerResult)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ActionHandler(abc.ABC, Generic[IntentT, ResultT]):
    """
    Executes exactly one kind of moderation action.

    Subclasses implement :meth:`execute`; :meth:`handle` turns any domain or
    transport error into a failed result so callers never see those exceptions.
    Cancellation always propagates.
    """

    result_type: type[ResultT]

    async def handle(self, intent: IntentT) -> ResultT:
        try:
            return await self.execute(intent)
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # pylint: disable=broad-except
            logger.error(
                "action_handler_failed",
                handler=type(self).__name__,
                user_id=intent.user.id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return self.result_type.failed(str(exc) or type(exc).__name__)

    @abc.abstractmethod
    async def execute(self, intent: IntentT) -> ResultT:
        ...
