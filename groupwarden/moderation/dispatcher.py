from __future__ import annotations

import asyncio
from typing import Iterable, Sequence

import structlog

from .events import DispatchResult, FollowUp, ModerationEvent
from .results import SideEffectFailure
from .side_effects.base import SideEffectHandler

logger = structlog.get_logger(__name__)


class ModerationEventDispatcher:
    """Runs side effects for an event in order; one failing handler never stops the rest."""

    def __init__(self, handlers: Iterable[SideEffectHandler]) -> None:
        self.handlers: Sequence[SideEffectHandler] = tuple(handlers)

    async def dispatch(self, event: ModerationEvent, *, allow_follow_up: bool = True) -> DispatchResult:
        result = DispatchResult()
        for handler in self.handlers:
            if not handler.applies_to(event):
                continue
            try:
                follow_up = await handler.handle(event)
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # pylint: disable=broad-except
                logger.exception(
                    "side_effect_failed",
                    handler=handler.name,
                    action=event.action_type.value,
                    user_id=event.user.id,
                )
                result.failures.append(SideEffectFailure(handler.name, exc))
                continue
            if follow_up is not None and follow_up > result.follow_up:
                result.follow_up = follow_up

        if result.follow_up is not FollowUp.NONE and not allow_follow_up:
            logger.info(
                "follow_up_suppressed",
                action=event.action_type.value,
                user_id=event.user.id,
                follow_up=result.follow_up.name,
            )
            result.follow_up = FollowUp.NONE
        logger.debug(
            "event_dispatched",
            action=event.action_type.value,
            user_id=event.user.id,
            follow_up=result.follow_up.name,
            failures=len(result.failures),
        )
        return result
