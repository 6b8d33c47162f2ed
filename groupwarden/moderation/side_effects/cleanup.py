from __future__ import annotations

from typing import Optional

from ..cleanup import CrossChatCleanupScheduler
from ..events import FollowUp, ModerationActionType, ModerationEvent
from .base import SideEffectHandler


class CleanupHandler(SideEffectHandler):
    """Schedules removal of the banned user's messages from every chat."""

    name = "cleanup"
    action_types = frozenset({ModerationActionType.BAN, ModerationActionType.MARK_AS_SPAM})

    def __init__(self, scheduler: CrossChatCleanupScheduler) -> None:
        self._scheduler = scheduler

    async def handle(self, event: ModerationEvent) -> Optional[FollowUp]:
        await self._scheduler.schedule(event.user, reason=event.reason)
        return None
