from __future__ import annotations

from typing import Optional

import structlog

from ..events import FollowUp, ModerationActionType, ModerationEvent
from .base import SideEffectHandler

logger = structlog.get_logger(__name__)


class WarningThresholdHandler(SideEffectHandler):
    name = "warning_threshold"
    action_types = frozenset({ModerationActionType.WARN})

    def __init__(self, *, threshold: int = 3, auto_ban_enabled: bool = True) -> None:
        self._threshold = threshold
        self._auto_ban_enabled = auto_ban_enabled

    async def handle(self, event: ModerationEvent) -> Optional[FollowUp]:
        if not self._auto_ban_enabled or event.warning_count < self._threshold:
            return FollowUp.NONE
        logger.warning(
            "warning_threshold_reached",
            user_id=event.user.id,
            warning_count=event.warning_count,
            threshold=self._threshold,
        )
        return FollowUp.BAN
