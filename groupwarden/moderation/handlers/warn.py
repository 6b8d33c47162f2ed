from __future__ import annotations

from datetime import timedelta

import structlog

from ...storage.base import UserModerationRepository
from ..intents import WarnIntent
from ..results import WarnResult
from .base import ActionHandler, Clock, utcnow

logger = structlog.get_logger(__name__)


class WarnHandler(ActionHandler[WarnIntent, WarnResult]):
    result_type = WarnResult

    def __init__(
        self,
        users: UserModerationRepository,
        *,
        expiry_days: int = 90,
        clock: Clock = utcnow,
    ) -> None:
        self._users = users
        self._expiry = timedelta(days=expiry_days)
        self._clock = clock

    async def execute(self, intent: WarnIntent) -> WarnResult:
        count = await self._users.add_warning(
            intent.user.id,
            actor=intent.executor,
            reason=intent.reason,
            expires_at=self._clock() + self._expiry,
            chat_id=intent.chat.id if intent.chat else None,
            message_id=intent.message_id,
        )
        logger.info("user_warned", user_id=intent.user.id, warning_count=count, executor=intent.executor.display())
        return WarnResult(warning_count=count)
