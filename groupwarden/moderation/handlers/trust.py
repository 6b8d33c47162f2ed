from __future__ import annotations

import structlog

from ...storage.base import UserModerationRepository
from ..intents import TrustIntent, UntrustIntent
from ..results import TrustResult
from .base import ActionHandler

logger = structlog.get_logger(__name__)


class TrustHandler(ActionHandler[TrustIntent, TrustResult]):
    result_type = TrustResult

    def __init__(self, users: UserModerationRepository) -> None:
        self._users = users

    async def execute(self, intent: TrustIntent) -> TrustResult:
        await self._users.ensure_exists(intent.user)
        await self._users.set_trusted(intent.user.id, True, actor=intent.executor, reason=intent.reason)
        logger.info("user_trusted", user_id=intent.user.id, executor=intent.executor.display())
        return TrustResult()


class UntrustHandler(ActionHandler[UntrustIntent, TrustResult]):
    result_type = TrustResult

    def __init__(self, users: UserModerationRepository) -> None:
        self._users = users

    async def execute(self, intent: UntrustIntent) -> TrustResult:
        await self._users.set_trusted(intent.user.id, False, actor=intent.executor, reason=intent.reason)
        logger.info("user_untrusted", user_id=intent.user.id, executor=intent.executor.display())
        return TrustResult()
