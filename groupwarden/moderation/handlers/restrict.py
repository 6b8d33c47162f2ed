from __future__ import annotations

import structlog

from ...services.ports import ChatTransport
from ..cross_chat import CrossChatExecutor
from ..intents import RestorePermissionsIntent, RestrictIntent
from ..results import RestorePermissionsResult, RestrictResult
from .base import ActionHandler, Clock, utcnow

logger = structlog.get_logger(__name__)


class RestrictHandler(ActionHandler[RestrictIntent, RestrictResult]):
    result_type = RestrictResult

    def __init__(self, transport: ChatTransport, executor: CrossChatExecutor, *, clock: Clock = utcnow) -> None:
        self._transport = transport
        self._executor = executor
        self._clock = clock

    async def execute(self, intent: RestrictIntent) -> RestrictResult:
        user_id = intent.user.id
        until = self._clock() + intent.duration
        if intent.chat is not None:
            await self._transport.restrict_chat_member(intent.chat.id, user_id, until_date=until)
            logger.info("user_restricted", user_id=user_id, chat_id=intent.chat.id, until=until.isoformat())
            return RestrictResult(chats_affected=1, expires_at=until)

        async def restrict(chat_id: int) -> None:
            await self._transport.restrict_chat_member(chat_id, user_id, until_date=until)

        outcome = await self._executor.execute(restrict, "restrict")
        logger.info("user_restricted_globally", user_id=user_id, chats_affected=outcome.success_count)
        return RestrictResult(chats_affected=outcome.success_count, expires_at=until)


class RestorePermissionsHandler(ActionHandler[RestorePermissionsIntent, RestorePermissionsResult]):
    result_type = RestorePermissionsResult

    def __init__(self, transport: ChatTransport) -> None:
        self._transport = transport

    async def execute(self, intent: RestorePermissionsIntent) -> RestorePermissionsResult:
        await self._transport.restore_chat_member(intent.chat.id, intent.user.id)
        logger.info("user_permissions_restored", user_id=intent.user.id, chat_id=intent.chat.id)
        return RestorePermissionsResult()
