from __future__ import annotations

from functools import partial
from typing import Union

import structlog

from ...services.ports import ChatTransport, JobTriggerService
from ...storage.base import UserModerationRepository
from ..cross_chat import CrossChatExecutor
from ..intents import BanIntent, KickIntent, SyncBanIntent, TempBanIntent, UnbanIntent
from ..results import BanResult, KickResult, TempBanResult, UnbanResult
from .base import ActionHandler, Clock, utcnow

logger = structlog.get_logger(__name__)

TEMP_BAN_EXPIRY_JOB = "temp_ban_expiry"


class BanHandler(ActionHandler[Union[BanIntent, SyncBanIntent], BanResult]):
    result_type = BanResult

    def __init__(
        self,
        transport: ChatTransport,
        users: UserModerationRepository,
        executor: CrossChatExecutor,
    ) -> None:
        self._transport = transport
        self._users = users
        self._executor = executor

    async def execute(self, intent: Union[BanIntent, SyncBanIntent]) -> BanResult:
        user_id = intent.user.id
        if isinstance(intent, SyncBanIntent):
            await self._transport.ban_chat_member(intent.chat.id, user_id)
            logger.info("ban_synced", user_id=user_id, chat_id=intent.chat.id)
            return BanResult(chats_affected=1)

        outcome = await self._executor.execute(partial(self._ban_in_chat, user_id), "ban")
        await self._users.set_banned(user_id, True, actor=intent.executor, reason=intent.reason)
        logger.info(
            "user_banned",
            user_id=user_id,
            executor=intent.executor.display(),
            chats_affected=outcome.success_count,
            chats_failed=outcome.fail_count,
        )
        return BanResult(chats_affected=outcome.success_count, chats_failed=outcome.fail_count)

    async def _ban_in_chat(self, user_id: int, chat_id: int) -> None:
        await self._transport.ban_chat_member(chat_id, user_id)


class TempBanHandler(ActionHandler[TempBanIntent, TempBanResult]):
    result_type = TempBanResult

    def __init__(
        self,
        transport: ChatTransport,
        users: UserModerationRepository,
        executor: CrossChatExecutor,
        jobs: JobTriggerService,
        *,
        clock: Clock = utcnow,
    ) -> None:
        self._transport = transport
        self._users = users
        self._executor = executor
        self._jobs = jobs
        self._clock = clock

    async def execute(self, intent: TempBanIntent) -> TempBanResult:
        user_id = intent.user.id
        expires_at = self._clock() + intent.duration

        async def ban(chat_id: int) -> None:
            await self._transport.ban_chat_member(chat_id, user_id, until_date=expires_at)

        outcome = await self._executor.execute(ban, "temp_ban")
        await self._users.set_banned(
            user_id,
            True,
            actor=intent.executor,
            reason=intent.reason,
            expires_at=expires_at,
        )
        await self._jobs.trigger_now(
            TEMP_BAN_EXPIRY_JOB,
            {"user_id": user_id, "expires_at": expires_at.isoformat(), "reason": intent.reason},
            delay_seconds=intent.duration.total_seconds(),
        )
        logger.info("user_temp_banned", user_id=user_id, expires_at=expires_at.isoformat())
        return TempBanResult(chats_affected=outcome.success_count, expires_at=expires_at)


class UnbanHandler(ActionHandler[UnbanIntent, UnbanResult]):
    result_type = UnbanResult

    def __init__(
        self,
        transport: ChatTransport,
        users: UserModerationRepository,
        executor: CrossChatExecutor,
    ) -> None:
        self._transport = transport
        self._users = users
        self._executor = executor

    async def execute(self, intent: UnbanIntent) -> UnbanResult:
        user_id = intent.user.id

        async def unban(chat_id: int) -> None:
            await self._transport.unban_chat_member(chat_id, user_id)

        outcome = await self._executor.execute(unban, "unban")
        await self._users.set_banned(user_id, False, actor=intent.executor, reason=intent.reason)
        logger.info("user_unbanned", user_id=user_id, chats_affected=outcome.success_count)
        return UnbanResult(chats_affected=outcome.success_count)


class KickHandler(ActionHandler[KickIntent, KickResult]):
    """Removes a user from one chat without leaving a ban behind."""

    result_type = KickResult

    def __init__(self, transport: ChatTransport) -> None:
        self._transport = transport

    async def execute(self, intent: KickIntent) -> KickResult:
        await self._transport.ban_chat_member(intent.chat.id, intent.user.id)
        await self._transport.unban_chat_member(intent.chat.id, intent.user.id)
        logger.info("user_kicked", user_id=intent.user.id, chat_id=intent.chat.id)
        return KickResult()
