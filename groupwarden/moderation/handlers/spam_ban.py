from __future__ import annotations

import structlog

from ..intents import BanIntent, DeleteMessageIntent, SpamBanIntent, UntrustIntent
from ..results import HandlerFailure, SpamBanResult
from .ban import BanHandler
from .base import ActionHandler
from .messages import DeleteMessageHandler
from .trust import UntrustHandler

logger = structlog.get_logger(__name__)


class SpamBanHandler(ActionHandler[SpamBanIntent, SpamBanResult]):
    """Delete the spam message, ban everywhere, revoke trust."""

    result_type = SpamBanResult

    def __init__(self, delete: DeleteMessageHandler, ban: BanHandler, untrust: UntrustHandler) -> None:
        self._delete = delete
        self._ban = ban
        self._untrust = untrust

    async def execute(self, intent: SpamBanIntent) -> SpamBanResult:
        deleted = await self._delete.handle(
            DeleteMessageIntent(
                user=intent.user,
                executor=intent.executor,
                reason=intent.reason,
                chat=intent.chat,
                message_id=intent.message_id,
            )
        )
        banned = await self._ban.handle(
            BanIntent(
                user=intent.user,
                executor=intent.executor,
                reason=intent.reason,
                chat=intent.chat,
                message_id=intent.message_id,
            )
        )
        if not banned.success:
            raise HandlerFailure(banned.error_message or "Ban failed")

        untrusted = await self._untrust.handle(
            UntrustIntent(user=intent.user, executor=intent.executor, reason=f"Trust revoked due to ban: {intent.reason}")
        )
        logger.info(
            "spam_ban_complete",
            user_id=intent.user.id,
            message_deleted=deleted.message_deleted,
            chats_affected=banned.chats_affected,
            trust_removed=untrusted.success,
        )
        return SpamBanResult(
            message_deleted=deleted.message_deleted,
            chats_affected=banned.chats_affected,
            trust_removed=untrusted.success,
        )
