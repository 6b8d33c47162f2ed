from __future__ import annotations

from datetime import datetime
from typing import Optional

import structlog
from aiogram import Bot
from aiogram.exceptions import TelegramAPIError, TelegramBadRequest, TelegramForbiddenError
from aiogram.types import ChatPermissions

from .ports import (
    ChatTransport,
    ChatTransportError,
    DeliveryResult,
    MessageNotFound,
    Notification,
    NotificationOrchestrator,
)

logger = structlog.get_logger(__name__)

MUTED = ChatPermissions(can_send_messages=False)
DEFAULT_MEMBER = ChatPermissions(
    can_send_messages=True,
    can_send_audios=True,
    can_send_documents=True,
    can_send_photos=True,
    can_send_videos=True,
    can_send_video_notes=True,
    can_send_voice_notes=True,
    can_send_polls=True,
    can_send_other_messages=True,
    can_add_web_page_previews=True,
    can_invite_users=True,
)

_GONE_MARKERS = ("message to delete not found", "message can't be deleted", "message_id_invalid")


class AiogramTransport(ChatTransport):
    """:class:`ChatTransport` over the Bot API; API failures surface as :class:`ChatTransportError`."""

    def __init__(self, bot: Bot) -> None:
        self._bot = bot

    async def ban_chat_member(self, chat_id: int, user_id: int, *, until_date: Optional[datetime] = None) -> None:
        try:
            await self._bot.ban_chat_member(chat_id, user_id, until_date=until_date)
        except TelegramAPIError as exc:
            raise ChatTransportError(f"ban failed in chat {chat_id}: {exc}") from exc

    async def unban_chat_member(self, chat_id: int, user_id: int) -> None:
        try:
            await self._bot.unban_chat_member(chat_id, user_id, only_if_banned=True)
        except TelegramAPIError as exc:
            raise ChatTransportError(f"unban failed in chat {chat_id}: {exc}") from exc

    async def restrict_chat_member(self, chat_id: int, user_id: int, *, until_date: datetime) -> None:
        try:
            await self._bot.restrict_chat_member(chat_id, user_id, permissions=MUTED, until_date=until_date)
        except TelegramAPIError as exc:
            raise ChatTransportError(f"restrict failed in chat {chat_id}: {exc}") from exc

    async def restore_chat_member(self, chat_id: int, user_id: int) -> None:
        try:
            await self._bot.restrict_chat_member(chat_id, user_id, permissions=DEFAULT_MEMBER)
        except TelegramAPIError as exc:
            raise ChatTransportError(f"restore failed in chat {chat_id}: {exc}") from exc

    async def delete_message(self, chat_id: int, message_id: int) -> None:
        try:
            await self._bot.delete_message(chat_id, message_id)
        except TelegramBadRequest as exc:
            if any(marker in str(exc).lower() for marker in _GONE_MARKERS):
                raise MessageNotFound(str(exc)) from exc
            raise ChatTransportError(f"delete failed in chat {chat_id}: {exc}") from exc
        except TelegramAPIError as exc:
            raise ChatTransportError(f"delete failed in chat {chat_id}: {exc}") from exc


class TelegramNotifier(NotificationOrchestrator):
    """
    Delivers notifications through the bot itself.

    DMs only reach users who have started a private chat with the bot; channel
    names are resolved through ``channels`` and unknown names are reported as
    undeliverable rather than raised.
    """

    def __init__(self, bot: Bot, channels: Optional[dict[str, int]] = None) -> None:
        self._bot = bot
        self._channels = dict(channels or {})

    async def send_telegram_dm(self, user_id: int, notification: Notification) -> DeliveryResult:
        try:
            await self._bot.send_message(user_id, notification.body)
        except TelegramForbiddenError:
            return DeliveryResult(False, "User has not started a private chat with the bot")
        except TelegramAPIError as exc:
            logger.warning("dm_delivery_failed", user_id=user_id, kind=notification.kind, error=str(exc))
            return DeliveryResult(False, str(exc))
        return DeliveryResult(True)

    async def send_channel(self, channel: str, subject: str, body: str) -> DeliveryResult:
        chat_id = self._channels.get(channel)
        if chat_id is None:
            logger.debug("notification_channel_unconfigured", channel=channel, subject=subject)
            return DeliveryResult(False, f"Channel '{channel}' is not configured")
        try:
            await self._bot.send_message(chat_id, f"{subject}\n\n{body}")
        except TelegramAPIError as exc:
            logger.warning("channel_delivery_failed", channel=channel, chat_id=chat_id, error=str(exc))
            return DeliveryResult(False, str(exc))
        return DeliveryResult(True)
