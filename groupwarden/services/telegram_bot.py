from __future__ import annotations

import re
from contextlib import asynccontextmanager
from datetime import timedelta, timezone
from pathlib import Path
from typing import Optional

import structlog
from aiogram import Bot, Dispatcher, F
from aiogram.enums import ChatMemberStatus, ChatType, MessageEntityType
from aiogram.exceptions import TelegramBadRequest, TelegramForbiddenError
from aiogram.filters import Command, CommandObject
from aiogram.types import ChatMemberUpdated, Message

from ..config import BotSettings
from ..models import Actor, ChatIdentity, IncomingMessage, ManagedChat, UserIdentity
from ..moderation.intents import (
    BanIntent,
    KickIntent,
    RestrictIntent,
    SpamBanIntent,
    TempBanIntent,
    TrustIntent,
    UnbanIntent,
    UntrustIntent,
    WarnIntent,
)
from ..moderation.results import ModerationResult
from .moderation_service import ModerationCoordinator
from .telegram_transport import AiogramTransport, TelegramNotifier

logger = structlog.get_logger(__name__)

HELP_TEXT = (
    "Admin commands (reply to the offending message):\n"
    "/ban [reason] - ban in every managed chat\n"
    "/tempban <duration> [reason] - temporary ban, e.g. /tempban 2h flooding\n"
    "/unban [reason] - lift the ban and restore trust\n"
    "/warn [reason] - issue a warning\n"
    "/mute <duration> [reason] - restrict in this chat\n"
    "/kick [reason] - remove from this chat\n"
    "/spam - delete, ban and label the message as spam\n"
    "/trust, /untrust - manage the trusted flag\n"
    "Durations look like 30s, 10m, 2h, 3d or combinations such as 1h30m."
)

DURATION_ERROR = "Invalid duration format. Use values like 30s, 10m, 2h, 3d."
_DURATION_UNITS = {"s": 1, "m": 60, "h": 3600, "d": 86400}


def parse_duration(token: str) -> timedelta:
    token = token.lower()
    pattern = re.compile(r"(\d+)([smhd])")
    total = 0
    consumed = 0
    for match in pattern.finditer(token):
        start, end = match.span()
        if start != consumed:
            raise ValueError(DURATION_ERROR)
        consumed = end
        total += int(match.group(1)) * _DURATION_UNITS[match.group(2)]
    if consumed == 0 or consumed != len(token) or total <= 0:
        raise ValueError(DURATION_ERROR)
    return timedelta(seconds=total)


def _user_identity(user) -> UserIdentity:
    name = f"@{user.username}" if user.username else user.full_name
    return UserIdentity(id=user.id, display_name=name)


def _chat_identity(chat) -> ChatIdentity:
    return ChatIdentity(id=chat.id, title=chat.title)


def _extract_urls(message: Message) -> list[str]:
    text = message.text or message.caption or ""
    entities = message.entities or message.caption_entities or []
    urls = []
    for entity in entities:
        if entity.type == MessageEntityType.URL:
            urls.append(entity.extract_from(text))
        elif entity.type == MessageEntityType.TEXT_LINK and entity.url:
            urls.append(entity.url)
    return urls


def _describe(result: ModerationResult, done: str) -> str:
    if not result.success:
        return f"Failed: {result.error_message}"
    return done


class TelegramModerationApp:
    """
    Aiogram integration wrapper around :class:`ModerationCoordinator`.

    - Group text, captions and photos are recorded and run through detection.
    - Admin slash commands map onto the orchestrator's operations.
    - Chats the bot joins or leaves are tracked as managed chats for cross-chat actions.
    """

    def __init__(self, settings: BotSettings) -> None:
        self._settings = settings
        self.bot = Bot(token=settings.telegram_token)
        self.dispatcher = Dispatcher()
        channels = {}
        if settings.moderation.admin_chat_id is not None:
            channels[settings.moderation.admin_channel] = settings.moderation.admin_chat_id
        self.coordinator = ModerationCoordinator(
            settings,
            transport=AiogramTransport(self.bot),
            notifications=TelegramNotifier(self.bot, channels),
        )
        self._media_dir = Path(settings.storage.media_dir)
        self._known_chats: set[int] = set()
        self._register_handlers()

    def _register_handlers(self) -> None:
        self.dispatcher.message(Command(commands=["start", "help"]))(self._handle_help)
        self.dispatcher.message(Command(commands=["ban"]))(self._handle_ban)
        self.dispatcher.message(Command(commands=["tempban"]))(self._handle_temp_ban)
        self.dispatcher.message(Command(commands=["unban"]))(self._handle_unban)
        self.dispatcher.message(Command(commands=["warn"]))(self._handle_warn)
        self.dispatcher.message(Command(commands=["mute"]))(self._handle_mute)
        self.dispatcher.message(Command(commands=["kick"]))(self._handle_kick)
        self.dispatcher.message(Command(commands=["spam"]))(self._handle_spam)
        self.dispatcher.message(Command(commands=["trust"]))(self._handle_trust)
        self.dispatcher.message(Command(commands=["untrust"]))(self._handle_untrust)
        self.dispatcher.message(F.text | F.caption | F.photo)(self._handle_message)
        self.dispatcher.my_chat_member()(self._handle_my_chat_member)

    async def _handle_help(self, message: Message) -> None:
        await message.reply(HELP_TEXT)

    async def _handle_message(self, message: Message) -> None:
        if message.chat.type not in {ChatType.GROUP, ChatType.SUPERGROUP}:
            return
        if message.text and message.text.startswith("/"):
            return  # commands handled separately
        sender = message.sender_chat or message.from_user
        if sender is None:
            return

        await self._remember_chat(message.chat)
        if message.from_user is not None:
            user = _user_identity(message.from_user)
            is_admin = await self._ensure_admin(message.chat.id, message.from_user.id)
        else:
            # channel and anonymous-admin posts arrive without from_user
            user = UserIdentity(id=sender.id, display_name=sender.title)
            is_admin = False

        incoming = IncomingMessage(
            message_id=message.message_id,
            user=user,
            chat=_chat_identity(message.chat),
            timestamp=message.date.replace(tzinfo=timezone.utc),
            text=message.text,
            caption=message.caption,
            photo_path=await self._download_photo(message),
            urls=_extract_urls(message),
            is_user_admin=is_admin,
        )
        logger.info(
            "telegram_message_ingested",
            chat_id=message.chat.id,
            message_id=message.message_id,
            has_photo=incoming.photo_path is not None,
        )
        await self.coordinator.process_message(incoming)

    async def _download_photo(self, message: Message) -> Optional[str]:
        if not message.photo:
            return None
        largest_photo = message.photo[-1]
        try:
            file = await self.bot.get_file(largest_photo.file_id)
            suffix = ".png" if file.file_path and file.file_path.lower().endswith(".png") else ".jpg"
            self._media_dir.mkdir(parents=True, exist_ok=True)
            destination = self._media_dir / f"{message.chat.id}_{message.message_id}{suffix}"
            await self.bot.download(file, destination=destination)
        except (TelegramBadRequest, TelegramForbiddenError, OSError) as exc:
            logger.warning("photo_download_failed", chat_id=message.chat.id, error=str(exc))
            return None
        return str(destination)

    async def _moderation_target(self, message: Message) -> Optional[Message]:
        """Return the replied-to message when the command sender may moderate it."""
        if message.chat.type not in {ChatType.GROUP, ChatType.SUPERGROUP} or message.from_user is None:
            await message.reply("Moderation commands work in group chats only.")
            return None
        if not await self._ensure_admin(message.chat.id, message.from_user.id):
            await message.reply("You must be a chat admin to moderate users.")
            return None
        target = message.reply_to_message
        if target is None or (target.from_user is None and target.sender_chat is None):
            await message.reply("Reply to a message from the user you want to moderate.")
            return None
        return target

    def _target_user(self, target: Message) -> UserIdentity:
        if target.from_user is not None:
            return _user_identity(target.from_user)
        return UserIdentity(id=target.sender_chat.id, display_name=target.sender_chat.title)

    def _executor(self, message: Message) -> Actor:
        user = message.from_user
        return Actor.telegram_user(user.id, f"@{user.username}" if user.username else user.full_name)

    async def _handle_ban(self, message: Message, command: CommandObject) -> None:
        target = await self._moderation_target(message)
        if target is None:
            return
        user = self._target_user(target)
        result = await self.coordinator.orchestrator.ban_user(
            BanIntent(
                user=user,
                executor=self._executor(message),
                reason=command.args or "Banned by admin",
                chat=_chat_identity(message.chat),
                message_id=target.message_id,
            )
        )
        await message.reply(_describe(result, f"{user.display()} banned in {result.chats_affected} chat(s)."))

    async def _handle_temp_ban(self, message: Message, command: CommandObject) -> None:
        target = await self._moderation_target(message)
        if target is None:
            return
        duration_token, _, reason = (command.args or "").partition(" ")
        try:
            duration = parse_duration(duration_token)
        except ValueError as exc:
            await message.reply(str(exc))
            return
        user = self._target_user(target)
        result = await self.coordinator.orchestrator.temp_ban_user(
            TempBanIntent(
                user=user,
                executor=self._executor(message),
                reason=reason.strip() or "Temporarily banned by admin",
                duration=duration,
                chat=_chat_identity(message.chat),
                message_id=target.message_id,
            )
        )
        await message.reply(_describe(result, f"{user.display()} banned for {duration_token}."))

    async def _handle_unban(self, message: Message, command: CommandObject) -> None:
        target = await self._moderation_target(message)
        if target is None:
            return
        user = self._target_user(target)
        result = await self.coordinator.orchestrator.unban_user(
            UnbanIntent(
                user=user,
                executor=self._executor(message),
                reason=command.args or "Unbanned by admin",
                restore_trust=True,
                chat=_chat_identity(message.chat),
                message_id=target.message_id,
            )
        )
        await message.reply(_describe(result, f"{user.display()} unbanned."))

    async def _handle_warn(self, message: Message, command: CommandObject) -> None:
        target = await self._moderation_target(message)
        if target is None:
            return
        user = self._target_user(target)
        result = await self.coordinator.orchestrator.warn_user(
            WarnIntent(
                user=user,
                executor=self._executor(message),
                reason=command.args or "Warned by admin",
                chat=_chat_identity(message.chat),
                message_id=target.message_id,
            )
        )
        summary = f"{user.display()} warned ({result.warning_count} active)."
        if result.auto_ban_triggered:
            summary += " Warning threshold reached, user banned."
        await message.reply(_describe(result, summary))

    async def _handle_mute(self, message: Message, command: CommandObject) -> None:
        target = await self._moderation_target(message)
        if target is None:
            return
        duration_token, _, reason = (command.args or "").partition(" ")
        try:
            duration = parse_duration(duration_token)
        except ValueError as exc:
            await message.reply(str(exc))
            return
        user = self._target_user(target)
        result = await self.coordinator.orchestrator.restrict_user(
            RestrictIntent(
                user=user,
                executor=self._executor(message),
                reason=reason.strip() or "Muted by admin",
                duration=duration,
                chat=_chat_identity(message.chat),
                message_id=target.message_id,
            )
        )
        await message.reply(_describe(result, f"{user.display()} muted for {duration_token}."))

    async def _handle_kick(self, message: Message, command: CommandObject) -> None:
        target = await self._moderation_target(message)
        if target is None:
            return
        user = self._target_user(target)
        result = await self.coordinator.orchestrator.kick_user_from_chat(
            KickIntent(
                user=user,
                executor=self._executor(message),
                reason=command.args or "Kicked by admin",
                chat=_chat_identity(message.chat),
                message_id=target.message_id,
            )
        )
        await message.reply(_describe(result, f"{user.display()} kicked."))

    async def _handle_spam(self, message: Message, command: CommandObject) -> None:
        target = await self._moderation_target(message)
        if target is None:
            return
        user = self._target_user(target)
        result = await self.coordinator.orchestrator.mark_as_spam_and_ban(
            SpamBanIntent(
                user=user,
                executor=self._executor(message),
                reason=command.args or "Marked as spam by admin",
                chat=_chat_identity(message.chat),
                message_id=target.message_id,
                message_text=target.text or target.caption,
            )
        )
        await message.reply(_describe(result, f"Spam removed, {user.display()} banned in {result.chats_affected} chat(s)."))

    async def _handle_trust(self, message: Message, command: CommandObject) -> None:
        target = await self._moderation_target(message)
        if target is None:
            return
        user = self._target_user(target)
        result = await self.coordinator.orchestrator.trust_user(
            TrustIntent(user=user, executor=self._executor(message), reason=command.args or "Trusted by admin")
        )
        await message.reply(_describe(result, f"{user.display()} is now trusted."))

    async def _handle_untrust(self, message: Message, command: CommandObject) -> None:
        target = await self._moderation_target(message)
        if target is None:
            return
        user = self._target_user(target)
        result = await self.coordinator.orchestrator.untrust_user(
            UntrustIntent(user=user, executor=self._executor(message), reason=command.args or "Trust removed by admin")
        )
        await message.reply(_describe(result, f"{user.display()} is no longer trusted."))

    async def _handle_my_chat_member(self, update: ChatMemberUpdated) -> None:
        chat = update.chat
        if chat.type not in {ChatType.GROUP, ChatType.SUPERGROUP}:
            return
        status = update.new_chat_member.status
        active = status in {ChatMemberStatus.MEMBER, ChatMemberStatus.ADMINISTRATOR, ChatMemberStatus.CREATOR}
        await self.coordinator.storage.upsert_chat(
            ManagedChat(chat_id=chat.id, title=chat.title, active=active, healthy=status == ChatMemberStatus.ADMINISTRATOR)
        )
        if active:
            self._known_chats.add(chat.id)
        else:
            self._known_chats.discard(chat.id)
        logger.info("managed_chat_updated", chat_id=chat.id, status=status, active=active)

    async def _remember_chat(self, chat) -> None:
        if chat.id in self._known_chats:
            return
        self._known_chats.add(chat.id)
        await self.coordinator.storage.upsert_chat(ManagedChat(chat_id=chat.id, title=chat.title))

    async def _ensure_admin(self, chat_id: int, user_id: int) -> bool:
        try:
            member = await self.bot.get_chat_member(chat_id, user_id)
        except (TelegramBadRequest, TelegramForbiddenError) as exc:
            logger.warning("admin_check_failed", chat_id=chat_id, user_id=user_id, error=str(exc))
            return False
        return member.status in {ChatMemberStatus.ADMINISTRATOR, ChatMemberStatus.CREATOR}

    async def run(self) -> None:
        await self.coordinator.start()
        try:
            await self.dispatcher.start_polling(self.bot)
        finally:
            await self.coordinator.shutdown()
            await self.bot.session.close()


@asynccontextmanager
async def telegram_app(settings: BotSettings):
    app = TelegramModerationApp(settings)
    await app.coordinator.start()
    try:
        yield app
    finally:
        await app.coordinator.shutdown()
        await app.bot.session.close()
