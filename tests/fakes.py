from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from groupwarden.detection.checks.base import ContentCheck
from groupwarden.detection.errors import DetectionError
from groupwarden.models import (
    Actor,
    AuditEntry,
    CheckResult,
    DetectionCheckRequest,
    DetectionCheckResponse,
    DetectionRecord,
    HistoryMessage,
    IncomingMessage,
    ManagedChat,
    TrainingLabel,
    UserIdentity,
)
from groupwarden.services.ports import (
    ChatTransport,
    ChatTransportError,
    DeliveryResult,
    JobTriggerService,
    MessageNotFound,
    Notification,
    NotificationOrchestrator,
)
from groupwarden.storage.base import StorageGateway


@dataclass
class _UserState:
    banned: bool = False
    ban_expires_at: Optional[datetime] = None
    trusted: bool = False
    warnings: list[datetime] = field(default_factory=list)


class InMemoryStorage(StorageGateway):
    def __init__(self, chats: Optional[list[ManagedChat]] = None) -> None:
        self.messages: dict[tuple[int, int], HistoryMessage] = {}
        self.detections: list[DetectionRecord] = []
        self.labels: dict[tuple[int, int], TrainingLabel] = {}
        self.images: dict[int, tuple[str, bool]] = {}
        self.audit: list[AuditEntry] = []
        self.users: dict[int, _UserState] = {}
        self.chats: dict[int, ManagedChat] = {chat.chat_id: chat for chat in chats or []}
        self.deleted_reasons: dict[tuple[int, int], str] = {}

    async def connect(self) -> None:  # pragma: no cover - noop
        return None

    async def disconnect(self) -> None:  # pragma: no cover - noop
        return None

    def _user(self, user_id: int) -> _UserState:
        return self.users.setdefault(user_id, _UserState())

    async def record_message(self, message: IncomingMessage) -> None:
        self.messages[(message.chat.id, message.message_id)] = HistoryMessage(
            message_id=message.message_id,
            chat_id=message.chat.id,
            user_id=message.user.id,
            text=message.content_text(),
            timestamp=message.timestamp,
            user_name=message.user.display_name,
            photo_path=message.photo_path,
        )

    async def get_message(self, chat_id: int, message_id: int) -> Optional[HistoryMessage]:
        return self.messages.get((chat_id, message_id))

    async def get_recent_messages(self, chat_id: int, limit: int) -> list[HistoryMessage]:
        rows = [msg for msg in self.messages.values() if msg.chat_id == chat_id]
        rows.sort(key=lambda msg: msg.timestamp, reverse=True)
        return rows[:limit]

    async def get_user_messages(self, user_id: int, *, include_deleted: bool = False) -> list[HistoryMessage]:
        return [
            msg for msg in self.messages.values() if msg.user_id == user_id and (include_deleted or not msg.deleted)
        ]

    async def mark_deleted(self, chat_id: int, message_id: int, *, reason: str) -> None:
        stored = self.messages.get((chat_id, message_id))
        if stored is not None:
            stored.deleted = True
        self.deleted_reasons[(chat_id, message_id)] = reason

    async def record_detection(self, record: DetectionRecord) -> None:
        self.detections.append(record)

    async def upsert_label(self, label: TrainingLabel) -> None:
        self.labels[(label.chat_id, label.message_id)] = label

    async def save_sample(self, message_id: int, photo_path: str, *, is_spam: bool, actor: Actor) -> bool:
        if message_id in self.images:
            return False
        self.images[message_id] = (photo_path, is_spam)
        return True

    async def log_action(self, entry: AuditEntry) -> None:
        self.audit.append(entry)

    async def ensure_exists(self, user: UserIdentity) -> None:
        self._user(user.id)

    async def set_banned(
        self,
        user_id: int,
        banned: bool,
        *,
        actor: Actor,
        reason: str,
        expires_at: Optional[datetime] = None,
    ) -> None:
        state = self._user(user_id)
        state.banned = banned
        state.ban_expires_at = expires_at if banned else None

    async def is_banned(self, user_id: int) -> bool:
        return self._user(user_id).banned

    async def get_ban_expiry(self, user_id: int) -> Optional[datetime]:
        return self._user(user_id).ban_expires_at

    async def set_trusted(self, user_id: int, trusted: bool, *, actor: Actor, reason: str) -> None:
        self._user(user_id).trusted = trusted

    async def is_trusted(self, user_id: int) -> bool:
        return self._user(user_id).trusted

    async def add_warning(
        self,
        user_id: int,
        *,
        actor: Actor,
        reason: str,
        expires_at: datetime,
        chat_id: Optional[int] = None,
        message_id: Optional[int] = None,
    ) -> int:
        self._user(user_id).warnings.append(expires_at)
        return await self.active_warning_count(user_id)

    async def active_warning_count(self, user_id: int) -> int:
        now = datetime.now(timezone.utc)
        return sum(1 for expires_at in self._user(user_id).warnings if expires_at > now)

    async def list_active_chats(self) -> list[ManagedChat]:
        return [chat for chat in self.chats.values() if chat.active]

    async def upsert_chat(self, chat: ManagedChat) -> None:
        self.chats[chat.chat_id] = chat


class FakeTransport(ChatTransport):
    def __init__(self, *, failing_chats: tuple[int, ...] = (), missing_messages: tuple[int, ...] = ()) -> None:
        self.calls: list[tuple[Any, ...]] = []
        self._failing_chats = set(failing_chats)
        self._missing_messages = set(missing_messages)

    def _maybe_fail(self, chat_id: int) -> None:
        if chat_id in self._failing_chats:
            raise ChatTransportError(f"bot is not an admin in {chat_id}")

    async def ban_chat_member(self, chat_id: int, user_id: int, *, until_date: Optional[datetime] = None) -> None:
        self._maybe_fail(chat_id)
        self.calls.append(("ban", chat_id, user_id, until_date))

    async def unban_chat_member(self, chat_id: int, user_id: int) -> None:
        self._maybe_fail(chat_id)
        self.calls.append(("unban", chat_id, user_id))

    async def restrict_chat_member(self, chat_id: int, user_id: int, *, until_date: datetime) -> None:
        self._maybe_fail(chat_id)
        self.calls.append(("restrict", chat_id, user_id, until_date))

    async def restore_chat_member(self, chat_id: int, user_id: int) -> None:
        self._maybe_fail(chat_id)
        self.calls.append(("restore", chat_id, user_id))

    async def delete_message(self, chat_id: int, message_id: int) -> None:
        if message_id in self._missing_messages:
            raise MessageNotFound("message to delete not found")
        self._maybe_fail(chat_id)
        self.calls.append(("delete", chat_id, message_id))

    def actions(self, name: str) -> list[tuple[Any, ...]]:
        return [call for call in self.calls if call[0] == name]


class FakeNotifications(NotificationOrchestrator):
    def __init__(self, *, fail: bool = False) -> None:
        self.dms: list[tuple[int, Notification]] = []
        self.channel_messages: list[tuple[str, str, str]] = []
        self._fail = fail

    async def send_telegram_dm(self, user_id: int, notification: Notification) -> DeliveryResult:
        self.dms.append((user_id, notification))
        return DeliveryResult(not self._fail, "blocked" if self._fail else None)

    async def send_channel(self, channel: str, subject: str, body: str) -> DeliveryResult:
        self.channel_messages.append((channel, subject, body))
        return DeliveryResult(not self._fail, "blocked" if self._fail else None)


class FakeJobTrigger(JobTriggerService):
    def __init__(self) -> None:
        self.triggered: list[tuple[str, dict[str, Any], float]] = []

    async def trigger_now(self, job_name: str, payload: dict[str, Any], *, delay_seconds: float = 0) -> str:
        self.triggered.append((job_name, dict(payload), delay_seconds))
        return f"{job_name}:{len(self.triggered)}"

    def names(self) -> list[str]:
        return [name for name, _, _ in self.triggered]


class StaticCheck(ContentCheck):
    """Returns a fixed response, optionally after a delay."""

    def __init__(
        self,
        name: str,
        result: CheckResult = CheckResult.CLEAN,
        confidence: int = 0,
        *,
        details: Optional[str] = None,
        delay: float = 0.0,
        veto: bool = False,
        weight: float = 1.0,
    ) -> None:
        self.name = name
        self.veto_mode = veto
        self.weight = weight
        self._result = result
        self._confidence = confidence
        self._details = details or f"{name}: {result.value}"
        self._delay = delay
        self.calls = 0
        self.seen_flags: list[bool] = []

    async def evaluate(self, request: DetectionCheckRequest) -> DetectionCheckResponse:
        self.calls += 1
        self.seen_flags.append(request.has_spam_flags)
        if self._delay:
            await asyncio.sleep(self._delay)
        return DetectionCheckResponse(
            check_name=self.name,
            result=self._result,
            confidence=self._confidence,
            details=self._details,
        )


class ErrorCheck(ContentCheck):
    def __init__(self, name: str, error: Exception) -> None:
        self.name = name
        self._error = error

    async def evaluate(self, request: DetectionCheckRequest) -> DetectionCheckResponse:
        raise self._error


__all__ = [
    "DetectionError",
    "ErrorCheck",
    "FakeJobTrigger",
    "FakeNotifications",
    "FakeTransport",
    "InMemoryStorage",
    "StaticCheck",
]
