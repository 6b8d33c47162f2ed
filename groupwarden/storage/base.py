from __future__ import annotations

import abc
from datetime import datetime
from typing import Optional

from ..models import (
    Actor,
    AuditEntry,
    DetectionRecord,
    HistoryMessage,
    IncomingMessage,
    ManagedChat,
    TrainingLabel,
    UserIdentity,
)


class MessageHistoryRepository(abc.ABC):
    @abc.abstractmethod
    async def record_message(self, message: IncomingMessage) -> None:
        ...

    @abc.abstractmethod
    async def get_message(self, chat_id: int, message_id: int) -> Optional[HistoryMessage]:
        ...

    @abc.abstractmethod
    async def get_recent_messages(self, chat_id: int, limit: int) -> list[HistoryMessage]:
        ...

    @abc.abstractmethod
    async def get_user_messages(self, user_id: int, *, include_deleted: bool = False) -> list[HistoryMessage]:
        ...

    @abc.abstractmethod
    async def mark_deleted(self, chat_id: int, message_id: int, *, reason: str) -> None:
        ...


class DetectionResultsRepository(abc.ABC):
    @abc.abstractmethod
    async def record_detection(self, record: DetectionRecord) -> None:
        ...


class TrainingLabelsRepository(abc.ABC):
    @abc.abstractmethod
    async def upsert_label(self, label: TrainingLabel) -> None:
        ...


class ImageTrainingSamplesRepository(abc.ABC):
    @abc.abstractmethod
    async def save_sample(self, message_id: int, photo_path: str, *, is_spam: bool, actor: Actor) -> bool:
        """Return False when the sample already exists."""


class AuditLogRepository(abc.ABC):
    @abc.abstractmethod
    async def log_action(self, entry: AuditEntry) -> None:
        ...


class UserModerationRepository(abc.ABC):
    """Ban, trust and warning state per user."""

    @abc.abstractmethod
    async def ensure_exists(self, user: UserIdentity) -> None:
        ...

    @abc.abstractmethod
    async def set_banned(
        self,
        user_id: int,
        banned: bool,
        *,
        actor: Actor,
        reason: str,
        expires_at: Optional[datetime] = None,
    ) -> None:
        ...

    @abc.abstractmethod
    async def is_banned(self, user_id: int) -> bool:
        ...

    @abc.abstractmethod
    async def get_ban_expiry(self, user_id: int) -> Optional[datetime]:
        """None for permanent bans and users who are not banned."""

    @abc.abstractmethod
    async def set_trusted(self, user_id: int, trusted: bool, *, actor: Actor, reason: str) -> None:
        ...

    @abc.abstractmethod
    async def is_trusted(self, user_id: int) -> bool:
        ...

    @abc.abstractmethod
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
        """Append a warning and return the number of active (unexpired) warnings."""

    @abc.abstractmethod
    async def active_warning_count(self, user_id: int) -> int:
        ...


class ManagedChatsRepository(abc.ABC):
    @abc.abstractmethod
    async def list_active_chats(self) -> list[ManagedChat]:
        ...

    @abc.abstractmethod
    async def upsert_chat(self, chat: ManagedChat) -> None:
        ...


class StorageGateway(
    MessageHistoryRepository,
    DetectionResultsRepository,
    TrainingLabelsRepository,
    ImageTrainingSamplesRepository,
    AuditLogRepository,
    UserModerationRepository,
    ManagedChatsRepository,
    abc.ABC,
):
    """Combined repository interface for convenience."""

    @abc.abstractmethod
    async def connect(self) -> None:
        ...

    @abc.abstractmethod
    async def disconnect(self) -> None:
        ...
