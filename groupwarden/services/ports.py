from __future__ import annotations

import abc
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional


class ChatTransportError(Exception):
    pass


class MessageNotFound(ChatTransportError):
    pass


class ChatTransport(abc.ABC):
    """Chat-platform operations the moderation handlers need."""

    @abc.abstractmethod
    async def ban_chat_member(self, chat_id: int, user_id: int, *, until_date: Optional[datetime] = None) -> None:
        ...

    @abc.abstractmethod
    async def unban_chat_member(self, chat_id: int, user_id: int) -> None:
        ...

    @abc.abstractmethod
    async def restrict_chat_member(self, chat_id: int, user_id: int, *, until_date: datetime) -> None:
        ...

    @abc.abstractmethod
    async def restore_chat_member(self, chat_id: int, user_id: int) -> None:
        """Give the member back the chat's default permissions."""

    @abc.abstractmethod
    async def delete_message(self, chat_id: int, message_id: int) -> None:
        """Raise :class:`MessageNotFound` when the message is already gone."""


@dataclass(slots=True)
class Notification:
    kind: str
    body: str


@dataclass(slots=True)
class DeliveryResult:
    success: bool
    error_message: Optional[str] = None


class NotificationOrchestrator(abc.ABC):
    @abc.abstractmethod
    async def send_telegram_dm(self, user_id: int, notification: Notification) -> DeliveryResult:
        ...

    @abc.abstractmethod
    async def send_channel(self, channel: str, subject: str, body: str) -> DeliveryResult:
        ...


class JobTriggerService(abc.ABC):
    @abc.abstractmethod
    async def trigger_now(self, job_name: str, payload: dict[str, Any], *, delay_seconds: float = 0) -> str:
        """Schedule ``job_name`` and return its job id."""
