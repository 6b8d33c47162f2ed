from __future__ import annotations

import html
from datetime import timedelta
from typing import Optional

import structlog

from ...services.ports import DeliveryResult, Notification, NotificationOrchestrator
from ..events import FollowUp, ModerationActionType, ModerationEvent
from .base import SideEffectHandler

logger = structlog.get_logger(__name__)


def format_duration(duration: timedelta) -> str:
    total = int(duration.total_seconds())
    days, remainder = divmod(total, 86400)
    hours, remainder = divmod(remainder, 3600)
    minutes = remainder // 60
    parts = []
    if days:
        parts.append(f"{days}d")
    if hours:
        parts.append(f"{hours}h")
    if minutes or not parts:
        parts.append(f"{minutes}m")
    return " ".join(parts)


class NotificationHandler(SideEffectHandler):
    """User DMs for warn, temp-ban and critical violations; admin alerts for bans and malware."""

    name = "notification"
    action_types = frozenset(
        {
            ModerationActionType.WARN,
            ModerationActionType.TEMP_BAN,
            ModerationActionType.CRITICAL_VIOLATION,
            ModerationActionType.BAN,
            ModerationActionType.MARK_AS_SPAM,
            ModerationActionType.MALWARE_VIOLATION,
        }
    )

    def __init__(self, notifications: NotificationOrchestrator, *, admin_channel: str = "admins") -> None:
        self._notifications = notifications
        self._admin_channel = admin_channel

    async def handle(self, event: ModerationEvent) -> Optional[FollowUp]:
        action = event.action_type
        if action is ModerationActionType.WARN:
            await self._dm(event, Notification("warning", self._warning_body(event)))
        elif action is ModerationActionType.TEMP_BAN:
            await self._dm(event, Notification("tempban", self._temp_ban_body(event)))
        elif action is ModerationActionType.CRITICAL_VIOLATION:
            await self._dm(event, Notification("critical_violation", self._critical_body(event)))
        elif action is ModerationActionType.MALWARE_VIOLATION:
            await self._admins(event, "Malware detected", self._malware_body(event))
        elif action is ModerationActionType.MARK_AS_SPAM:
            await self._admins(event, "Spam ban", self._ban_body(event, spam=True))
        elif action is ModerationActionType.BAN:
            await self._admins(event, "User banned", self._ban_body(event, spam=False))
        return None

    async def _dm(self, event: ModerationEvent, notification: Notification) -> None:
        result = await self._notifications.send_telegram_dm(event.user.id, notification)
        self._log_delivery(event, result, target="user_dm", kind=notification.kind)

    async def _admins(self, event: ModerationEvent, subject: str, body: str) -> None:
        result = await self._notifications.send_channel(self._admin_channel, subject, body)
        self._log_delivery(event, result, target=self._admin_channel, kind=event.action_type.value)

    @staticmethod
    def _log_delivery(event: ModerationEvent, result: DeliveryResult, *, target: str, kind: str) -> None:
        if result.success:
            logger.info("notification_sent", kind=kind, target=target, user_id=event.user.id)
        else:
            logger.warning(
                "notification_failed",
                kind=kind,
                target=target,
                user_id=event.user.id,
                error=result.error_message or "Unknown error",
            )

    @staticmethod
    def _warning_body(event: ModerationEvent) -> str:
        return (
            "⚠️ <b>Warning Issued</b>\n\n"
            "You have received a warning.\n\n"
            f"<b>Reason:</b> {html.escape(event.reason)}\n"
            f"<b>Total Warnings:</b> {event.warning_count}\n\n"
            "Please review the group rules and avoid similar behavior in the future."
        )

    @staticmethod
    def _temp_ban_body(event: ModerationEvent) -> str:
        lines = [
            "⏱️ <b>You have been temporarily banned</b>",
            "",
            f"<b>Reason:</b> {html.escape(event.reason)}",
        ]
        if event.duration is not None:
            lines.append(f"<b>Duration:</b> {format_duration(event.duration)}")
        if event.expires_at is not None:
            lines.append(f"<b>Expires:</b> {event.expires_at:%Y-%m-%d %H:%M} UTC")
        lines.extend(["", "You will be automatically unbanned after this time."])
        return "\n".join(lines)

    @staticmethod
    def _critical_body(event: ModerationEvent) -> str:
        violations = "\n".join(f"• {html.escape(item)}" for item in event.violations) or "• policy violation"
        return (
            "🚫 <b>Your message was removed</b>\n\n"
            f"<b>Reason:</b> {html.escape(event.reason)}\n"
            f"<b>Violations:</b>\n{violations}"
        )

    @staticmethod
    def _malware_body(event: ModerationEvent) -> str:
        chat = event.chat.display() if event.chat else "unknown chat"
        details = "; ".join(event.violations) or event.reason
        return (
            f"Malware posted by {event.user.display()} (ID: {event.user.id}) in {chat}.\n"
            f"Message deleted: {'yes' if event.message_deleted else 'no'}\n"
            f"Details: {details}"
        )

    @staticmethod
    def _ban_body(event: ModerationEvent, *, spam: bool) -> str:
        lines = [
            f"{'Spam ban' if spam else 'Ban'}: {event.user.display()} (ID: {event.user.id})",
            f"By: {event.executor.display()}",
            f"Reason: {event.reason}",
            f"Chats affected: {event.chats_affected}",
        ]
        if spam:
            lines.append(f"Message deleted: {'yes' if event.message_deleted else 'no'}")
            if event.message_text:
                lines.append(f"Message: {event.message_text[:200]}")
        return "\n".join(lines)
