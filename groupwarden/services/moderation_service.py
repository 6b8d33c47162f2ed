from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Optional

import structlog

from ..adapters.cas import CasClient
from ..adapters.openai import GPTClient, OmniModerationClient
from ..config import BotSettings, DetectionSettings, ModerationSettings
from ..detection.aggregator import DetectionAggregator
from ..detection.cache import DetectionCache
from ..detection.checks.base import ContentCheck
from ..detection.checks.cas import CasCheck
from ..detection.checks.invisible_chars import InvisibleCharsCheck
from ..detection.checks.omni import OmniModerationCheck
from ..detection.checks.openai import OpenAIContentCheck
from ..detection.checks.spacing import SpacingCheck
from ..detection.checks.stop_words import StopWordsCheck
from ..detection.engine import ContentDetectionEngine
from ..detection.veto import VetoController
from ..logging.events import setup_logging
from ..models import (
    Actor,
    AggregatedOutcome,
    Classification,
    DetectionCheckRequest,
    DetectionRecord,
    IncomingMessage,
    UserIdentity,
)
from ..moderation.cleanup import CROSS_CHAT_CLEANUP_JOB, CrossChatCleanupScheduler
from ..moderation.cross_chat import CrossChatExecutor
from ..moderation.dispatcher import ModerationEventDispatcher
from ..moderation.handlers.ban import TEMP_BAN_EXPIRY_JOB, BanHandler, KickHandler, TempBanHandler, UnbanHandler
from ..moderation.handlers.messages import CriticalViolationHandler, DeleteMessageHandler, MalwareViolationHandler
from ..moderation.handlers.restrict import RestorePermissionsHandler, RestrictHandler
from ..moderation.handlers.spam_ban import SpamBanHandler
from ..moderation.handlers.trust import TrustHandler, UntrustHandler
from ..moderation.handlers.warn import WarnHandler
from ..moderation.intents import SpamBanIntent, UnbanIntent, is_protected
from ..moderation.orchestrator import ActionHandlers, ModerationOrchestrator
from ..moderation.side_effects.audit import AuditHandler
from ..moderation.side_effects.cleanup import CleanupHandler
from ..moderation.side_effects.notification import NotificationHandler
from ..moderation.side_effects.training import RetrainDebouncer, TrainingHandler
from ..moderation.side_effects.warning_threshold import WarningThresholdHandler
from ..scheduler.jobs import LocalJobTrigger
from ..storage.base import StorageGateway
from ..storage.sqlite import SQLiteStorage
from .ports import ChatTransport, JobTriggerService, MessageNotFound, NotificationOrchestrator

logger = structlog.get_logger(__name__)


def build_orchestrator(
    storage: StorageGateway,
    transport: ChatTransport,
    notifications: NotificationOrchestrator,
    jobs: JobTriggerService,
    settings: Optional[ModerationSettings] = None,
) -> ModerationOrchestrator:
    settings = settings or ModerationSettings()
    executor = CrossChatExecutor(storage)
    ban = BanHandler(transport, storage, executor)
    delete = DeleteMessageHandler(transport, storage)
    untrust = UntrustHandler(storage)
    handlers = ActionHandlers(
        ban=ban,
        temp_ban=TempBanHandler(transport, storage, executor, jobs),
        unban=UnbanHandler(transport, storage, executor),
        kick=KickHandler(transport),
        warn=WarnHandler(storage, expiry_days=settings.warning_expiry_days),
        trust=TrustHandler(storage),
        untrust=untrust,
        delete=delete,
        restrict=RestrictHandler(transport, executor),
        restore_permissions=RestorePermissionsHandler(transport),
        spam_ban=SpamBanHandler(delete, ban, untrust),
        malware=MalwareViolationHandler(storage, delete),
        critical=CriticalViolationHandler(storage, delete),
    )
    cleanup = CrossChatCleanupScheduler(
        jobs,
        delay_seconds=settings.cleanup_delay_seconds,
        dedup_window_seconds=settings.cleanup_dedup_window_seconds,
    )
    dispatcher = ModerationEventDispatcher(
        [
            AuditHandler(storage),
            NotificationHandler(notifications, admin_channel=settings.admin_channel),
            TrainingHandler(
                storage,
                storage,
                storage,
                storage,
                RetrainDebouncer(jobs, debounce_seconds=settings.retrain_debounce_seconds),
            ),
            WarningThresholdHandler(
                threshold=settings.warning_threshold,
                auto_ban_enabled=settings.auto_ban_enabled,
            ),
            CleanupHandler(cleanup),
        ]
    )
    return ModerationOrchestrator(handlers, dispatcher)


def build_engine(
    settings: DetectionSettings,
    *,
    gpt_client: GPTClient,
    history: Optional[StorageGateway] = None,
    model: str = "gpt-4o-mini",
    max_tokens: int = 500,
    cas_client: Optional[CasClient] = None,
    omni_client: Optional[OmniModerationClient] = None,
) -> ContentDetectionEngine:
    cache: DetectionCache = DetectionCache(
        ttl_seconds=settings.cache_ttl_seconds,
        max_entries=settings.cache_max_entries,
    )
    weights = settings.weights
    checks: list[ContentCheck] = []
    if settings.stop_words:
        checks.append(
            StopWordsCheck(
                settings.stop_words,
                confidence=settings.stop_words_confidence,
                weight=weights.get(StopWordsCheck.name, 1.0),
            )
        )
    checks.append(
        SpacingCheck(
            ratio_threshold=settings.spacing_ratio_threshold,
            confidence=settings.spacing_confidence,
            weight=weights.get(SpacingCheck.name, 1.0),
        )
    )
    checks.append(
        InvisibleCharsCheck(
            confidence=settings.invisible_chars_confidence,
            weight=weights.get(InvisibleCharsCheck.name, 1.0),
        )
    )
    if cas_client is not None and settings.cas.enabled:
        checks.append(
            CasCheck(
                cas_client,
                DetectionCache(ttl_seconds=settings.cache_ttl_seconds),
                weight=weights.get(CasCheck.name, 1.0),
            )
        )
    if omni_client is not None and settings.omni_enabled:
        checks.append(OmniModerationCheck(omni_client, weight=weights.get(OmniModerationCheck.name, 1.0)))
    checks.append(
        OpenAIContentCheck(
            gpt_client,
            cache,
            settings,
            model=model,
            max_tokens=max_tokens,
            history=history,
        )
    )
    veto = VetoController()
    aggregator = DetectionAggregator(
        auto_ban_threshold=settings.auto_ban_threshold,
        review_threshold=settings.review_threshold,
        training_mode=settings.training_mode,
        weights=weights,
        veto=veto,
    )
    return ContentDetectionEngine(
        checks,
        aggregator=aggregator,
        veto=veto,
        deadline_seconds=settings.deadline_seconds,
    )


class ModerationCoordinator:
    """
    Wires detection and orchestration together and applies the auto-moderation policy:
    AUTO_BAN marks the message as spam and bans, REVIEW alerts admins, PASS does nothing.
    """

    def __init__(
        self,
        settings: BotSettings,
        *,
        transport: ChatTransport,
        notifications: NotificationOrchestrator,
        storage: Optional[StorageGateway] = None,
        jobs: Optional[LocalJobTrigger] = None,
        gpt_client: Optional[GPTClient] = None,
        cas_client: Optional[CasClient] = None,
        omni_client: Optional[OmniModerationClient] = None,
    ) -> None:
        log_level = getattr(logging, settings.logging.level.upper(), logging.INFO)
        setup_logging(level=log_level, use_json=settings.logging.use_json)
        self._settings = settings
        self._transport = transport
        self._notifications = notifications
        self._storage = storage or SQLiteStorage(settings.storage.sqlite_path)
        self._jobs = jobs or LocalJobTrigger()
        openai = settings.openai
        self._gpt_client = gpt_client or GPTClient(
            api_key=openai.api_key,
            base_url=openai.base_url,
            timeout=openai.timeout_seconds,
            max_attempts=openai.max_attempts,
        )
        cas = settings.detection.cas
        self._cas_client = cas_client or (
            CasClient(api_url=cas.api_url, timeout=cas.timeout_seconds, user_agent=cas.user_agent)
            if cas.enabled
            else None
        )
        self._omni_client = omni_client or (
            OmniModerationClient(
                api_key=openai.api_key,
                base_url=openai.base_url,
                timeout=openai.timeout_seconds,
                max_attempts=openai.max_attempts,
            )
            if settings.detection.omni_enabled
            else None
        )
        self.engine = build_engine(
            settings.detection,
            gpt_client=self._gpt_client,
            history=self._storage,
            model=openai.model,
            max_tokens=openai.max_tokens,
            cas_client=self._cas_client,
            omni_client=self._omni_client,
        )
        self.orchestrator = build_orchestrator(
            self._storage,
            transport,
            notifications,
            self._jobs,
            settings.moderation,
        )
        self._jobs.register(TEMP_BAN_EXPIRY_JOB, self._expire_temp_ban)
        self._jobs.register(CROSS_CHAT_CLEANUP_JOB, self._cleanup_user_messages)
        self._ready = asyncio.Event()

    @property
    def storage(self) -> StorageGateway:
        return self._storage

    async def start(self) -> None:
        await self._storage.connect()
        for check in self.engine.checks:
            warmup = getattr(check, "warmup", None)
            if warmup is not None:
                await warmup()
        self._ready.set()
        logger.info("moderation_coordinator_started")

    async def shutdown(self) -> None:
        await self._jobs.stop()
        await self.engine.close()
        await self._storage.disconnect()
        await self._gpt_client.close()
        if self._cas_client is not None:
            await self._cas_client.close()
        if self._omni_client is not None:
            await self._omni_client.close()
        logger.info("moderation_coordinator_stopped")

    async def process_message(self, message: IncomingMessage) -> Optional[AggregatedOutcome]:
        await self._ready.wait()
        await self._storage.record_message(message)
        if is_protected(message.user.id):
            logger.debug("detection_skip_protected", user_id=message.user.id)
            return None
        text = message.content_text()
        if not text.strip() and not message.photo_path:
            return None

        request = DetectionCheckRequest(
            message=text,
            user=message.user,
            chat=message.chat,
            message_id=message.message_id,
            photo_path=message.photo_path,
            urls=list(message.urls),
            is_user_trusted=await self._storage.is_trusted(message.user.id),
            is_user_admin=message.is_user_admin,
        )
        outcome = await self.engine.check_message(request)
        await self._apply_policy(message, outcome)
        return outcome

    async def _apply_policy(self, message: IncomingMessage, outcome: AggregatedOutcome) -> None:
        if outcome.classification is Classification.PASS:
            return

        await self._storage.record_detection(
            DetectionRecord(
                message_id=message.message_id,
                chat_id=message.chat.id,
                user_id=message.user.id,
                is_spam=outcome.classification is Classification.AUTO_BAN,
                confidence=outcome.net_confidence,
                reason=outcome.primary_reason,
                detection_source=",".join(r.check_name for r in outcome.contributing_checks if r.flagged),
                detected_by=Actor.AUTO_DETECTION,
                detected_at=datetime.now(timezone.utc),
            )
        )

        if outcome.classification is Classification.AUTO_BAN:
            result = await self.orchestrator.mark_as_spam_and_ban(
                SpamBanIntent(
                    user=message.user,
                    executor=Actor.AUTO_DETECTION,
                    reason=f"Auto-detected spam ({outcome.net_confidence}%): {outcome.primary_reason}",
                    chat=message.chat,
                    message_id=message.message_id,
                    message_text=message.content_text() or None,
                    photo_path=message.photo_path,
                )
            )
            logger.info(
                "auto_moderation_applied",
                user_id=message.user.id,
                chat_id=message.chat.id,
                success=result.success,
                chats_affected=result.chats_affected,
                error=result.error_message,
            )
            return

        logger.info(
            "detection_review_required",
            user_id=message.user.id,
            chat_id=message.chat.id,
            message_id=message.message_id,
            net_confidence=outcome.net_confidence,
        )
        delivery = await self._notifications.send_channel(
            self._settings.moderation.admin_channel,
            "Message needs review",
            (
                f"{message.user.display()} (ID: {message.user.id}) in {message.chat.display()}\n"
                f"Confidence: {outcome.net_confidence}%\n"
                f"Reason: {outcome.primary_reason}\n"
                f"Message: {message.content_text()[:200]}"
            ),
        )
        if not delivery.success:
            logger.warning("review_notification_failed", error=delivery.error_message)

    async def _expire_temp_ban(self, payload: dict[str, Any]) -> None:
        user = UserIdentity.from_id(int(payload["user_id"]))
        scheduled = datetime.fromisoformat(payload["expires_at"])
        current = await self._storage.get_ban_expiry(user.id)
        # a later permanent ban, another temp ban or a manual unban supersedes this timer
        if current != scheduled:
            logger.info(
                "temp_ban_expiry_superseded",
                user_id=user.id,
                scheduled=scheduled.isoformat(),
                current=current.isoformat() if current else None,
            )
            return
        result = await self.orchestrator.unban_user(
            UnbanIntent(user=user, executor=Actor.system("temp_ban_expiry"), reason="Temporary ban expired")
        )
        logger.info("temp_ban_expired", user_id=user.id, success=result.success)

    async def _cleanup_user_messages(self, payload: dict[str, Any]) -> None:
        user_id = int(payload["user_id"])
        reason = str(payload.get("reason") or "Cross-chat cleanup after ban")
        deleted = 0
        for stored in await self._storage.get_user_messages(user_id):
            try:
                await self._transport.delete_message(stored.chat_id, stored.message_id)
            except MessageNotFound:
                pass
            except Exception as exc:  # pylint: disable=broad-except
                logger.warning(
                    "cleanup_delete_failed",
                    chat_id=stored.chat_id,
                    message_id=stored.message_id,
                    error=str(exc),
                )
                continue
            await self._storage.mark_deleted(stored.chat_id, stored.message_id, reason=reason)
            deleted += 1
        logger.info("cross_chat_cleanup_complete", user_id=user_id, deleted=deleted)
