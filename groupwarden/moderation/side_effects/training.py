from __future__ import annotations

import asyncio
import time
from typing import Callable, Optional

import structlog

from ...models import DetectionRecord, TrainingLabel, TrainingLabelKind
from ...services.ports import JobTriggerService
from ...storage.base import (
    DetectionResultsRepository,
    ImageTrainingSamplesRepository,
    MessageHistoryRepository,
    TrainingLabelsRepository,
)
from ..events import FollowUp, ModerationActionType, ModerationEvent
from ..handlers.base import Clock, utcnow
from .base import SideEffectHandler

logger = structlog.get_logger(__name__)

TEXT_RETRAIN_JOB = "text_classifier_retraining"
IMAGE_RETRAIN_JOB = "image_classifier_retraining"


class RetrainDebouncer:
    """Drops retrain triggers for a job that fired within the debounce window."""

    def __init__(
        self,
        jobs: JobTriggerService,
        *,
        debounce_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._jobs = jobs
        self._debounce_seconds = debounce_seconds
        self._clock = clock
        self._last: dict[str, float] = {}

    async def trigger(self, job_name: str, payload: dict) -> bool:
        now = self._clock()
        last = self._last.get(job_name)
        if last is not None and now - last < self._debounce_seconds:
            logger.debug("retrain_debounced", job=job_name)
            return False
        self._last[job_name] = now
        await self._jobs.trigger_now(job_name, payload)
        logger.info("retrain_triggered", job=job_name)
        return True


class TrainingHandler(SideEffectHandler):
    """
    Captures labelled samples from moderator decisions.

    Spam bans produce spam labels. An unban that restores trust is a false-positive
    correction and produces a ham label for the message it refers to.
    """

    name = "training"
    action_types = frozenset({ModerationActionType.MARK_AS_SPAM, ModerationActionType.UNBAN})

    def __init__(
        self,
        labels: TrainingLabelsRepository,
        detections: DetectionResultsRepository,
        images: ImageTrainingSamplesRepository,
        history: MessageHistoryRepository,
        retrain: RetrainDebouncer,
        *,
        clock: Clock = utcnow,
    ) -> None:
        self._labels = labels
        self._detections = detections
        self._images = images
        self._history = history
        self._retrain = retrain
        self._clock = clock

    def applies_to(self, event: ModerationEvent) -> bool:
        if event.action_type is ModerationActionType.UNBAN:
            return event.restore_trust and event.message_id is not None
        return super().applies_to(event)

    async def handle(self, event: ModerationEvent) -> Optional[FollowUp]:
        if event.message_id is None or event.chat is None:
            logger.debug("training_skip_no_message", action=event.action_type.value, user_id=event.user.id)
            return None

        is_spam = event.action_type is ModerationActionType.MARK_AS_SPAM
        text, photo_path = event.message_text, event.photo_path
        if text is None and photo_path is None:
            stored = await self._history.get_message(event.chat.id, event.message_id)
            if stored is not None:
                text, photo_path = stored.text, stored.photo_path

        # the two captures are independent, a failing one must not drop the other
        if text and text.strip():
            try:
                await self._capture_text(event, event.chat.id, event.message_id, text, is_spam)
            except asyncio.CancelledError:
                raise
            except Exception:  # pylint: disable=broad-except
                logger.exception("training_label_capture_failed", message_id=event.message_id)
        if photo_path:
            try:
                await self._capture_image(event, event.message_id, photo_path, is_spam)
            except asyncio.CancelledError:
                raise
            except Exception:  # pylint: disable=broad-except
                logger.exception("image_training_sample_failed", message_id=event.message_id)
        return None

    async def _capture_text(
        self,
        event: ModerationEvent,
        chat_id: int,
        message_id: int,
        text: str,
        is_spam: bool,
    ) -> None:
        await self._labels.upsert_label(
            TrainingLabel(
                message_id=message_id,
                chat_id=chat_id,
                label=TrainingLabelKind.SPAM if is_spam else TrainingLabelKind.HAM,
                labeled_by=event.executor,
                text=text,
                reason=event.reason,
            )
        )
        await self._detections.record_detection(
            DetectionRecord(
                message_id=message_id,
                chat_id=chat_id,
                user_id=event.user.id,
                is_spam=is_spam,
                confidence=100,
                reason=event.reason,
                detection_source=event.executor.kind.value if event.executor.is_automated else "manual",
                detected_by=event.executor,
                detected_at=self._clock(),
            )
        )
        logger.info("training_label_captured", label="spam" if is_spam else "ham", message_id=message_id)
        await self._retrain.trigger(TEXT_RETRAIN_JOB, {"reason": event.action_type.value})

    async def _capture_image(self, event: ModerationEvent, message_id: int, photo_path: str, is_spam: bool) -> None:
        created = await self._images.save_sample(message_id, photo_path, is_spam=is_spam, actor=event.executor)
        if created:
            logger.info("image_training_sample_saved", message_id=message_id, is_spam=is_spam)
            await self._retrain.trigger(IMAGE_RETRAIN_JOB, {"reason": event.action_type.value})
