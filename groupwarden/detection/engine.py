from __future__ import annotations

import asyncio
import dataclasses
from functools import partial
from typing import Iterable, Sequence

import structlog

from ..models import AggregatedOutcome, DetectionCheckRequest, DetectionCheckResponse
from ..utils.concurrency import gather_until
from .aggregator import DetectionAggregator
from .checks.base import ClosableCheck, ContentCheck
from .errors import CheckCancelled, DetectionError, ProviderTimeout
from .veto import VetoController

logger = structlog.get_logger(__name__)


class ContentDetectionEngine:
    """
    Runs content checks in two phases under one shared deadline.

    Phase one runs every regular check concurrently. Phase two runs veto-mode
    checks, but only when phase one (or the caller) raised a spam flag. Checks
    still pending at the deadline, or when the request's cancel event fires, are
    cancelled and reported as fail-open responses.
    """

    def __init__(
        self,
        checks: Iterable[ContentCheck],
        *,
        aggregator: DetectionAggregator,
        veto: VetoController,
        deadline_seconds: float = 10.0,
    ) -> None:
        self.checks: Sequence[ContentCheck] = tuple(checks)
        names = [check.name for check in self.checks]
        if len(names) != len(set(names)):
            raise ValueError(f"Duplicate check names: {names}")
        self._aggregator = aggregator
        self._veto = veto
        self._deadline_seconds = deadline_seconds
        for check in self.checks:
            self._veto.register(check)
            self._aggregator.set_weight(check.name, check.weight)
        logger.info(
            "detection_engine_initialized",
            checks=names,
            veto_checks=[check.name for check in self.checks if self._veto.is_veto_check(check)],
            deadline_seconds=deadline_seconds,
        )

    async def check_message(self, request: DetectionCheckRequest) -> AggregatedOutcome:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._deadline_seconds

        regular = [
            check for check in self.checks if not self._veto.is_veto_check(check) and check.should_execute(request)
        ]
        responses = await self._run_phase(regular, request, deadline)

        has_flags = request.has_spam_flags or self._veto.flags_from(responses)
        veto_request = dataclasses.replace(request, has_spam_flags=has_flags)
        gated: list[ContentCheck] = []
        for check in self.checks:
            if not self._veto.is_veto_check(check) or not check.should_execute(veto_request):
                continue
            if self._veto.gate(check, veto_request):
                gated.append(check)
            else:
                responses.append(self._veto.skipped(check))
        responses.extend(await self._run_phase(gated, veto_request, deadline))

        outcome = self._aggregator.aggregate(responses)
        logger.info(
            "detection_complete",
            message_id=request.message_id,
            user_id=request.user.id,
            chat_id=request.chat.id,
            classification=outcome.classification.value,
            net_confidence=outcome.net_confidence,
            vetoed=outcome.vetoed,
            checks=len(responses),
        )
        return outcome

    async def _run_phase(
        self,
        checks: list[ContentCheck],
        request: DetectionCheckRequest,
        deadline: float,
    ) -> list[DetectionCheckResponse]:
        if not checks:
            return []
        outcome = await gather_until(
            {check.name: partial(check.run, request) for check in checks},
            deadline=deadline,
            cancel_event=request.cancel_event,
        )
        responses: list[DetectionCheckResponse] = []
        for check in checks:
            if check.name in outcome.completed:
                responses.append(outcome.completed[check.name])
                continue
            if check.name in outcome.failed:
                error = outcome.failed[check.name]
                logger.error("check_escaped_error", check=check.name, error=str(error))
                responses.append(DetectionCheckResponse.failed(check.name, error))
                continue
            abandoned: DetectionError
            if outcome.cancelled:
                abandoned = CheckCancelled(f"{check.name} check cancelled", provider=check.name)
            else:
                abandoned = ProviderTimeout(f"{check.name} check exceeded the detection deadline", provider=check.name)
            logger.warning(
                "check_abandoned",
                check=check.name,
                reason=type(abandoned).__name__,
                message_id=request.message_id,
            )
            responses.append(DetectionCheckResponse.failed(check.name, abandoned, check.failure_details(abandoned)))
        return responses

    async def close(self) -> None:
        for check in self.checks:
            if isinstance(check, ClosableCheck):
                await check.close()
