from __future__ import annotations

from typing import Iterable

import structlog

from ..models import CheckResult, DetectionCheckRequest, DetectionCheckResponse
from .checks.base import ContentCheck

logger = structlog.get_logger(__name__)

VETO_SKIP_DETAILS = "Veto mode: no spam flags from other checks"


class VetoController:
    """Decides when expensive veto-mode checks run and whether their verdict overrides the rest."""

    def __init__(self, veto_checks: Iterable[str] = ()) -> None:
        self._veto_checks = set(veto_checks)

    def is_veto_check(self, check: ContentCheck) -> bool:
        return check.veto_mode or check.name in self._veto_checks

    def is_veto_name(self, check_name: str) -> bool:
        return check_name in self._veto_checks

    def register(self, check: ContentCheck) -> None:
        if check.veto_mode:
            self._veto_checks.add(check.name)

    def gate(self, check: ContentCheck, request: DetectionCheckRequest) -> bool:
        if not self.is_veto_check(check):
            return True
        if not request.has_spam_flags:
            logger.debug("veto_check_skipped", check=check.name, message_id=request.message_id)
            return False
        return True

    @staticmethod
    def flags_from(responses: Iterable[DetectionCheckResponse]) -> bool:
        return any(response.flagged for response in responses)

    def is_veto(self, response: DetectionCheckResponse) -> bool:
        return (
            self.is_veto_name(response.check_name)
            and response.error is None
            and response.result is CheckResult.CLEAN
            and not response.abstained
        )

    @staticmethod
    def skipped(check: ContentCheck) -> DetectionCheckResponse:
        return DetectionCheckResponse.abstain(check.name, VETO_SKIP_DETAILS)
