from __future__ import annotations

from typing import Mapping, Optional, Sequence

import structlog

from ..models import AggregatedOutcome, CheckResult, Classification, DetectionCheckResponse
from .confidence import weighted_average
from .veto import VetoController

logger = structlog.get_logger(__name__)


class DetectionAggregator:
    def __init__(
        self,
        *,
        auto_ban_threshold: int = 85,
        review_threshold: int = 70,
        training_mode: bool = False,
        weights: Optional[Mapping[str, float]] = None,
        veto: Optional[VetoController] = None,
    ) -> None:
        if review_threshold > auto_ban_threshold:
            raise ValueError("review_threshold must not exceed auto_ban_threshold")
        self._auto_ban_threshold = auto_ban_threshold
        self._review_threshold = review_threshold
        self._training_mode = training_mode
        self._weights = dict(weights or {})
        self._veto = veto or VetoController()

    def weight_for(self, check_name: str) -> float:
        return self._weights.get(check_name, 1.0)

    def set_weight(self, check_name: str, weight: float) -> None:
        self._weights.setdefault(check_name, weight)

    def classify(self, net_confidence: int) -> Classification:
        if net_confidence >= self._auto_ban_threshold:
            return Classification.AUTO_BAN
        if net_confidence >= self._review_threshold:
            return Classification.REVIEW
        return Classification.PASS

    def aggregate(self, responses: Sequence[DetectionCheckResponse]) -> AggregatedOutcome:
        flagged = [response for response in responses if response.flagged]
        net = weighted_average([(self.weight_for(response.check_name), response.confidence) for response in flagged])

        veto = next((response for response in responses if self._veto.is_veto(response)), None)
        if veto is not None:
            logger.info("detection_vetoed", check=veto.check_name, net_confidence=net, details=veto.details)
            return AggregatedOutcome(
                net_confidence=net,
                classification=Classification.PASS,
                contributing_checks=tuple(responses),
                vetoed=True,
                primary_reason=veto.details,
            )

        classification = self.classify(net)
        if classification is Classification.AUTO_BAN:
            capped = any(
                self._veto.is_veto_name(response.check_name)
                and response.error is None
                and response.result is CheckResult.REVIEW
                for response in responses
            )
            if capped:
                logger.info("detection_capped_by_veto_review", net_confidence=net)
                classification = Classification.REVIEW
            elif self._training_mode:
                logger.info("detection_training_mode_demotion", net_confidence=net)
                classification = Classification.REVIEW

        primary = max(flagged, key=lambda response: response.confidence, default=None)
        return AggregatedOutcome(
            net_confidence=net,
            classification=classification,
            contributing_checks=tuple(responses),
            vetoed=False,
            primary_reason=primary.details if primary is not None else "No spam detected",
        )
