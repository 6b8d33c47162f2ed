from __future__ import annotations

import pytest

from groupwarden.detection.aggregator import DetectionAggregator
from groupwarden.detection.errors import ProviderTimeout
from groupwarden.detection.veto import VETO_SKIP_DETAILS, VetoController
from groupwarden.models import CheckResult, Classification, DetectionCheckResponse
from tests.factories import make_response


def _aggregator(**kwargs) -> DetectionAggregator:
    return DetectionAggregator(veto=VetoController(["openai"]), **kwargs)


def test_clean_responses_pass_with_zero_confidence() -> None:
    outcome = _aggregator().aggregate([make_response("stop_words"), make_response("spacing")])
    assert outcome.classification is Classification.PASS
    assert outcome.net_confidence == 0
    assert outcome.primary_reason == "No spam detected"
    assert outcome.spam_flags == 0


@pytest.mark.parametrize(
    ("confidence", "expected"),
    [(84, Classification.REVIEW), (85, Classification.AUTO_BAN), (70, Classification.REVIEW), (69, Classification.PASS)],
)
def test_classification_bands_are_inclusive(confidence: int, expected: Classification) -> None:
    outcome = _aggregator().aggregate([make_response("stop_words", CheckResult.SPAM, confidence)])
    assert outcome.classification is expected


def test_only_flagged_responses_contribute_to_net_confidence() -> None:
    outcome = _aggregator().aggregate(
        [
            make_response("stop_words", CheckResult.SPAM, 90, "stop word hit"),
            make_response("cas", CheckResult.SPAM, 100, "CAS banned"),
            make_response("spacing", CheckResult.CLEAN, 0),
        ]
    )
    assert outcome.net_confidence == 95
    assert outcome.classification is Classification.AUTO_BAN
    assert outcome.primary_reason == "CAS banned"
    assert outcome.spam_flags == 2


def test_weights_shift_the_average() -> None:
    aggregator = _aggregator(weights={"cas": 3.0})
    outcome = aggregator.aggregate(
        [make_response("cas", CheckResult.SPAM, 100), make_response("spacing", CheckResult.SPAM, 60)]
    )
    assert outcome.net_confidence == 90


def test_clean_veto_response_overrides_other_flags() -> None:
    outcome = _aggregator().aggregate(
        [
            make_response("stop_words", CheckResult.SPAM, 95),
            make_response("openai", CheckResult.CLEAN, 80, "Friendly greeting"),
        ]
    )
    assert outcome.vetoed is True
    assert outcome.classification is Classification.PASS
    assert outcome.primary_reason == "Friendly greeting"
    assert outcome.net_confidence == 95


def test_skipped_or_failed_veto_check_does_not_veto() -> None:
    skipped = DetectionCheckResponse.abstain("openai", VETO_SKIP_DETAILS)
    too_short = DetectionCheckResponse.abstain("openai", "Message too short (< 10 chars)")
    failed = DetectionCheckResponse.failed("openai", ProviderTimeout("slow"))
    for veto_response in (skipped, too_short, failed):
        outcome = _aggregator().aggregate([make_response("stop_words", CheckResult.SPAM, 90), veto_response])
        assert outcome.vetoed is False
        assert outcome.classification is Classification.AUTO_BAN


def test_veto_review_caps_auto_ban() -> None:
    outcome = _aggregator().aggregate(
        [
            make_response("cas", CheckResult.SPAM, 100),
            make_response("openai", CheckResult.REVIEW, 90, "Looks promotional"),
        ]
    )
    assert outcome.net_confidence == 95
    assert outcome.classification is Classification.REVIEW


def test_training_mode_demotes_auto_ban() -> None:
    outcome = _aggregator(training_mode=True).aggregate([make_response("cas", CheckResult.SPAM, 100)])
    assert outcome.classification is Classification.REVIEW


def test_thresholds_must_be_ordered() -> None:
    with pytest.raises(ValueError):
        DetectionAggregator(auto_ban_threshold=60, review_threshold=70)
