from __future__ import annotations

import re
import unicodedata

from ...models import CheckResult, DetectionCheckRequest, DetectionCheckResponse
from .base import ContentCheck

_URL = re.compile(r"https?://\S+", re.IGNORECASE)
_MENTION = re.compile(r"@\w+")
_LETTER_SPACING = re.compile(r"\b[^\W\d_]\s[^\W\d_]\s[^\W\d_]\s[^\W\d_]\b")

MIN_WORDS = 5
SHORT_WORD_LENGTH = 2
MIN_MESSAGE_LENGTH = 20


def _is_punctuation(word: str) -> bool:
    return all(unicodedata.category(char)[0] in ("P", "S") for char in word)


def extract_words(text: str) -> list[str]:
    cleaned = _MENTION.sub("", _URL.sub("", text))
    return [word for word in cleaned.split() if not _is_punctuation(word)]


class SpacingCheck(ContentCheck):
    """Flags letter-spacing obfuscation such as ``f r e e  m o n e y``."""

    name = "spacing"

    def __init__(self, *, ratio_threshold: float = 0.7, confidence: int = 70, weight: float = 1.0) -> None:
        self._ratio_threshold = ratio_threshold
        self._confidence = confidence
        self.weight = weight

    def should_execute(self, request: DetectionCheckRequest) -> bool:
        return super().should_execute(request) and len(request.message) >= MIN_MESSAGE_LENGTH

    async def evaluate(self, request: DetectionCheckRequest) -> DetectionCheckResponse:
        words = extract_words(request.message)
        if len(words) < MIN_WORDS:
            return DetectionCheckResponse.clean(self.name, "Message too short for spacing analysis")

        short_ratio = sum(1 for word in words if len(word) <= SHORT_WORD_LENGTH) / len(words)
        letter_spacing = _LETTER_SPACING.search(request.message) is not None
        if short_ratio >= self._ratio_threshold or letter_spacing:
            details = f"Suspicious spacing: short word ratio {short_ratio:.2f}"
            if letter_spacing:
                details += ", letters artificially separated"
            return DetectionCheckResponse(self.name, CheckResult.SPAM, self._confidence, details)
        return DetectionCheckResponse.clean(self.name, f"Normal spacing (short word ratio {short_ratio:.2f})")
