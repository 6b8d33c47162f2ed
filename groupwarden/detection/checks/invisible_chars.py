from __future__ import annotations

from ...models import CheckResult, DetectionCheckRequest, DetectionCheckResponse
from .base import ContentCheck

# zero-width, joiner, directional mark and BOM code points used to break up keywords
INVISIBLE_CODEPOINTS = (
    0x00AD,
    0x034F,
    0x180E,
    0x200B,
    0x200C,
    0x200D,
    0x200E,
    0x200F,
    0x2060,
    0x2061,
    0x2062,
    0x2063,
    0x2064,
    0xFEFF,
)
INVISIBLE_CHARS = frozenset(chr(code) for code in INVISIBLE_CODEPOINTS)


class InvisibleCharsCheck(ContentCheck):
    name = "invisible_chars"

    def __init__(self, *, confidence: int = 80, weight: float = 1.0) -> None:
        self._confidence = confidence
        self.weight = weight

    async def evaluate(self, request: DetectionCheckRequest) -> DetectionCheckResponse:
        count = sum(1 for char in request.message if char in INVISIBLE_CHARS)
        if count == 0:
            return DetectionCheckResponse.clean(self.name, "No invisible characters")
        return DetectionCheckResponse(
            self.name,
            CheckResult.SPAM,
            self._confidence,
            f"Invisible characters found ({count})",
        )
