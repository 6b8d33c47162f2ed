from __future__ import annotations

from decimal import ROUND_HALF_EVEN, Decimal
from typing import Optional

DEFAULT_PROVIDER_CONFIDENCE = 80
LEGACY_FALLBACK_CONFIDENCE = 70


def _half_even(value: Decimal) -> int:
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_EVEN))


def to_percent(confidence: Optional[float], *, default: int = DEFAULT_PROVIDER_CONFIDENCE) -> int:
    """Convert a provider confidence in [0, 1] to an integer percent.

    Rounds half-to-even on the decimal literal so that 0.845 becomes 84 rather
    than whatever the binary float product happens to be.
    """
    if confidence is None:
        return default
    percent = _half_even(Decimal(repr(float(confidence))) * 100)
    return max(0, min(100, percent))


def weighted_average(pairs: list[tuple[float, int]]) -> int:
    """Half-to-even rounded weighted mean of ``(weight, confidence)`` pairs; 0 when empty."""
    total_weight = sum(weight for weight, _ in pairs)
    if total_weight <= 0:
        return 0
    total = sum(Decimal(repr(weight)) * confidence for weight, confidence in pairs)
    return max(0, min(100, _half_even(total / Decimal(repr(total_weight)))))
