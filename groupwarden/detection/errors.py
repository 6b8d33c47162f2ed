from __future__ import annotations

from typing import Optional


class DetectionError(Exception):
    """Base for provider and check failures. Checks fail open on any of these."""

    def __init__(self, message: str, *, provider: Optional[str] = None) -> None:
        super().__init__(message)
        self.provider = provider


class ProviderRateLimited(DetectionError):
    def __init__(self, message: str, *, provider: Optional[str] = None, retry_after: Optional[float] = None) -> None:
        super().__init__(message, provider=provider)
        self.retry_after = retry_after


class ProviderServerError(DetectionError):
    def __init__(self, message: str, *, provider: Optional[str] = None, status_code: Optional[int] = None) -> None:
        super().__init__(message, provider=provider)
        self.status_code = status_code


class ProviderTimeout(DetectionError):
    pass


class MalformedResponse(DetectionError):
    pass


class ConfigurationMissing(DetectionError):
    pass


class CheckCancelled(DetectionError):
    pass


__all__ = [
    "CheckCancelled",
    "ConfigurationMissing",
    "DetectionError",
    "MalformedResponse",
    "ProviderRateLimited",
    "ProviderServerError",
    "ProviderTimeout",
]
