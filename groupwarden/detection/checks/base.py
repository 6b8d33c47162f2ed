from __future__ import annotations

import abc
from typing import Protocol, runtime_checkable

import structlog

from ...models import DetectionCheckRequest, DetectionCheckResponse
from ..errors import DetectionError

logger = structlog.get_logger(__name__)


class ContentCheck(abc.ABC):
    """Base class for content-risk checks."""

    name: str
    weight: float = 1.0
    veto_mode: bool = False

    def should_execute(self, request: DetectionCheckRequest) -> bool:
        return bool(request.message and request.message.strip())

    @abc.abstractmethod
    async def evaluate(self, request: DetectionCheckRequest) -> DetectionCheckResponse:
        ...

    async def run(self, request: DetectionCheckRequest) -> DetectionCheckResponse:
        """Evaluate and convert any escaping error into a fail-open response."""
        try:
            return await self.evaluate(request)
        except DetectionError as exc:
            logger.warning(
                "check_failed_open",
                check=self.name,
                error=str(exc),
                error_type=type(exc).__name__,
                user_id=request.user.id,
            )
            return DetectionCheckResponse.failed(self.name, exc, self.failure_details(exc))
        except Exception as exc:  # pylint: disable=broad-except
            logger.exception("check_crashed", check=self.name, user_id=request.user.id)
            return DetectionCheckResponse.failed(self.name, exc)

    def failure_details(self, exc: DetectionError) -> str:
        return f"{self.name} check failed: {exc} - allowing message"


@runtime_checkable
class ClosableCheck(Protocol):
    async def close(self) -> None:
        ...
