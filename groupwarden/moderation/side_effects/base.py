from __future__ import annotations

import abc
from typing import ClassVar, Optional

from ..events import FollowUp, ModerationActionType, ModerationEvent


class SideEffectHandler(abc.ABC):
    """Reacts to a dispatched moderation event. ``action_types`` empty means every event."""

    name: ClassVar[str]
    action_types: ClassVar[frozenset[ModerationActionType]] = frozenset()

    def applies_to(self, event: ModerationEvent) -> bool:
        return not self.action_types or event.action_type in self.action_types

    @abc.abstractmethod
    async def handle(self, event: ModerationEvent) -> Optional[FollowUp]:
        ...
