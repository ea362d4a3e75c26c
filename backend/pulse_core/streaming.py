from __future__ import annotations

import asyncio
import math
from typing import Callable

from .cancellation import CancellationToken
from .models import InlineAction, Message
from .safety import SafetyClassifier

ChunkCallback = Callable[[str], None]


class ReplyStreamer:
    """Reveals an already complete reply a few characters at a time."""

    _ACTION_KEYWORDS = (
        (InlineAction.ADD_PLAN, ("habit", "plan")),
        (InlineAction.FOLLOWUP, ("check", "follow")),
        (InlineAction.OPEN_LEARN, ("learn", "read")),
        (InlineAction.LOG_MED, ("med", "dose")),
    )

    def __init__(
        self,
        *,
        batch_size: int = 3,
        interval_seconds: float = 0.012,
        safety: SafetyClassifier | None = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.batch_size = batch_size
        self.interval_seconds = interval_seconds
        self.safety = safety or SafetyClassifier()

    def batch_count(self, full_text: str) -> int:
        return math.ceil(len(full_text) / self.batch_size)

    async def stream(self, full_text: str, on_chunk: ChunkCallback, token: CancellationToken) -> bool:
        total = self.batch_count(full_text)
        for index in range(total):
            if token.cancelled:
                return False
            end = min(len(full_text), (index + 1) * self.batch_size)
            on_chunk(full_text[:end])
            if index < total - 1:
                await asyncio.sleep(self.interval_seconds)
        return not token.cancelled

    def suggested_actions(self, text: str) -> list[InlineAction]:
        lowered = (text or "").lower()
        return [action for action, keywords in self._ACTION_KEYWORDS if any(word in lowered for word in keywords)]

    def annotate(self, message: Message, full_text: str) -> None:
        message.actions = self.suggested_actions(full_text)
        message.confidence_note = self.safety.confidence_note(full_text)
