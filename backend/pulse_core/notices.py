from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notice:
    text: str
    is_error: bool
    posted_at: float


class NoticeChannel:
    """Single-slot transient notice.

    A notice expires ``ttl_seconds`` after it was posted; posting a new
    notice replaces the previous one and restarts the clock, so an older
    timer can never clear a newer notice.
    """

    def __init__(self, ttl_seconds: float = 2.2, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._notice: Notice | None = None

    def post(self, text: str | None, *, error: bool = False) -> None:
        if text is None:
            self._notice = None
            return
        self._notice = Notice(text=text, is_error=error, posted_at=self._clock())
        if error:
            logger.warning(f"notice: {text}")
        else:
            logger.info(f"notice: {text}")

    def clear(self) -> None:
        self._notice = None

    def current(self) -> Notice | None:
        notice = self._notice
        if notice is None:
            return None
        if self._clock() - notice.posted_at >= self.ttl_seconds:
            self._notice = None
            return None
        return notice

    def as_dict(self) -> dict[str, object] | None:
        notice = self.current()
        if notice is None:
            return None
        return {"text": notice.text, "is_error": notice.is_error}
