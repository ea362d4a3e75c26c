from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .models import Mood
from .notices import NoticeChannel


@dataclass
class SafetySignal:
    red_flag: str | None
    mood: Mood


@dataclass
class PulseContext:
    """State shared across screens.

    ``red_flag`` and ``mood`` are written only through ``apply_safety`` by the
    send orchestrator; the privacy toggles are written by the API layer.
    """

    notices: NoticeChannel = field(default_factory=NoticeChannel)
    keep_local_only: bool = True
    blur_faces: bool = False
    _red_flag: str | None = None
    _mood: Mood = Mood.NEUTRAL

    @property
    def red_flag(self) -> str | None:
        return self._red_flag

    @property
    def mood(self) -> Mood:
        return self._mood

    def apply_safety(self, signal: SafetySignal) -> None:
        self._red_flag = signal.red_flag
        self._mood = signal.mood

    def reset_safety(self) -> None:
        self._red_flag = None
        self._mood = Mood.NEUTRAL

    def snapshot(self) -> dict[str, Any]:
        return {
            "red_flag": self._red_flag,
            "mood": self._mood.value,
            "keep_local_only": self.keep_local_only,
            "blur_faces": self.blur_faces,
            "notice": self.notices.as_dict(),
        }
