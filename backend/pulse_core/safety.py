from __future__ import annotations

import re

from .context import SafetySignal
from .models import Mood

RED_FLAG_ADVISORY = "this could be urgent. consider emergency care now."
CONFIDENCE_NOTE = "i'm not diagnosing. here are cautious next steps."


class SafetyClassifier:
    _RED_FLAG_PHRASES = (
        "severe chest pain",
        "trouble breathing",
        "difficulty breathing",
        "one-sided weakness",
        "suicidal",
    )
    _URGENT_KEYWORDS = ("emergency", "call 911", "urgent care", "immediately")
    _CALM_KEYWORDS = ("relax", "breath", "sleep", "calm")
    _HEDGE_PATTERN = re.compile(r"\b(might|could|maybe|if|consider)\b", re.IGNORECASE)

    def detect_red_flag(self, text: str) -> str | None:
        lowered = (text or "").lower()
        for phrase in self._RED_FLAG_PHRASES:
            if phrase in lowered:
                return RED_FLAG_ADVISORY
        return None

    def mood_for(self, text: str) -> Mood:
        lowered = (text or "").lower()
        if self.detect_red_flag(lowered) or any(word in lowered for word in self._URGENT_KEYWORDS):
            return Mood.URGENT
        if any(word in lowered for word in self._CALM_KEYWORDS):
            return Mood.CALM
        return Mood.NEUTRAL

    def confidence_note(self, text: str) -> str | None:
        if self._HEDGE_PATTERN.search(text or ""):
            return CONFIDENCE_NOTE
        return None

    def evaluate(self, text: str) -> SafetySignal:
        return SafetySignal(red_flag=self.detect_red_flag(text), mood=self.mood_for(text))
