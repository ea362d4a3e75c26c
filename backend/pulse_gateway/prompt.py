from __future__ import annotations

import base64
import logging
from dataclasses import dataclass, field
from typing import Any

from pulse_core.models import Attachment, Message
from pulse_media.normalizer import ImageNormalizer

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    'You are "Pulse," a proactive health companion. Be warm, concise, practical. '
    "Focus on prevention, lifestyle, education, and safe guidance. Do not diagnose. "
    "Ask at most one short follow-up (duration, 0-10 severity, triggers, sleep, hydration, meds, stress). "
    "Propose micro-habits, trackable steps, and when to escalate; include warning signs to watch for. "
    "If red flags appear (severe chest pain, trouble breathing, stroke signs, suicidal thoughts), "
    "clearly advise immediate emergency help and be supportive. Keep answers under ~6 lines with short lists."
)

MAX_TURN_CHARS = 2000
MAX_HISTORY_CHARS = 1200


@dataclass
class PromptBundle:
    messages: list[dict[str, Any]]
    image_count: int = 0
    dropped_images: int = 0
    notes: list[str] = field(default_factory=list)


class PromptBuilder:
    def __init__(
        self,
        *,
        system_prompt: str = SYSTEM_PROMPT,
        image_dimension: int = 1024,
        image_max_bytes: int = 1_000_000,
        jpeg_quality: int = 70,
    ) -> None:
        self.system_prompt = system_prompt
        self.image_dimension = image_dimension
        self.image_max_bytes = image_max_bytes
        self.jpeg_quality = jpeg_quality
        self._normalizer = ImageNormalizer(max_dimension=image_dimension)

    def history_turns(self, history: list[Message]) -> list[dict[str, Any]]:
        turns: list[dict[str, Any]] = []
        for message in history:
            if message.is_placeholder:
                continue
            content = message.text.strip()
            if not content:
                continue
            turns.append({"role": message.role, "content": content[:MAX_HISTORY_CHARS]})
        return turns

    def encode_image(self, attachment: Attachment) -> str | None:
        if attachment.image is None:
            return None
        scaled = self._normalizer.downscale(attachment.image, self.image_dimension)
        jpeg_bytes = scaled.to_jpeg(quality=self.jpeg_quality)
        if len(jpeg_bytes) >= self.image_max_bytes:
            logger.info(f"attachment {attachment.attachment_id} dropped: {len(jpeg_bytes)} bytes over cap")
            return None
        return f"data:image/jpeg;base64,{base64.b64encode(jpeg_bytes).decode('ascii')}"

    def build(self, history: list[Message], user_text: str, attachments: list[Attachment]) -> PromptBundle:
        bundle = PromptBundle(messages=[{"role": "system", "content": self.system_prompt}])
        bundle.messages.extend(self.history_turns(history))

        image_parts: list[dict[str, Any]] = []
        for attachment in attachments:
            data_url = self.encode_image(attachment)
            if data_url is None:
                bundle.dropped_images += 1
                continue
            image_parts.append({"type": "image_url", "image_url": {"url": data_url}})
            if attachment.note.strip():
                bundle.notes.append(attachment.note.strip())
        bundle.image_count = len(image_parts)

        text = user_text.strip()[:MAX_TURN_CHARS]
        if bundle.notes:
            text = f"{text}\nPhoto notes: {'; '.join(bundle.notes)}".strip()
        if image_parts:
            content: Any = [{"type": "text", "text": text}, *image_parts]
        else:
            content = text
        bundle.messages.append({"role": "user", "content": content})
        return bundle
