from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable

from pulse_core.context import PulseContext
from pulse_core.models import Attachment, AttachmentCategory, InlineAction, Message, MessageKind, Session

from .classifier import AttachmentClassifier
from .normalizer import ImageNormalizer, ImageUnreadable, NormalizedImage
from .ocr import OCRFailure, RecognizedText, TextExtractor

logger = logging.getLogger(__name__)

MessageSink = Callable[[Session, Message], None]

UNREADABLE_NOTICE = "couldn't read that photo (format/permissions). try another one."
NO_TEXT_NOTICE = "i couldn't read text from that photo. try a clearer, closer shot with good lighting."

_SUGGESTIONS = (
    (
        AttachmentCategory.LABEL,
        "i can try to read that med label. want me to extract the name/dose?",
        InlineAction.LOG_MED,
    ),
    (
        AttachmentCategory.SKIN,
        "i see a skin photo. do you want a follow-up check-in tomorrow to track changes?",
        InlineAction.FOLLOWUP,
    ),
    (
        AttachmentCategory.MEAL,
        "nice meal snapshot. want quick tips from learn on balanced plates?",
        InlineAction.OPEN_LEARN,
    ),
)


@dataclass
class IngestionResult:
    attachments: list[Attachment] = field(default_factory=list)
    skipped: int = 0
    suggestions: list[Message] = field(default_factory=list)
    recognized_text: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "attachments": [attachment.to_dict() for attachment in self.attachments],
            "skipped": self.skipped,
            "suggestions": [message.to_dict() for message in self.suggestions],
            "recognized_text": self.recognized_text,
        }


def suggestion_for(items: list[Attachment]) -> Message | None:
    categories = {item.category for item in items}
    for category, text, action in _SUGGESTIONS:
        if category in categories:
            return Message(text=text, is_user=False, kind=MessageKind.SUGGESTION, actions=[action])
    return None


def label_text_message(display_text: str) -> Message:
    return Message(
        text=f'label text i found: "{display_text}". want me to set a schedule or verify a dose?',
        is_user=False,
        kind=MessageKind.SUGGESTION,
        actions=[InlineAction.LOG_MED],
    )


def compare_pair(attachments: list[Attachment]) -> tuple[Attachment, Attachment] | None:
    groups: dict[AttachmentCategory, list[Attachment]] = {}
    for attachment in attachments:
        groups.setdefault(attachment.category, []).append(attachment)
    for group in groups.values():
        if len(group) >= 2:
            return group[0], group[1]
    return None


class AttachmentIngestor:
    """Turns raw picked images into pending attachments, one image at a time."""

    def __init__(
        self,
        *,
        context: PulseContext,
        normalizer: ImageNormalizer | None = None,
        classifier: AttachmentClassifier | None = None,
        extractor: TextExtractor | None = None,
    ) -> None:
        self.context = context
        self.normalizer = normalizer or ImageNormalizer()
        self.classifier = classifier or AttachmentClassifier()
        self.extractor = extractor or TextExtractor()

    def prepare(self, raw_bytes: bytes, category_hint: AttachmentCategory | None = None) -> Attachment:
        keep_local = self.context.keep_local_only
        image = self.normalizer.normalize(raw_bytes)
        if not keep_local:
            image = self.normalizer.strip_metadata(image)
        category = self.classifier.classify(image)
        if category_hint is not None and category_hint != AttachmentCategory.UNKNOWN:
            category = category_hint
        return Attachment(
            image=image,
            category=category,
            kept_local=keep_local,
            faces_blurred=self.context.blur_faces,
        )

    async def ingest(
        self,
        session: Session,
        raw_items: list[bytes],
        *,
        category_hint: AttachmentCategory | None = None,
        post_message: MessageSink | None = None,
    ) -> IngestionResult:
        result = IngestionResult()
        for raw in raw_items:
            try:
                attachment = await asyncio.to_thread(self.prepare, raw, category_hint)
            except ImageUnreadable as exc:
                logger.warning(f"attachment skipped: {exc}")
                self.context.notices.post(UNREADABLE_NOTICE, error=True)
                result.skipped += 1
                continue
            result.attachments.append(attachment)

        if not result.attachments:
            return result

        session.composer.pending_attachments.extend(result.attachments)
        sink = post_message or _append_to_log
        suggestion = suggestion_for(result.attachments)
        if suggestion is not None:
            sink(session, suggestion)
            result.suggestions.append(suggestion)

        label = next((item for item in result.attachments if item.category == AttachmentCategory.LABEL), None)
        if label is not None and label.image is not None:
            recognized = await self.read_label(label.image)
            if recognized is not None:
                message = label_text_message(recognized.display_text)
                sink(session, message)
                result.suggestions.append(message)
                result.recognized_text = recognized.text
        return result

    async def read_label(self, image: NormalizedImage) -> RecognizedText | None:
        try:
            recognized = await asyncio.to_thread(self.extractor.extract, image)
        except OCRFailure as exc:
            if exc.kind == OCRFailure.NO_TEXT_FOUND:
                self.context.notices.post(NO_TEXT_NOTICE, error=True)
            else:
                self.context.notices.post(f"ocr failed: {exc}", error=True)
            return None
        return recognized


def _append_to_log(session: Session, message: Message) -> None:
    session.messages.append(message)
