from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from memory.time_utils import parse_iso, to_iso, utc_now

if TYPE_CHECKING:
    from pulse_media.normalizer import NormalizedImage


DEFAULT_SESSION_TITLE = "new session"
PLACEHOLDER_TEXT = "…"
SHARED_PHOTO_TEXT = "[shared photo]"
GREETING_TEXT = (
    "Hi, I'm Pulse. Tell me what's going on, or share a photo from the tray. "
    "I'll ask quick follow-ups and suggest safe next steps."
)


def new_id() -> str:
    return uuid.uuid4().hex


class AttachmentCategory(str, Enum):
    SKIN = "skin"
    EYE = "eye"
    MEAL = "meal"
    LABEL = "label"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: str | None) -> "AttachmentCategory":
        cleaned = (value or "").strip().lower()
        for member in cls:
            if member.value == cleaned:
                return member
        return cls.UNKNOWN


class InlineAction(str, Enum):
    ADD_PLAN = "add_plan"
    FOLLOWUP = "followup"
    OPEN_LEARN = "open_learn"
    LOG_MED = "log_med"
    OTHER = "other"

    @property
    def title(self) -> str:
        return _ACTION_TITLES[self]

    @classmethod
    def parse(cls, value: str | None) -> "InlineAction":
        cleaned = (value or "").strip().lower()
        for member in cls:
            if member.value == cleaned:
                return member
        return cls.OTHER


_ACTION_TITLES = {
    InlineAction.ADD_PLAN: "add to plan",
    InlineAction.FOLLOWUP: "start 6h check-in",
    InlineAction.OPEN_LEARN: "open learn",
    InlineAction.LOG_MED: "log a med",
    InlineAction.OTHER: "other",
}


class Mood(str, Enum):
    CALM = "calm"
    NEUTRAL = "neutral"
    URGENT = "urgent"


class MessageKind(str, Enum):
    CHAT = "chat"
    PLACEHOLDER = "placeholder"
    SUGGESTION = "suggestion"
    GREETING = "greeting"


@dataclass
class Attachment:
    image: "NormalizedImage | None"
    category: AttachmentCategory = AttachmentCategory.UNKNOWN
    note: str = ""
    kept_local: bool = True
    faces_blurred: bool = False
    attachment_id: str = field(default_factory=new_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.attachment_id,
            "category": self.category.value,
            "note": self.note,
            "kept_local": self.kept_local,
            "faces_blurred": self.faces_blurred,
            "width": self.image.width if self.image is not None else None,
            "height": self.image.height if self.image is not None else None,
        }


@dataclass
class Message:
    text: str
    is_user: bool
    kind: MessageKind = MessageKind.CHAT
    attachments: list[Attachment] = field(default_factory=list)
    actions: list[InlineAction] = field(default_factory=list)
    bookmarked: bool = False
    confidence_note: str | None = None
    created_at: datetime = field(default_factory=utc_now)
    message_id: str = field(default_factory=new_id)

    @property
    def is_placeholder(self) -> bool:
        return self.kind == MessageKind.PLACEHOLDER

    @property
    def role(self) -> str:
        return "user" if self.is_user else "assistant"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.message_id,
            "text": self.text,
            "role": self.role,
            "kind": self.kind.value,
            "created_at": to_iso(self.created_at),
            "attachments": [attachment.to_dict() for attachment in self.attachments],
            "actions": [action.value for action in self.actions],
            "bookmarked": self.bookmarked,
            "confidence_note": self.confidence_note,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "Message":
        # Archived attachments keep their metadata only; pixel data stays on device.
        attachments = [
            Attachment(
                image=None,
                category=AttachmentCategory.parse(item.get("category")),
                note=str(item.get("note") or ""),
                kept_local=bool(item.get("kept_local", True)),
                faces_blurred=bool(item.get("faces_blurred", False)),
                attachment_id=str(item.get("id") or new_id()),
            )
            for item in payload.get("attachments", [])
            if isinstance(item, dict)
        ]
        try:
            kind = MessageKind(payload.get("kind") or MessageKind.CHAT.value)
        except ValueError:
            kind = MessageKind.CHAT
        return cls(
            text=str(payload.get("text") or ""),
            is_user=payload.get("role") == "user",
            kind=kind,
            attachments=attachments,
            actions=[InlineAction.parse(value) for value in payload.get("actions", [])],
            bookmarked=bool(payload.get("bookmarked", False)),
            confidence_note=payload.get("confidence_note"),
            created_at=parse_iso(payload.get("created_at")) or utc_now(),
            message_id=str(payload.get("id") or new_id()),
        )


@dataclass
class Composer:
    draft: str = ""
    pending_attachments: list[Attachment] = field(default_factory=list)

    def clear(self) -> None:
        self.draft = ""
        self.pending_attachments = []


@dataclass
class Session:
    title: str = DEFAULT_SESSION_TITLE
    messages: list[Message] = field(default_factory=list)
    composer: Composer = field(default_factory=Composer)
    session_id: str = field(default_factory=new_id)

    @property
    def has_default_title(self) -> bool:
        return self.title.strip().lower() == DEFAULT_SESSION_TITLE

    def find_message(self, message_id: str) -> Message | None:
        for message in self.messages:
            if message.message_id == message_id:
                return message
        return None

    def remove_message(self, message_id: str) -> bool:
        for idx, message in enumerate(self.messages):
            if message.message_id == message_id:
                del self.messages[idx]
                return True
        return False

    def summary(self) -> dict[str, Any]:
        return {
            "id": self.session_id,
            "title": self.title,
            "message_count": len(self.messages),
        }


@dataclass
class SendOutcome:
    status: str
    session_id: str
    reply: Message | None = None
    red_flag: str | None = None
    failure_kind: str | None = None
    reason: str | None = None
