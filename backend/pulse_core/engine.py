from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from memory.archive import SessionArchive
from memory.database import SQLiteMemoryDB
from pulse_gateway.client import LanguageModelGateway
from pulse_media.ingestion import AttachmentIngestor, IngestionResult, compare_pair
from pulse_media.normalizer import ImageNormalizer
from pulse_media.ocr import TextExtractor

from .config import PulseSettings
from .context import PulseContext
from .hooks import HookRunner
from .models import Attachment, AttachmentCategory, InlineAction, Message, SendOutcome, Session
from .notices import NoticeChannel
from .orchestrator import SendOrchestrator
from .safety import SafetyClassifier
from .sessions import SessionManager, SessionNotFoundError
from .streaming import ReplyStreamer

logger = logging.getLogger(__name__)

_ACTION_NOTICES = {
    InlineAction.ADD_PLAN: "added a habit idea to plan.",
    InlineAction.FOLLOWUP: "scheduled a follow-up in ~6 hours.",
    InlineAction.OPEN_LEARN: "opened a learn module suggestion.",
    InlineAction.LOG_MED: "opened meds quick log.",
}


class AttachmentNotFoundError(Exception):
    pass


class MessageNotFoundError(Exception):
    pass


class PulseEngine:
    def __init__(
        self,
        settings: PulseSettings | None = None,
        *,
        greeting: bool | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        extractor: TextExtractor | None = None,
        archive: SessionArchive | None = None,
    ) -> None:
        self.settings = settings or PulseSettings.from_env()
        self.context = PulseContext(
            notices=NoticeChannel(ttl_seconds=self.settings.notice_seconds),
            keep_local_only=self.settings.keep_local_only,
            blur_faces=self.settings.blur_faces,
        )
        if greeting is None:
            greeting = self.settings.greeting
        self.sessions = SessionManager(HookRunner(), greeting=greeting)
        self.safety = SafetyClassifier()
        self.streamer = ReplyStreamer(
            batch_size=self.settings.stream_batch_size,
            interval_seconds=self.settings.stream_interval_seconds,
            safety=self.safety,
        )
        self.gateway = LanguageModelGateway(self.settings, notices=self.context.notices, transport=transport)
        self.orchestrator = SendOrchestrator(
            sessions=self.sessions,
            gateway=self.gateway,
            context=self.context,
            streamer=self.streamer,
            safety=self.safety,
            history_limit=self.settings.history_limit,
            watchdog_seconds=self.settings.watchdog_seconds,
        )
        self.ingestor = AttachmentIngestor(
            context=self.context,
            normalizer=ImageNormalizer(max_dimension=self.settings.max_image_dimension),
            extractor=extractor,
        )
        if archive is None and self.settings.archive_path:
            archive = SessionArchive(SQLiteMemoryDB(self.settings.archive_path))
        self.archive = archive

    @property
    def current(self) -> Session:
        return self.sessions.current

    # chat

    def set_draft(self, text: str) -> None:
        self.current.composer.draft = text

    async def send(self, text: str | None = None) -> SendOutcome:
        session = self.current
        user_text = session.composer.draft if text is None else text
        outcome = await self.orchestrator.send(user_text, list(session.composer.pending_attachments))
        await self._archive_completed(outcome)
        return outcome

    def cancel(self) -> bool:
        return self.orchestrator.cancel()

    async def request_recap(self) -> SendOutcome:
        outcome = await self.orchestrator.request_recap()
        await self._archive_completed(outcome)
        return outcome

    # attachments

    async def ingest_photos(
        self,
        raw_items: list[bytes],
        *,
        category_hint: AttachmentCategory | None = None,
    ) -> IngestionResult:
        return await self.ingestor.ingest(
            self.current,
            raw_items,
            category_hint=category_hint,
            post_message=self.orchestrator.post_assistant_message,
        )

    def _pending(self, attachment_id: str) -> Attachment:
        for attachment in self.current.composer.pending_attachments:
            if attachment.attachment_id == attachment_id:
                return attachment
        raise AttachmentNotFoundError(f"Attachment not found: {attachment_id}")

    def update_attachment(
        self,
        attachment_id: str,
        *,
        note: str | None = None,
        mark_region: bool = False,
    ) -> Attachment:
        attachment = self._pending(attachment_id)
        if note is not None:
            attachment.note = note.strip()
        if mark_region:
            attachment.note = f"{attachment.note} [marked region]".strip()
        return attachment

    def remove_attachment(self, attachment_id: str) -> None:
        attachment = self._pending(attachment_id)
        self.current.composer.pending_attachments.remove(attachment)

    def compare_candidates(self) -> tuple[Attachment, Attachment] | None:
        return compare_pair(self.current.composer.pending_attachments)

    # messages

    def _message(self, message_id: str) -> Message:
        message = self.current.find_message(message_id)
        if message is None:
            raise MessageNotFoundError(f"Message not found: {message_id}")
        return message

    def toggle_bookmark(self, message_id: str) -> Message:
        message = self._message(message_id)
        message.bookmarked = not message.bookmarked
        self.context.notices.post("bookmarked." if message.bookmarked else "bookmark removed.")
        return message

    def edit_and_resend(self, message_id: str) -> str:
        message = self._message(message_id)
        self.current.composer.draft = message.text
        return message.text

    def handle_inline_action(self, action: InlineAction) -> str:
        text = _ACTION_NOTICES.get(action)
        if text is None:
            self.context.notices.post("that action isn't available yet.", error=True)
            return "that action isn't available yet."
        self.context.notices.post(text)
        return text

    def export_markdown(self) -> str:
        blocks = []
        for message in self.current.messages:
            if message.is_placeholder:
                continue
            who = "You" if message.is_user else "Pulse"
            blocks.append(f"### {who}\n{message.text}\n")
        return "\n".join(blocks)

    # sessions

    def new_chat(self) -> Session:
        self.sessions.start_new_chat()
        self.context.reset_safety()
        return self.current

    def switch_session(self, session_id: str) -> Session:
        session = self.sessions.switch_to(session_id)
        self.context.notices.post("session switched.")
        return session

    def delete_session(self, session_id: str) -> Session:
        self.sessions.delete_session(session_id)
        self.orchestrator.lifecycle.discard(session_id)
        if self.archive is not None:
            self.archive.delete(session_id)
        return self.current

    def clear_current(self) -> Session:
        session = self.sessions.clear_current()
        self.context.reset_safety()
        self.context.notices.post("cleared.")
        return session

    def load_archived(self) -> int:
        if self.archive is None:
            return 0
        loaded = 0
        for row in self.archive.list_sessions():
            session = self.archive.load(row["id"])
            if session is not None:
                self.sessions.adopt(session)
                loaded += 1
        if loaded:
            logger.info(f"restored {loaded} archived sessions")
        return loaded

    def restore_session(self, session_id: str) -> Session | None:
        if self.archive is None:
            return None
        session = self.archive.load(session_id)
        if session is None:
            return None
        self.sessions.adopt(session)
        return self.sessions.switch_to(session.session_id)

    def state(self) -> dict[str, Any]:
        session = self.current
        return {
            "session": session.summary(),
            "phase": self.orchestrator.phase().value,
            "draft": session.composer.draft,
            "pending_attachments": [item.to_dict() for item in session.composer.pending_attachments],
            **self.context.snapshot(),
        }

    async def _archive_completed(self, outcome: SendOutcome) -> None:
        if outcome.status != "completed" or self.archive is None:
            return
        try:
            session = self.sessions.get(outcome.session_id)
        except SessionNotFoundError:
            logger.debug(f"archive skipped: session {outcome.session_id} no longer exists")
            return
        # Rows are built on the loop; only the SQLite write runs in a worker thread.
        snapshot = self.archive.snapshot(session)
        await asyncio.to_thread(self.archive.write, snapshot)
