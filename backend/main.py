from __future__ import annotations

import asyncio
import json
import logging
import os
import re
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable

from fastapi import FastAPI, File, Form, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse, StreamingResponse
from pydantic import BaseModel

from pulse_core import AttachmentCategory, InlineAction, PulseSettings, SendOutcome, SessionNotFoundError
from pulse_core.engine import AttachmentNotFoundError, MessageNotFoundError, PulseEngine

_ENV_KEY_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _load_local_env_file(path: Path) -> None:
    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except OSError:
        return
    for raw in lines:
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        if not _ENV_KEY_RE.fullmatch(key):
            continue
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
            value = value[1:-1]
        os.environ.setdefault(key, value)


def _bootstrap_local_env() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    candidates = [
        repo_root / ".env",
        repo_root / "backend/.env",
    ]
    for candidate in candidates:
        if candidate.exists():
            _load_local_env_file(candidate)


_bootstrap_local_env()

logging.basicConfig(level=os.getenv("PULSE_LOG_LEVEL", "INFO").upper())
logger = logging.getLogger(__name__)


class ChatRequest(BaseModel):
    message: str | None = None


class RenameRequest(BaseModel):
    title: str


class AttachmentUpdate(BaseModel):
    note: str | None = None
    mark_region: bool = False


class ActionRequest(BaseModel):
    action: str


class PrivacyUpdate(BaseModel):
    keep_local_only: bool | None = None
    blur_faces: bool | None = None


container = PulseEngine(PulseSettings.from_env())
container.load_archived()
app = FastAPI(title="Pulse Chat Backend")

allowed_origins = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in allowed_origins],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _emit_sse(event: str, data: dict[str, Any]) -> str:
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


def _not_found(exc: Exception) -> HTTPException:
    return HTTPException(status_code=404, detail=str(exc))


def _sessions_payload() -> dict[str, Any]:
    return {
        "current_id": container.sessions.current_id,
        "sessions": [session.summary() for session in container.sessions.list_sessions()],
    }


def _messages_payload() -> dict[str, Any]:
    session = container.current
    return {
        "session": session.summary(),
        "messages": [message.to_dict() for message in session.messages],
    }


def _stream_send(start: Callable[[], Awaitable[SendOutcome]]) -> StreamingResponse:
    orchestrator = container.orchestrator

    async def event_stream() -> AsyncIterator[str]:
        queue: asyncio.Queue[tuple[str, dict[str, Any]] | None] = asyncio.Queue()
        task: asyncio.Task[SendOutcome] | None = None
        own_send_id: str | None = None

        def listener(event: str, _session_id: str, data: dict[str, Any]) -> None:
            nonlocal own_send_id
            # Placeholders are emitted synchronously inside the send that owns them.
            if event == "placeholder" and task is not None and asyncio.current_task() is task:
                own_send_id = data.get("send_id")
            if own_send_id is not None and data.get("send_id") == own_send_id:
                queue.put_nowait((event, data))

        orchestrator.add_listener(listener)
        task = asyncio.create_task(start())
        task.add_done_callback(lambda _: queue.put_nowait(None))
        revealed = ""
        try:
            while True:
                item = await queue.get()
                if item is None:
                    break
                event, data = item
                if event == "chunk":
                    text = str(data.get("text") or "")
                    delta = text[len(revealed) :]
                    revealed = text
                    if delta:
                        yield _emit_sse("token", {"delta": delta})
                elif event == "cancelled":
                    yield _emit_sse("error", {"message": "reply cancelled.", "reason": data.get("reason")})

            try:
                outcome = task.result()
            except Exception as exc:
                logger.exception(f"chat stream failed: {exc}")
                yield _emit_sse("error", {"message": "Chat pipeline error."})
                return
            if outcome.status == "rejected":
                yield _emit_sse("error", {"message": f"send rejected: {outcome.reason}.", "reason": outcome.reason})
                return
            if outcome.status != "completed" or outcome.reply is None:
                return
            message = outcome.reply.to_dict()
            message["failure_kind"] = outcome.failure_kind
            yield _emit_sse("message", message)
            if outcome.red_flag:
                yield _emit_sse("red_flag", {"text": outcome.red_flag})
        finally:
            orchestrator.remove_listener(listener)

    return StreamingResponse(event_stream(), media_type="text/event-stream")


@app.get("/health")
def health() -> dict[str, Any]:
    return {"status": "ok", "model": container.settings.model, "phase": container.orchestrator.phase().value}


@app.get("/sessions")
def list_sessions() -> dict[str, Any]:
    return _sessions_payload()


@app.post("/sessions")
def create_session() -> dict[str, Any]:
    session = container.new_chat()
    return {"session": session.summary(), **_sessions_payload()}


@app.post("/sessions/{session_id}/switch")
def switch_session(session_id: str) -> dict[str, Any]:
    try:
        container.switch_session(session_id)
    except SessionNotFoundError as exc:
        raise _not_found(exc) from exc
    return _messages_payload()


@app.patch("/sessions/{session_id}")
def rename_session(session_id: str, payload: RenameRequest) -> dict[str, Any]:
    try:
        session = container.sessions.rename(session_id, payload.title)
    except SessionNotFoundError as exc:
        raise _not_found(exc) from exc
    return session.summary()


@app.delete("/sessions/{session_id}")
def delete_session(session_id: str) -> dict[str, Any]:
    try:
        container.delete_session(session_id)
    except SessionNotFoundError as exc:
        raise _not_found(exc) from exc
    return _sessions_payload()


@app.post("/sessions/current/clear")
def clear_current_session() -> dict[str, Any]:
    container.clear_current()
    return _messages_payload()


@app.get("/sessions/current/messages")
def current_messages() -> dict[str, Any]:
    return _messages_payload()


@app.get("/sessions/current/export")
def export_current_session() -> PlainTextResponse:
    return PlainTextResponse(container.export_markdown(), media_type="text/markdown")


@app.post("/chat/stream")
async def chat_stream(payload: ChatRequest) -> StreamingResponse:
    return _stream_send(lambda: container.send(payload.message))


@app.post("/chat/recap")
async def chat_recap() -> StreamingResponse:
    return _stream_send(container.request_recap)


@app.post("/chat/cancel")
async def chat_cancel() -> dict[str, Any]:
    return {"cancelled": container.cancel(), "phase": container.orchestrator.phase().value}


@app.get("/chat/state")
def chat_state() -> dict[str, Any]:
    return container.state()


@app.patch("/settings/privacy")
def update_privacy(payload: PrivacyUpdate) -> dict[str, Any]:
    if payload.keep_local_only is not None:
        container.context.keep_local_only = payload.keep_local_only
    if payload.blur_faces is not None:
        container.context.blur_faces = payload.blur_faces
    return container.context.snapshot()


@app.post("/attachments")
async def add_attachments(
    files: list[UploadFile] = File(...),
    category_hint: str | None = Form(default=None),
) -> dict[str, Any]:
    raw_items = [await upload.read() for upload in files]
    hint = AttachmentCategory.parse(category_hint) if category_hint else None
    result = await container.ingest_photos(raw_items, category_hint=hint)
    payload = result.to_dict()
    payload["notice"] = container.context.notices.as_dict()
    return payload


@app.get("/attachments/compare")
def compare_attachments() -> dict[str, Any]:
    pair = container.compare_candidates()
    if pair is None:
        return {"pair": None}
    return {"pair": [pair[0].to_dict(), pair[1].to_dict()]}


@app.patch("/attachments/{attachment_id}")
def update_attachment(attachment_id: str, payload: AttachmentUpdate) -> dict[str, Any]:
    try:
        attachment = container.update_attachment(
            attachment_id,
            note=payload.note,
            mark_region=payload.mark_region,
        )
    except AttachmentNotFoundError as exc:
        raise _not_found(exc) from exc
    return attachment.to_dict()


@app.delete("/attachments/{attachment_id}")
def remove_attachment(attachment_id: str) -> dict[str, Any]:
    try:
        container.remove_attachment(attachment_id)
    except AttachmentNotFoundError as exc:
        raise _not_found(exc) from exc
    return {"pending_attachments": [item.to_dict() for item in container.current.composer.pending_attachments]}


@app.post("/messages/{message_id}/bookmark")
def bookmark_message(message_id: str) -> dict[str, Any]:
    try:
        message = container.toggle_bookmark(message_id)
    except MessageNotFoundError as exc:
        raise _not_found(exc) from exc
    return {"id": message.message_id, "bookmarked": message.bookmarked}


@app.post("/messages/{message_id}/edit")
def edit_message(message_id: str) -> dict[str, Any]:
    try:
        draft = container.edit_and_resend(message_id)
    except MessageNotFoundError as exc:
        raise _not_found(exc) from exc
    return {"draft": draft}


@app.post("/actions")
def run_inline_action(payload: ActionRequest) -> dict[str, Any]:
    action = InlineAction.parse(payload.action)
    notice = container.handle_inline_action(action)
    return {"action": action.value, "title": action.title, "notice": notice}
