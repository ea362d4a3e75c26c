from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Callable

from .cancellation import CancellationToken
from .context import PulseContext
from .lifecycle import SendLifecycle, SendPhase, SendState
from .models import (
    PLACEHOLDER_TEXT,
    SHARED_PHOTO_TEXT,
    Attachment,
    Message,
    MessageKind,
    SendOutcome,
    Session,
)
from .safety import SafetyClassifier
from .sessions import SessionManager, SessionNotFoundError
from .streaming import ReplyStreamer

if TYPE_CHECKING:
    from pulse_gateway.client import LanguageModelGateway

logger = logging.getLogger(__name__)

SendListener = Callable[[str, str, dict[str, Any]], None]

RECAP_PROMPT = "summarize our chat into a short checklist of next steps with simple checkboxes."
TITLE_LENGTH = 30


def derive_title(text: str) -> str:
    return text.strip().lower()[:TITLE_LENGTH].strip()


class SendOrchestrator:
    """Single-flight send controller.

    Every phase change goes through ``SendLifecycle``; the cancellation token
    recorded there is the only thing a running send trusts. A send whose
    token is no longer the recorded one never touches the log again.
    """

    def __init__(
        self,
        *,
        sessions: SessionManager,
        gateway: "LanguageModelGateway",
        context: PulseContext,
        streamer: ReplyStreamer | None = None,
        safety: SafetyClassifier | None = None,
        lifecycle: SendLifecycle | None = None,
        history_limit: int = 10,
        watchdog_seconds: float = 120.0,
    ) -> None:
        self.sessions = sessions
        self.gateway = gateway
        self.context = context
        self.safety = safety or SafetyClassifier()
        self.streamer = streamer or ReplyStreamer(safety=self.safety)
        self.lifecycle = lifecycle or SendLifecycle()
        self.history_limit = history_limit
        self.watchdog_seconds = watchdog_seconds
        self._listeners: list[SendListener] = []
        self._deferred: dict[str, list[Message]] = {}
        sessions.hooks.add_before_detach(self._cancel_on_detach)

    def add_listener(self, listener: SendListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: SendListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def phase(self, session_id: str | None = None) -> SendPhase:
        return self.lifecycle.phase(session_id or self.sessions.current_id)

    def is_busy(self, session_id: str | None = None) -> bool:
        return self.phase(session_id) != SendPhase.IDLE

    def rolling_history(self, session: Session) -> list[Message]:
        if self.history_limit <= 0:
            return []
        valid = [message for message in session.messages if not message.is_placeholder and message.text.strip()]
        return valid[-self.history_limit :]

    def post_assistant_message(self, session: Session, message: Message) -> None:
        if self.lifecycle.state_for(session.session_id).active:
            self._deferred.setdefault(session.session_id, []).append(message)
            return
        session.messages.append(message)

    async def send(self, user_text: str, attachments: list[Attachment] | None = None) -> SendOutcome:
        session = self.sessions.current
        state = self.lifecycle.state_for(session.session_id)
        text = (user_text or "").strip()
        pending = list(session.composer.pending_attachments if attachments is None else attachments)

        if state.active:
            logger.debug(f"send rejected: session {session.session_id} is {state.phase.value}")
            return self._reject(session, "busy")
        if not text and not pending:
            return self._reject(session, "empty")

        history = self.rolling_history(session)
        user_message = Message(text=text or SHARED_PHOTO_TEXT, is_user=True, attachments=pending)
        session.messages.append(user_message)
        session.composer.clear()
        self._emit("user_message", session.session_id, user_message.to_dict())
        return await self._run(session, state, history=history, user_text=user_message.text, attachments=pending)

    async def request_recap(self) -> SendOutcome:
        session = self.sessions.current
        state = self.lifecycle.state_for(session.session_id)
        if state.active:
            return self._reject(session, "busy")
        history = self.rolling_history(session)
        return await self._run(session, state, history=history, user_text=RECAP_PROMPT, attachments=[])

    def cancel(self, session_id: str | None = None) -> bool:
        target_id = session_id or self.sessions.current_id
        state = self.lifecycle.state_for(target_id)
        if not state.active:
            return False
        try:
            session: Session | None = self.sessions.get(target_id)
        except SessionNotFoundError:
            session = None
        self._cancel_state(session, state, reason="cancelled")
        return True

    async def _run(
        self,
        session: Session,
        state: SendState,
        *,
        history: list[Message],
        user_text: str,
        attachments: list[Attachment],
    ) -> SendOutcome:
        placeholder = Message(text=PLACEHOLDER_TEXT, is_user=False, kind=MessageKind.PLACEHOLDER)
        session.messages.append(placeholder)
        token = self.lifecycle.begin(session.session_id, placeholder.message_id)
        self._arm_watchdog(state, token)
        send_id = placeholder.message_id
        self._emit("placeholder", session.session_id, {**placeholder.to_dict(), "send_id": send_id})

        try:
            finished, reply = await token.race(self.gateway.complete(history, user_text, attachments))
            if not finished or reply is None or token.cancelled or not state.owns(token):
                return self._abandon(session, state, token)

            session.remove_message(placeholder.message_id)
            state.placeholder_id = None
            self.lifecycle.transition(state, SendPhase.STREAMING)

            message = Message(text="", is_user=False)
            appended = False

            def on_chunk(revealed: str) -> None:
                nonlocal appended
                if not appended:
                    session.messages.append(message)
                    appended = True
                message.text = revealed
                self._emit(
                    "chunk",
                    session.session_id,
                    {"id": message.message_id, "text": revealed, "send_id": send_id},
                )

            streamed = await self.streamer.stream(reply.text, on_chunk, token)
            if not streamed or not state.owns(token):
                return self._abandon(session, state, token)
            if not appended:
                session.messages.append(message)

            self.streamer.annotate(message, reply.text)
            signal = self.safety.evaluate(reply.text)
            self.context.apply_safety(signal)
            if session.has_default_title:
                first_user = next((item for item in session.messages if item.is_user), None)
                if first_user is not None:
                    self.sessions.rename_if_default(derive_title(first_user.text), session.session_id)

            self.lifecycle.transition(state, SendPhase.IDLE)
            self._flush_deferred(session)
            self._emit("completed", session.session_id, {**message.to_dict(), "send_id": send_id})
            return SendOutcome(
                status="completed",
                session_id=session.session_id,
                reply=message,
                red_flag=signal.red_flag,
                failure_kind=reply.failure.kind if reply.failure is not None else None,
            )
        finally:
            if state.owns(token) and state.active:
                logger.error(f"send for session {session.session_id} ended abnormally; resetting")
                self._cancel_state(session, state, reason="error")

    def _reject(self, session: Session, reason: str) -> SendOutcome:
        return SendOutcome(status="rejected", session_id=session.session_id, reason=reason)

    def _abandon(self, session: Session, state: SendState, token: CancellationToken) -> SendOutcome:
        if state.owns(token) and state.active:
            self._cancel_state(session, state, reason="cancelled")
        return SendOutcome(status="cancelled", session_id=session.session_id)

    def _cancel_state(self, session: Session | None, state: SendState, *, reason: str) -> None:
        if state.token is not None:
            state.token.cancel()
        if session is not None and state.placeholder_id:
            session.remove_message(state.placeholder_id)
        if state.phase in {SendPhase.SENDING, SendPhase.STREAMING}:
            self.lifecycle.transition(state, SendPhase.CANCELLED)
            self.lifecycle.transition(state, SendPhase.IDLE)
        else:
            self.lifecycle.force_idle(state)
        if session is not None:
            self._flush_deferred(session)
        logger.info(f"send {reason}: session {state.session_id}")
        self._emit("cancelled", state.session_id, {"reason": reason, "send_id": state.send_id})

    def _arm_watchdog(self, state: SendState, token: CancellationToken) -> None:
        if self.watchdog_seconds <= 0:
            return
        loop = asyncio.get_running_loop()
        state.watchdog = loop.call_later(self.watchdog_seconds, self._watchdog_fired, state, token)

    def _watchdog_fired(self, state: SendState, token: CancellationToken) -> None:
        state.watchdog = None
        if not state.owns(token) or not state.active:
            return
        logger.warning(f"send watchdog fired after {self.watchdog_seconds}s: session {state.session_id}")
        try:
            session: Session | None = self.sessions.get(state.session_id)
        except SessionNotFoundError:
            session = None
        token.cancel()
        if session is not None and state.placeholder_id:
            session.remove_message(state.placeholder_id)
        self.lifecycle.force_idle(state)
        if session is not None:
            self._flush_deferred(session)
        self._emit("cancelled", state.session_id, {"reason": "watchdog", "send_id": state.send_id})

    def _cancel_on_detach(self, session: Session) -> None:
        self.cancel(session.session_id)

    def _flush_deferred(self, session: Session) -> None:
        for message in self._deferred.pop(session.session_id, []):
            session.messages.append(message)

    def _emit(self, event: str, session_id: str, payload: dict[str, Any]) -> None:
        for listener in list(self._listeners):
            listener(event, session_id, payload)
