from __future__ import annotations

import logging

from .hooks import HookRunner
from .models import DEFAULT_SESSION_TITLE, GREETING_TEXT, Message, MessageKind, Session

logger = logging.getLogger(__name__)


class SessionNotFoundError(Exception):
    pass


class SessionManager:
    """Owns every session and which one is current.

    Anything that detaches the current log (switch, delete, clear) runs the
    before-detach hooks first so an in-flight send can be cancelled before
    the log changes underneath it.
    """

    def __init__(self, hooks: HookRunner | None = None, *, greeting: bool = True) -> None:
        self.hooks = hooks or HookRunner()
        self.greeting = greeting
        self._sessions: dict[str, Session] = {}
        self._current_id = self.create_session()

    @property
    def current(self) -> Session:
        return self._sessions[self._current_id]

    @property
    def current_id(self) -> str:
        return self._current_id

    def get(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session not found: {session_id}")
        return session

    def list_sessions(self) -> list[Session]:
        return list(self._sessions.values())

    def create_session(self) -> str:
        session = Session()
        self._seed(session)
        self._sessions[session.session_id] = session
        logger.info(f"session created: {session.session_id}")
        return session.session_id

    def start_new_chat(self) -> str:
        session_id = self.create_session()
        self.switch_to(session_id)
        return session_id

    def adopt(self, session: Session) -> None:
        self._sessions[session.session_id] = session

    def switch_to(self, session_id: str) -> Session:
        target = self.get(session_id)
        if session_id == self._current_id:
            return target
        self.hooks.run_before_detach(self.current)
        self._current_id = session_id
        logger.info(f"session switched: {session_id}")
        return target

    def delete_session(self, session_id: str) -> None:
        session = self.get(session_id)
        if session_id == self._current_id:
            self.hooks.run_before_detach(session)
        del self._sessions[session_id]
        logger.info(f"session deleted: {session_id}")
        if session_id != self._current_id:
            return
        if self._sessions:
            self._current_id = next(reversed(self._sessions))
        else:
            self._current_id = self.create_session()

    def clear_current(self) -> Session:
        session = self.current
        self.hooks.run_before_detach(session)
        session.messages.clear()
        session.composer.clear()
        session.title = DEFAULT_SESSION_TITLE
        self._seed(session)
        return session

    def rename(self, session_id: str, title: str) -> Session:
        session = self.get(session_id)
        cleaned = title.strip()
        session.title = cleaned or DEFAULT_SESSION_TITLE
        return session

    def rename_if_default(self, new_title: str, session_id: str | None = None) -> bool:
        session = self.get(session_id) if session_id else self.current
        cleaned = new_title.strip()
        if not cleaned or not session.has_default_title:
            return False
        session.title = cleaned
        return True

    def _seed(self, session: Session) -> None:
        if self.greeting and not session.messages:
            session.messages.append(Message(text=GREETING_TEXT, is_user=False, kind=MessageKind.GREETING))
