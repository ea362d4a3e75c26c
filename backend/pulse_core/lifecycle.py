from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass, field
from enum import Enum

from .cancellation import CancellationToken

PHASE_HISTORY_DEPTH = 8


class SendPhase(str, Enum):
    IDLE = "idle"
    SENDING = "sending"
    STREAMING = "streaming"
    CANCELLED = "cancelled"


class SendStateError(Exception):
    pass


@dataclass
class SendState:
    session_id: str
    phase: SendPhase = SendPhase.IDLE
    token: CancellationToken | None = None
    placeholder_id: str | None = None
    send_id: str | None = None
    watchdog: asyncio.TimerHandle | None = None
    history: deque[SendPhase] = field(
        default_factory=lambda: deque([SendPhase.IDLE], maxlen=PHASE_HISTORY_DEPTH)
    )

    @property
    def active(self) -> bool:
        return self.phase != SendPhase.IDLE

    def owns(self, token: CancellationToken) -> bool:
        return self.token is token


class SendLifecycle:
    _TRANSITIONS = {
        SendPhase.IDLE: {SendPhase.SENDING},
        SendPhase.SENDING: {SendPhase.STREAMING, SendPhase.CANCELLED, SendPhase.IDLE},
        SendPhase.STREAMING: {SendPhase.IDLE, SendPhase.CANCELLED},
        SendPhase.CANCELLED: {SendPhase.IDLE},
    }

    def __init__(self) -> None:
        self._states: dict[str, SendState] = {}

    def state_for(self, session_id: str) -> SendState:
        state = self._states.get(session_id)
        if state is None:
            state = SendState(session_id=session_id)
            self._states[session_id] = state
        return state

    def phase(self, session_id: str) -> SendPhase:
        return self.state_for(session_id).phase

    def begin(self, session_id: str, placeholder_id: str) -> CancellationToken:
        state = self.state_for(session_id)
        self.transition(state, SendPhase.SENDING)
        if state.token is not None:
            state.token.cancel()
        token = CancellationToken()
        state.token = token
        state.placeholder_id = placeholder_id
        state.send_id = placeholder_id
        return token

    def transition(self, state: SendState, next_phase: SendPhase) -> None:
        allowed_next = self._TRANSITIONS.get(state.phase, set())
        if next_phase not in allowed_next:
            raise SendStateError(f"Invalid transition: {state.phase.value} -> {next_phase.value}")
        state.phase = next_phase
        state.history.append(next_phase)
        if next_phase == SendPhase.IDLE:
            self._disarm(state)

    def force_idle(self, state: SendState) -> None:
        if state.phase == SendPhase.IDLE:
            return
        state.phase = SendPhase.IDLE
        state.history.append(SendPhase.IDLE)
        self._disarm(state)

    def discard(self, session_id: str) -> None:
        state = self._states.pop(session_id, None)
        if state is not None:
            self._disarm(state)

    @staticmethod
    def _disarm(state: SendState) -> None:
        state.placeholder_id = None
        if state.watchdog is not None:
            state.watchdog.cancel()
            state.watchdog = None
