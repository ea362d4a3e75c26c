from __future__ import annotations

import pytest

from pulse_core import NoticeChannel, PulseContext, SendLifecycle, SendPhase, SendStateError
from pulse_core.lifecycle import PHASE_HISTORY_DEPTH
from pulse_core.context import SafetySignal
from pulse_core.models import Mood


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_notice_auto_clears_after_ttl():
    clock = FakeClock()
    notices = NoticeChannel(ttl_seconds=2.2, clock=clock)

    notices.post("bookmarked.")
    clock.now = 2.0
    assert notices.current().text == "bookmarked."

    clock.now = 2.3
    assert notices.current() is None
    assert notices.as_dict() is None


def test_newer_notice_is_not_cleared_by_older_timer():
    clock = FakeClock()
    notices = NoticeChannel(ttl_seconds=2.2, clock=clock)

    notices.post("first")
    clock.now = 2.0
    notices.post("second", error=True)
    clock.now = 3.0

    assert notices.as_dict() == {"text": "second", "is_error": True}


def test_posting_none_clears_notice():
    notices = NoticeChannel()
    notices.post("hello")
    notices.post(None)
    assert notices.current() is None


def test_context_safety_state_is_written_through_apply_and_reset():
    context = PulseContext()

    context.apply_safety(SafetySignal(red_flag="urgent", mood=Mood.URGENT))
    assert (context.red_flag, context.mood) == ("urgent", Mood.URGENT)

    context.reset_safety()
    assert (context.red_flag, context.mood) == (None, Mood.NEUTRAL)
    assert context.snapshot()["mood"] == "neutral"


def test_lifecycle_follows_transition_table():
    lifecycle = SendLifecycle()
    token = lifecycle.begin("s1", "placeholder-1")
    state = lifecycle.state_for("s1")

    lifecycle.transition(state, SendPhase.STREAMING)
    lifecycle.transition(state, SendPhase.IDLE)

    assert list(state.history) == [SendPhase.IDLE, SendPhase.SENDING, SendPhase.STREAMING, SendPhase.IDLE]
    assert state.placeholder_id is None
    assert state.owns(token)


def test_lifecycle_rejects_invalid_transitions():
    lifecycle = SendLifecycle()
    state = lifecycle.state_for("s1")

    with pytest.raises(SendStateError):
        lifecycle.transition(state, SendPhase.STREAMING)
    with pytest.raises(SendStateError):
        lifecycle.transition(state, SendPhase.CANCELLED)

    lifecycle.begin("s1", "placeholder-1")
    with pytest.raises(SendStateError):
        lifecycle.begin("s1", "placeholder-2")


def test_new_send_invalidates_previous_token():
    lifecycle = SendLifecycle()
    first = lifecycle.begin("s1", "p1")
    state = lifecycle.state_for("s1")
    lifecycle.transition(state, SendPhase.CANCELLED)
    lifecycle.transition(state, SendPhase.IDLE)

    second = lifecycle.begin("s1", "p2")

    assert first.cancelled
    assert not second.cancelled
    assert not state.owns(first)
    assert state.owns(second)


def test_discard_forgets_only_that_session():
    lifecycle = SendLifecycle()
    lifecycle.begin("s1", "p1")
    other = lifecycle.begin("s2", "p2")

    lifecycle.discard("s1")
    lifecycle.discard("missing")

    assert lifecycle.phase("s1") == SendPhase.IDLE
    assert lifecycle.phase("s2") == SendPhase.SENDING
    assert lifecycle.state_for("s2").owns(other)


def test_phase_history_keeps_only_recent_transitions():
    lifecycle = SendLifecycle()
    state = lifecycle.state_for("s1")

    for index in range(50):
        lifecycle.begin("s1", f"p{index}")
        lifecycle.transition(state, SendPhase.STREAMING)
        lifecycle.transition(state, SendPhase.IDLE)

    assert len(state.history) == PHASE_HISTORY_DEPTH
    assert state.history[-1] == SendPhase.IDLE
    assert state.send_id == "p49"
