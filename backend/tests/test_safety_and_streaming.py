from __future__ import annotations

import asyncio
import math

import pytest

from pulse_core import CancellationToken, InlineAction, Message, Mood, ReplyStreamer, SafetyClassifier
from pulse_core.safety import CONFIDENCE_NOTE, RED_FLAG_ADVISORY


@pytest.mark.parametrize(
    "text",
    [
        "I have been feeling suicidal lately",
        "SEVERE CHEST PAIN since this morning",
        "some trouble breathing at night",
        "one-sided weakness in my arm",
    ],
)
def test_red_flag_phrases_are_detected_case_insensitively(text):
    assert SafetyClassifier().detect_red_flag(text) == RED_FLAG_ADVISORY


def test_text_without_red_flag_phrases_yields_none():
    assert SafetyClassifier().detect_red_flag("mild headache after a long day") is None


@pytest.mark.parametrize(
    ("text", "mood"),
    [
        ("please go to urgent care immediately", Mood.URGENT),
        ("watch for trouble breathing", Mood.URGENT),
        ("try to relax and get some sleep", Mood.CALM),
        ("drink water with meals", Mood.NEUTRAL),
    ],
)
def test_mood_for_text(text, mood):
    assert SafetyClassifier().mood_for(text) == mood


def test_confidence_note_matches_whole_hedge_words_only():
    safety = SafetyClassifier()

    assert safety.confidence_note("you might want to rest") == CONFIDENCE_NOTE
    assert safety.confidence_note("Consider a short walk") == CONFIDENCE_NOTE
    assert safety.confidence_note("stay hydrated, gifts are nice") is None


@pytest.mark.parametrize(("text", "batch"), [("hello there, friend", 3), ("abc", 3), ("a", 5), ("abcdefgh", 1)])
@pytest.mark.asyncio
async def test_streaming_reveals_ceil_batches_and_ends_on_full_text(text, batch):
    streamer = ReplyStreamer(batch_size=batch, interval_seconds=0)
    revealed: list[str] = []

    finished = await streamer.stream(text, revealed.append, CancellationToken())

    assert finished is True
    assert len(revealed) == math.ceil(len(text) / batch)
    assert revealed[-1] == text
    assert all(text.startswith(prefix) for prefix in revealed)


@pytest.mark.asyncio
async def test_streaming_stops_when_token_cancelled():
    streamer = ReplyStreamer(batch_size=2, interval_seconds=0)
    token = CancellationToken()
    revealed: list[str] = []

    def on_chunk(text: str) -> None:
        revealed.append(text)
        if len(revealed) == 2:
            token.cancel()

    finished = await streamer.stream("abcdefghij", on_chunk, token)

    assert finished is False
    assert revealed == ["ab", "abcd"]


def test_streamer_rejects_non_positive_batch_size():
    with pytest.raises(ValueError):
        ReplyStreamer(batch_size=0)


def test_suggested_actions_follow_enumeration_order():
    streamer = ReplyStreamer()

    actions = streamer.suggested_actions("Log your dose, read the learn card, then plan a check-in habit")

    assert actions == [InlineAction.ADD_PLAN, InlineAction.FOLLOWUP, InlineAction.OPEN_LEARN, InlineAction.LOG_MED]
    assert streamer.suggested_actions("sounds good") == []


def test_annotate_sets_actions_and_confidence_note():
    message = Message(text="", is_user=False)

    ReplyStreamer().annotate(message, "you could plan a short walk")

    assert message.actions == [InlineAction.ADD_PLAN]
    assert message.confidence_note == CONFIDENCE_NOTE


@pytest.mark.asyncio
async def test_token_race_returns_result_when_work_finishes_first():
    async def work() -> str:
        await asyncio.sleep(0)
        return "done"

    assert await CancellationToken().race(work()) == (True, "done")


@pytest.mark.asyncio
async def test_token_race_abandons_work_when_cancelled():
    token = CancellationToken()
    started = asyncio.Event()

    async def slow() -> str:
        started.set()
        await asyncio.sleep(10)
        return "late"

    racer = asyncio.create_task(token.race(slow()))
    await started.wait()
    token.cancel()

    assert await asyncio.wait_for(racer, timeout=1.0) == (False, None)


@pytest.mark.asyncio
async def test_token_race_skips_work_when_already_cancelled():
    token = CancellationToken()
    token.cancel()
    calls: list[str] = []

    async def work() -> None:
        calls.append("ran")

    assert await token.race(work()) == (False, None)
    assert calls == []
