from __future__ import annotations

import threading

import httpx
import pytest

from memory import SQLiteMemoryDB
from memory.archive import SessionArchive
from pulse_core import AttachmentCategory, InlineAction, Mood, PulseSettings
from pulse_core.engine import AttachmentNotFoundError, MessageNotFoundError, PulseEngine
from pulse_media import TextExtractor
from pulse_fakes import SKIN_RGB, chat_completion, image_bytes


def _engine(tmp_path, reply: str = "Try a short walk and some water.", **overrides) -> PulseEngine:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=chat_completion(reply))

    values = {
        "api_key": "test-key",
        "base_url": "https://llm.test/v1",
        "stream_interval_seconds": 0.0,
        "greeting": False,
    }
    values.update(overrides)
    return PulseEngine(
        PulseSettings(**values),
        transport=httpx.MockTransport(handler),
        extractor=TextExtractor(recognizer=lambda _image: "Cetirizine 10mg"),
        archive=SessionArchive(SQLiteMemoryDB(str(tmp_path / "engine.sqlite"))),
    )


@pytest.mark.asyncio
async def test_send_uses_composer_draft_and_archives_completed_turn(tmp_path):
    engine = _engine(tmp_path)
    engine.set_draft("i have a headache")

    outcome = await engine.send()

    assert outcome.status == "completed"
    assert engine.current.composer.draft == ""
    archived = engine.archive.load(engine.current.session_id)
    assert archived is not None
    assert archived.title == "i have a headache"
    assert [message.text for message in archived.messages] == [
        "i have a headache",
        "Try a short walk and some water.",
    ]


@pytest.mark.asyncio
async def test_archive_write_runs_off_the_event_loop_thread(tmp_path, monkeypatch):
    engine = _engine(tmp_path)
    write = engine.archive.write
    writer_threads: list[int] = []

    def recording_write(snapshot):
        writer_threads.append(threading.get_ident())
        write(snapshot)

    monkeypatch.setattr(engine.archive, "write", recording_write)

    await engine.send("my back aches")
    rejected = await engine.send("   ")

    assert rejected.status == "rejected"
    assert len(writer_threads) == 1
    assert writer_threads[0] != threading.get_ident()
    assert engine.archive.load(engine.current.session_id).title == "my back aches"


@pytest.mark.asyncio
async def test_ingested_photos_travel_with_next_send(tmp_path):
    engine = _engine(tmp_path)

    result = await engine.ingest_photos([image_bytes(SKIN_RGB), image_bytes(SKIN_RGB)])
    first, second = result.attachments
    engine.update_attachment(first.attachment_id, note="before", mark_region=True)

    assert engine.compare_candidates() == (first, second)
    assert first.note == "before [marked region]"

    engine.remove_attachment(second.attachment_id)
    outcome = await engine.send("did it change?")

    user_message = next(message for message in engine.current.messages if message.is_user)
    assert user_message.attachments == [first]
    assert outcome.status == "completed"
    assert engine.current.composer.pending_attachments == []


@pytest.mark.asyncio
async def test_label_hint_posts_recognized_text(tmp_path):
    engine = _engine(tmp_path)

    result = await engine.ingest_photos([image_bytes()], category_hint=AttachmentCategory.LABEL)

    assert result.recognized_text is not None
    assert "Cetirizine 10mg" in engine.current.messages[-1].text


def test_unknown_attachment_and_message_ids_raise(tmp_path):
    engine = _engine(tmp_path)

    with pytest.raises(AttachmentNotFoundError):
        engine.remove_attachment("missing")
    with pytest.raises(MessageNotFoundError):
        engine.toggle_bookmark("missing")


@pytest.mark.asyncio
async def test_bookmark_edit_and_export(tmp_path):
    engine = _engine(tmp_path)
    await engine.send("my back is sore")
    user_message, reply = engine.current.messages

    assert engine.toggle_bookmark(reply.message_id).bookmarked is True
    assert engine.context.notices.current().text == "bookmarked."
    assert engine.toggle_bookmark(reply.message_id).bookmarked is False
    assert engine.context.notices.current().text == "bookmark removed."

    assert engine.edit_and_resend(user_message.message_id) == "my back is sore"
    assert engine.current.composer.draft == "my back is sore"

    exported = engine.export_markdown()
    assert exported.startswith("### You\nmy back is sore\n")
    assert "### Pulse\nTry a short walk and some water.\n" in exported


@pytest.mark.parametrize(
    ("action", "notice", "is_error"),
    [
        (InlineAction.ADD_PLAN, "added a habit idea to plan.", False),
        (InlineAction.FOLLOWUP, "scheduled a follow-up in ~6 hours.", False),
        (InlineAction.OPEN_LEARN, "opened a learn module suggestion.", False),
        (InlineAction.LOG_MED, "opened meds quick log.", False),
        (InlineAction.OTHER, "that action isn't available yet.", True),
    ],
)
def test_inline_actions_post_notices(tmp_path, action, notice, is_error):
    engine = _engine(tmp_path)

    assert engine.handle_inline_action(action) == notice
    assert engine.context.notices.as_dict() == {"text": notice, "is_error": is_error}


@pytest.mark.asyncio
async def test_clear_resets_red_flag_and_mood(tmp_path):
    engine = _engine(tmp_path, reply="severe chest pain needs emergency care now.")
    await engine.send("chest feels tight")
    assert engine.context.mood == Mood.URGENT
    assert engine.state()["red_flag"] is not None

    engine.clear_current()

    assert engine.context.red_flag is None
    assert engine.context.mood == Mood.NEUTRAL
    assert engine.current.messages == []


@pytest.mark.asyncio
async def test_archived_sessions_are_restored_into_new_engine(tmp_path):
    engine = _engine(tmp_path)
    await engine.send("sleep has been rough")
    session_id = engine.current.session_id

    restarted = _engine(tmp_path)
    assert restarted.load_archived() == 1
    restored = restarted.restore_session(session_id)

    assert restored is not None
    assert restarted.current.session_id == session_id
    assert restored.title == "sleep has been rough"


@pytest.mark.asyncio
async def test_delete_session_removes_archive_snapshot(tmp_path):
    engine = _engine(tmp_path)
    await engine.send("hello")
    session_id = engine.current.session_id

    engine.delete_session(session_id)

    assert engine.archive.load(session_id) is None
    assert engine.current.session_id != session_id
