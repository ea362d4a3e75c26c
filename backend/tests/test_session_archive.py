from __future__ import annotations

from memory import SQLiteMemoryDB
from memory.archive import SessionArchive
from pulse_core import Attachment, AttachmentCategory, InlineAction, Message, MessageKind, Session


def _archive(tmp_path) -> SessionArchive:
    return SessionArchive(SQLiteMemoryDB(str(tmp_path / "archive.sqlite")))


def test_archive_round_trips_session_without_placeholders(tmp_path):
    archive = _archive(tmp_path)
    session = Session(title="itchy rash")
    photo = Attachment(image=None, category=AttachmentCategory.SKIN, note="left arm [marked region]")
    session.messages.extend(
        [
            Message(text="[shared photo]", is_user=True, attachments=[photo]),
            Message(text="…", is_user=False, kind=MessageKind.PLACEHOLDER),
            Message(text="you could log a follow-up", is_user=False, actions=[InlineAction.FOLLOWUP], bookmarked=True),
        ]
    )

    archive.save(session)
    restored = archive.load(session.session_id)

    assert restored is not None
    assert restored.title == "itchy rash"
    assert [message.text for message in restored.messages] == ["[shared photo]", "you could log a follow-up"]
    assert restored.messages[0].attachments[0].category == AttachmentCategory.SKIN
    assert restored.messages[0].attachments[0].note == "left arm [marked region]"
    assert restored.messages[0].attachments[0].image is None
    assert restored.messages[1].actions == [InlineAction.FOLLOWUP]
    assert restored.messages[1].bookmarked is True
    assert restored.messages[1].message_id == session.messages[2].message_id


def test_archive_save_replaces_previous_snapshot(tmp_path):
    archive = _archive(tmp_path)
    session = Session()
    session.messages.append(Message(text="first", is_user=True))
    archive.save(session)

    session.title = "renamed"
    session.messages.append(Message(text="second", is_user=False))
    archive.save(session)

    restored = archive.load(session.session_id)
    assert restored.title == "renamed"
    assert [message.text for message in restored.messages] == ["first", "second"]
    assert [row["id"] for row in archive.list_sessions()] == [session.session_id]


def test_archive_delete_and_missing_session(tmp_path):
    archive = _archive(tmp_path)
    session = Session()
    session.messages.append(Message(text="hello", is_user=True))
    archive.save(session)

    archive.delete(session.session_id)

    assert archive.load(session.session_id) is None
    assert archive.list_sessions() == []
    assert archive.load("missing") is None
