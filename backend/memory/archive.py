from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

from pulse_core.models import Message, Session

from .database import SQLiteMemoryDB
from .time_utils import to_iso, utc_now

logger = logging.getLogger(__name__)


def _json_dumps(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"))


@dataclass(frozen=True)
class SessionSnapshot:
    session_id: str
    title: str
    rows: list[tuple[str, str, int, str, str, str]]


class SessionArchive:
    """Snapshot store for chat sessions.

    Placeholders are never archived. Attachment pixels are not stored, only
    their metadata.
    """

    def __init__(self, db: SQLiteMemoryDB) -> None:
        self._db = db

    def snapshot(self, session: Session) -> SessionSnapshot:
        rows = [
            (
                message.message_id,
                session.session_id,
                position,
                message.role,
                _json_dumps(message.to_dict()),
                to_iso(message.created_at),
            )
            for position, message in enumerate(item for item in session.messages if not item.is_placeholder)
        ]
        return SessionSnapshot(session_id=session.session_id, title=session.title, rows=rows)

    def save(self, session: Session) -> None:
        self.write(self.snapshot(session))

    def write(self, snapshot: SessionSnapshot) -> None:
        now = to_iso(utc_now())
        with self._db.connection() as conn:
            conn.execute(
                """
                INSERT INTO chat_sessions (id, title, created_at, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                  title = excluded.title,
                  updated_at = excluded.updated_at
                """,
                (snapshot.session_id, snapshot.title, now, now),
            )
            conn.execute("DELETE FROM chat_messages WHERE session_id = ?", (snapshot.session_id,))
            conn.executemany(
                """
                INSERT INTO chat_messages (id, session_id, position, role, payload_json, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                snapshot.rows,
            )
        logger.info(f"session archived: {snapshot.session_id} ({len(snapshot.rows)} messages)")

    def load(self, session_id: str) -> Session | None:
        with self._db.connection() as conn:
            row = conn.execute(
                "SELECT id, title FROM chat_sessions WHERE id = ?",
                (session_id,),
            ).fetchone()
            if not row:
                return None
            message_rows = conn.execute(
                """
                SELECT payload_json
                FROM chat_messages
                WHERE session_id = ?
                ORDER BY position ASC
                """,
                (session_id,),
            ).fetchall()
        messages = [Message.from_dict(json.loads(item["payload_json"])) for item in message_rows]
        return Session(title=row["title"], messages=messages, session_id=row["id"])

    def list_sessions(self) -> list[dict[str, Any]]:
        with self._db.connection() as conn:
            return [
                {"id": row["id"], "title": row["title"], "updated_at": row["updated_at"]}
                for row in conn.execute(
                    "SELECT id, title, updated_at FROM chat_sessions ORDER BY updated_at DESC"
                ).fetchall()
            ]

    def delete(self, session_id: str) -> None:
        with self._db.connection() as conn:
            conn.execute("DELETE FROM chat_sessions WHERE id = ?", (session_id,))
