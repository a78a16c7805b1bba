from __future__ import annotations

import json
import logging
import os
import sqlite3
import time
from pathlib import Path
from threading import Lock
from typing import Any
from uuid import uuid4

from movie_chat_recommender.core.conversation import ChatSession, ConversationMessage

logger = logging.getLogger(__name__)


def _default_data_dir() -> Path:
    return Path(os.environ.get("MOVIE_CHAT_RECOMMENDER_DATA_DIR", "data")).resolve()


def _loads(raw: str | None, default: Any) -> Any:
    if not raw:
        return default
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return default


class ChatSessionStore:
    """SQLite-backed chat session store.

    One row per session:
      - messages_json: ordered list of {role, content, timestamp}
      - preferences_extracted: one-shot flag, never reset once set
      - preferences_json: the preference record written with the flag
      - title_matches_json: movie lookups for the extracted titles

    Every mutation is a single transaction.
    """

    def __init__(
        self,
        *,
        db_path: Path | None = None,
        max_sessions: int = 4096,
        max_age_s: float = 60 * 60 * 24 * 30,  # 30 days
    ) -> None:
        self._max_sessions = max_sessions
        self._max_age_s = max_age_s
        default_db = db_path or (_default_data_dir() / "chat_sessions.sqlite3")
        self._db_path = Path(
            os.environ.get("MOVIE_CHAT_RECOMMENDER_SESSION_DB", str(default_db))
        ).resolve()
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        self._lock = Lock()
        # check_same_thread=False because TestClient may access across threads.
        self._conn = sqlite3.connect(self._db_path, check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS chat_sessions (
              session_id TEXT PRIMARY KEY,
              messages_json TEXT NOT NULL,
              preferences_extracted INTEGER NOT NULL DEFAULT 0,
              preferences_json TEXT,
              title_matches_json TEXT,
              updated_at REAL NOT NULL
            )
            """
        )
        self._conn.commit()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def _row_to_session(self, session_id: str, row: tuple) -> ChatSession:
        messages_raw, extracted, preferences_raw = row
        messages = [
            ConversationMessage.from_dict(m)
            for m in _loads(messages_raw, [])
            if isinstance(m, dict)
        ]
        preferences = _loads(preferences_raw, None)
        return ChatSession(
            session_id=session_id,
            messages=messages,
            preferences_extracted=bool(extracted),
            preferences=preferences if isinstance(preferences, dict) else None,
        )

    def _select(self, session_id: str) -> tuple | None:
        cur = self._conn.execute(
            "SELECT messages_json, preferences_extracted, preferences_json "
            "FROM chat_sessions WHERE session_id = ?",
            (session_id,),
        )
        return cur.fetchone()

    def get(self, session_id: str) -> ChatSession | None:
        with self._lock:
            row = self._select(session_id)
        if row is None:
            return None
        return self._row_to_session(session_id, row)

    def get_or_create(self, session_id: str | None) -> ChatSession:
        with self._lock:
            if not session_id:
                session_id = uuid4().hex

            now = time.time()
            row = self._select(session_id)
            if row is None:
                self._conn.execute(
                    "INSERT INTO chat_sessions("
                    "session_id, messages_json, preferences_extracted, updated_at) "
                    "VALUES (?, ?, 0, ?)",
                    (session_id, json.dumps([]), now),
                )
                self._conn.commit()
                self._evict_if_needed(now)
                logger.info("Created chat session %s", session_id)
                return ChatSession(session_id=session_id)

            # Touch updated_at for LRU-ish eviction.
            self._conn.execute(
                "UPDATE chat_sessions SET updated_at = ? WHERE session_id = ?",
                (now, session_id),
            )
            self._conn.commit()
        return self._row_to_session(session_id, row)

    def append_message(self, session_id: str, message: ConversationMessage) -> None:
        with self._lock:
            now = time.time()
            row = self._select(session_id)
            messages = _loads(row[0], []) if row is not None else []
            messages.append(message.to_dict())
            self._conn.execute(
                "INSERT INTO chat_sessions("
                "session_id, messages_json, preferences_extracted, updated_at) "
                "VALUES (?, ?, 0, ?) "
                "ON CONFLICT(session_id) DO UPDATE SET "
                "messages_json = excluded.messages_json, updated_at = excluded.updated_at",
                (session_id, json.dumps(messages), now),
            )
            self._conn.commit()

    def mark_preferences_extracted(self, session_id: str, preferences: dict[str, Any]) -> bool:
        """Set the one-shot flag together with its payload.

        Returns False when the session was already marked (or does not exist);
        the stored record is then left untouched.
        """

        with self._lock:
            cur = self._conn.execute(
                "UPDATE chat_sessions SET preferences_extracted = 1, preferences_json = ?, "
                "updated_at = ? WHERE session_id = ? AND preferences_extracted = 0",
                (json.dumps(preferences, sort_keys=True), time.time(), session_id),
            )
            self._conn.commit()
            updated = cur.rowcount == 1

        if updated:
            logger.info("Marked preferences as extracted for session %s", session_id)
        return updated

    def save_title_matches(self, session_id: str, matches: list[dict[str, Any]]) -> None:
        with self._lock:
            self._conn.execute(
                "UPDATE chat_sessions SET title_matches_json = ?, updated_at = ? "
                "WHERE session_id = ?",
                (json.dumps(matches, sort_keys=True), time.time(), session_id),
            )
            self._conn.commit()

    def title_matches(self, session_id: str) -> list[dict[str, Any]]:
        with self._lock:
            cur = self._conn.execute(
                "SELECT title_matches_json FROM chat_sessions WHERE session_id = ?",
                (session_id,),
            )
            row = cur.fetchone()
        if row is None:
            return []
        matches = _loads(row[0], [])
        return matches if isinstance(matches, list) else []

    def _evict_if_needed(self, now: float) -> None:
        # Remove old sessions.
        cutoff = now - self._max_age_s
        self._conn.execute("DELETE FROM chat_sessions WHERE updated_at < ?", (cutoff,))

        # Cap number of sessions. Remove least-recently-updated first.
        cur = self._conn.execute("SELECT COUNT(*) FROM chat_sessions")
        (count,) = cur.fetchone() or (0,)
        if count <= self._max_sessions:
            self._conn.commit()
            return

        to_delete = count - self._max_sessions
        self._conn.execute(
            "DELETE FROM chat_sessions WHERE session_id IN ("
            "SELECT session_id FROM chat_sessions ORDER BY updated_at ASC LIMIT ?"
            ")",
            (to_delete,),
        )
        self._conn.commit()


def create_session_store() -> ChatSessionStore:
    return ChatSessionStore()
