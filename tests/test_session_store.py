from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from movie_chat_recommender.api.session import ChatSessionStore
from movie_chat_recommender.core.conversation import ConversationMessage


@pytest.fixture
def store(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[ChatSessionStore]:
    monkeypatch.delenv("MOVIE_CHAT_RECOMMENDER_SESSION_DB", raising=False)
    s = ChatSessionStore(db_path=tmp_path / "sessions.sqlite3")
    yield s
    s.close()


def test_get_or_create_generates_id(store: ChatSessionStore) -> None:
    session = store.get_or_create(None)
    assert session.session_id
    assert session.messages == []
    assert store.get(session.session_id) is not None
    assert store.get("missing") is None


def test_history_survives_a_new_store_instance(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("MOVIE_CHAT_RECOMMENDER_SESSION_DB", raising=False)
    db = tmp_path / "sessions.sqlite3"

    first = ChatSessionStore(db_path=db)
    session = first.get_or_create("abc")
    first.append_message(session.session_id, ConversationMessage(role="user", content="I like noir"))
    first.append_message(session.session_id, ConversationMessage(role="assistant", content="Try Chinatown."))
    first.close()

    second = ChatSessionStore(db_path=db)
    reloaded = second.get_or_create("abc")
    assert [(m.role, m.content) for m in reloaded.messages] == [
        ("user", "I like noir"),
        ("assistant", "Try Chinatown."),
    ]
    assert reloaded.user_turns == 1
    second.close()


def test_extraction_flag_is_set_once(store: ChatSessionStore) -> None:
    store.get_or_create("s")
    assert store.mark_preferences_extracted("s", {"genres": ["Crime"]})
    assert not store.mark_preferences_extracted("s", {"genres": ["Comedy"]})

    session = store.get("s")
    assert session is not None
    assert session.preferences_extracted
    assert session.preferences == {"genres": ["Crime"]}


def test_title_matches_roundtrip(store: ChatSessionStore) -> None:
    store.get_or_create("s")
    assert store.title_matches("s") == []
    store.save_title_matches("s", [{"query": "Heat", "tmdb_id": 949, "title": "Heat"}])
    assert store.title_matches("s") == [{"query": "Heat", "tmdb_id": 949, "title": "Heat"}]


def test_oldest_sessions_are_evicted(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("MOVIE_CHAT_RECOMMENDER_SESSION_DB", raising=False)
    store = ChatSessionStore(db_path=tmp_path / "s.sqlite3", max_sessions=2)
    clock = [100.0]
    monkeypatch.setattr("movie_chat_recommender.api.session.time.time", lambda: clock[0])

    for session_id in ("a", "b", "c"):
        store.get_or_create(session_id)
        clock[0] += 100.0

    assert store.get("a") is None
    assert store.get("b") is not None
    assert store.get("c") is not None
    store.close()
