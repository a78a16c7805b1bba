from __future__ import annotations

import json
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient

from movie_chat_recommender.api.app import create_app
from movie_chat_recommender.core.upstream import MOVIE_SYSTEM_PROMPT, UpstreamError


def _delta(text: str) -> bytes:
    obj = {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": text}}
    return f"data: {json.dumps(obj)}\n\n".encode()


def _fake_upstream(replies: list[list[str]], seen: list[list[str]] | None = None):
    turns = iter(replies)

    def _open(settings, history, **_kwargs) -> AsyncIterator[bytes]:
        if seen is not None:
            seen.append([m.content for m in history])
        parts = next(turns)

        async def _gen() -> AsyncIterator[bytes]:
            for part in parts:
                yield _delta(part)
            yield b"data: [DONE]\n\n"

        return _gen()

    return _open


def _failing_upstream(settings, history, **_kwargs) -> AsyncIterator[bytes]:
    async def _gen() -> AsyncIterator[bytes]:
        raise UpstreamError("anthropic streaming API responded with 401")
        yield b""  # pragma: no cover

    return _gen()


def _sse_events(body: str) -> list[Any]:
    events = []
    for block in body.split("\n\n"):
        if block.startswith("data: "):
            payload = block[len("data: ") :]
            events.append(payload if payload == "[DONE]" else json.loads(payload))
    return events


@pytest.fixture
def client(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> TestClient:
    monkeypatch.setenv("MOVIE_CHAT_RECOMMENDER_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.delenv("MOVIE_CHAT_RECOMMENDER_SESSION_DB", raising=False)
    monkeypatch.delenv("TMDB_API_KEY", raising=False)
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test")
    return TestClient(create_app())


def test_streaming_chat_emits_event_sequence(client: TestClient, monkeypatch) -> None:
    monkeypatch.setattr(
        "movie_chat_recommender.api.routes.open_upstream_stream",
        _fake_upstream([["What genres ", "do you enjoy?"]]),
    )

    resp = client.post("/api/chat", json={"message": "Hi, recommend me something"})
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/event-stream")
    assert resp.headers["cache-control"] == "no-cache"

    events = _sse_events(resp.text)
    assert [e if e == "[DONE]" else e["type"] for e in events] == [
        "start",
        "content",
        "content",
        "complete",
        "[DONE]",
    ]
    session_id = events[0]["sessionId"]
    assert events[3]["sessionId"] == session_id
    assert events[3]["fullResponse"] == "What genres do you enjoy?"

    stored = client.get(f"/api/chat/sessions/{session_id}").json()
    assert [m["role"] for m in stored["messages"]] == ["user", "assistant"]
    assert stored["messages"][1]["content"] == "What genres do you enjoy?"


def test_non_streaming_chat_returns_json(client: TestClient, monkeypatch) -> None:
    monkeypatch.setattr(
        "movie_chat_recommender.api.routes.open_upstream_stream",
        _fake_upstream([["Sure, ", "try Heat."]]),
    )

    resp = client.post("/api/chat", json={"message": "Crime films?", "stream": False})
    assert resp.status_code == 200
    body = resp.json()
    assert body["response"] == "Sure, try Heat."
    assert body["preferences_extracted"] is False
    assert body["preferences"] is None
    assert body["session_id"]


def test_third_turn_extracts_preferences_once(client: TestClient, monkeypatch) -> None:
    seen: list[list[str]] = []
    monkeypatch.setattr(
        "movie_chat_recommender.api.routes.open_upstream_stream",
        _fake_upstream([["Which era?"], ["Any rating floor?"], ["Here you go."], ["Enjoy!"]], seen),
    )

    messages = ["I love thrillers", "Something since 2010", "An 8+ rating", "Thanks"]
    bodies = []
    session_id = None
    for message in messages:
        payload: dict[str, Any] = {"message": message, "stream": False}
        if session_id:
            payload["session_id"] = session_id
        body = client.post("/api/chat", json=payload).json()
        session_id = body["session_id"]
        bodies.append(body)

    assert [b["preferences_extracted"] for b in bodies] == [False, False, True, False]
    prefs = bodies[2]["preferences"]
    assert "Thriller" in prefs["genres"]
    assert prefs["yearRange"]["min"] == 2010
    assert prefs["ratingRange"] == {"min": 8.0, "max": 10.0}

    # Upstream always sees the full history, ending with the new user message.
    assert seen[2] == ["I love thrillers", "Which era?", "Something since 2010", "Any rating floor?", "An 8+ rating"]

    stored = client.get(f"/api/chat/sessions/{session_id}").json()
    assert stored["preferences_extracted"] is True
    assert stored["preferences"] == prefs
    assert len(stored["messages"]) == 8


def test_upstream_failure_streams_error_then_complete(client: TestClient, monkeypatch) -> None:
    monkeypatch.setattr("movie_chat_recommender.api.routes.open_upstream_stream", _failing_upstream)

    resp = client.post("/api/chat", json={"message": "hello"})
    assert resp.status_code == 200
    events = _sse_events(resp.text)
    types = [e if e == "[DONE]" else e["type"] for e in events]
    assert types == ["start", "error", "complete", "[DONE]"]
    assert events[2]["fullResponse"] == ""


def test_upstream_failure_non_streaming_is_502(client: TestClient, monkeypatch) -> None:
    monkeypatch.setattr("movie_chat_recommender.api.routes.open_upstream_stream", _failing_upstream)

    resp = client.post("/api/chat", json={"message": "hello", "stream": False})
    assert resp.status_code == 502
    assert "401" in resp.json()["detail"]


def test_unsafe_message_is_rejected(client: TestClient) -> None:
    resp = client.post("/api/chat", json={"message": "<script>alert(1)</script>"})
    assert resp.status_code == 400
    assert resp.json()["detail"] == ["Message contains potentially unsafe content"]


def test_empty_message_fails_validation(client: TestClient) -> None:
    assert client.post("/api/chat", json={"message": ""}).status_code == 422


def test_unknown_session_is_404(client: TestClient) -> None:
    resp = client.get("/api/chat/sessions/does-not-exist")
    assert resp.status_code == 404
    assert resp.json()["detail"] == "Chat session not found"


def test_movie_question_adds_movie_information_to_prompt(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("MOVIE_CHAT_RECOMMENDER_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.delenv("MOVIE_CHAT_RECOMMENDER_SESSION_DB", raising=False)
    monkeypatch.setenv("TMDB_API_KEY", "tmdb-test")

    looked_up: list[str] = []
    prompts: list[str] = []

    async def fake_info(title: str, *, api_key: str, **_kwargs) -> str:
        looked_up.append(title)
        return "Title: Alien\nYear: 1979"

    def fake_open(settings, history, *, system_prompt: str, **_kwargs) -> AsyncIterator[bytes]:
        prompts.append(system_prompt)

        async def _gen() -> AsyncIterator[bytes]:
            yield _delta("A classic.")
            yield b"data: [DONE]\n\n"

        return _gen()

    monkeypatch.setattr("movie_chat_recommender.api.routes.movie_info_for_chat", fake_info)
    monkeypatch.setattr("movie_chat_recommender.api.routes.open_upstream_stream", fake_open)
    client = TestClient(create_app())

    body = client.post("/api/chat", json={"message": "Tell me about Alien", "stream": False}).json()
    client.post(
        "/api/chat",
        json={"message": "I like thrillers", "stream": False, "session_id": body["session_id"]},
    )

    assert looked_up == ["Alien"]
    assert "CURRENT MOVIE INFORMATION:\nTitle: Alien\nYear: 1979" in prompts[0]
    assert prompts[1] == MOVIE_SYSTEM_PROMPT
