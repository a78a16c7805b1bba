from __future__ import annotations

import logging
from collections.abc import Iterable

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import StreamingResponse
from starlette.concurrency import run_in_threadpool

from movie_chat_recommender.core.config import Settings
from movie_chat_recommender.core.conversation import ConversationMessage
from movie_chat_recommender.core.emitter import TitleEnricher, stream_chat_events
from movie_chat_recommender.core.movie_metadata import MovieMatch, enrich_titles, movie_info_for_chat
from movie_chat_recommender.core.movie_query import detect_movie_query
from movie_chat_recommender.core.schemas import (
    ChatRequest,
    ChatResponse,
    ChatSessionResponse,
)
from movie_chat_recommender.core.upstream import (
    MOVIE_SYSTEM_PROMPT,
    UpstreamError,
    open_upstream_stream,
    provider_for,
    with_movie_info,
)
from movie_chat_recommender.core.validation import MessageValidationError, sanitize_message

logger = logging.getLogger(__name__)

router = APIRouter()

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def _title_enricher(settings: Settings) -> TitleEnricher | None:
    api_key = settings.tmdb_api_key
    if not api_key:
        return None

    async def _enrich(titles: Iterable[str]) -> list[MovieMatch]:
        return await enrich_titles(titles, api_key=api_key)

    return _enrich


async def _system_prompt_for(message: str, settings: Settings) -> str:
    if not settings.tmdb_api_key:
        return MOVIE_SYSTEM_PROMPT
    title = detect_movie_query(message)
    if title is None:
        return MOVIE_SYSTEM_PROMPT
    info = await movie_info_for_chat(title, api_key=settings.tmdb_api_key)
    return with_movie_info(MOVIE_SYSTEM_PROMPT, info)


@router.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@router.post("/api/chat", response_model=None)
async def chat(req: ChatRequest, request: Request) -> StreamingResponse | ChatResponse:
    try:
        message = sanitize_message(req.message)
    except MessageValidationError as e:
        raise HTTPException(status_code=400, detail=e.errors) from e

    settings: Settings = request.app.state.settings
    store = request.app.state.session_store

    try:
        provider = provider_for(settings)
    except UpstreamError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e

    session = await run_in_threadpool(store.get_or_create, req.session_id)
    user_message = ConversationMessage(role="user", content=message)
    session.append(user_message)
    await run_in_threadpool(store.append_message, session.session_id, user_message)
    logger.info(
        "Chat turn for session %s (user turn %d, stream=%s)",
        session.session_id,
        session.user_turns,
        req.stream,
    )

    system_prompt = await _system_prompt_for(message, settings)
    chunks = open_upstream_stream(settings, list(session.messages), system_prompt=system_prompt)
    options = {
        "store": store,
        "schema": provider.delta_schema,
        "max_pending_chars": settings.max_pending_chars,
        "enrich": _title_enricher(settings),
    }

    if req.stream:
        return StreamingResponse(
            stream_chat_events(session, chunks, **options),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )

    envelopes: list[dict] = []
    async for _line in stream_chat_events(session, chunks, sink=envelopes.append, **options):
        pass

    error = next((e for e in envelopes if e["type"] == "error"), None)
    if error is not None:
        raise HTTPException(status_code=502, detail=error["message"])

    complete = next(e for e in envelopes if e["type"] == "complete")
    return ChatResponse(
        session_id=session.session_id,
        response=complete["fullResponse"],
        preferences_extracted=complete["preferencesExtracted"],
        preferences=complete.get("preferences"),
    )


@router.get("/api/chat/sessions/{session_id}", response_model=ChatSessionResponse)
def get_chat_session(session_id: str, request: Request) -> ChatSessionResponse:
    store = request.app.state.session_store
    session = store.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Chat session not found")

    return ChatSessionResponse(
        session_id=session.session_id,
        messages=[m.to_dict() for m in session.messages],
        preferences_extracted=session.preferences_extracted,
        preferences=session.preferences,
        title_matches=store.title_matches(session_id),
    )
