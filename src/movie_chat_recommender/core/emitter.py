from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterable, AsyncIterator, Awaitable, Callable, Iterable
from dataclasses import asdict, dataclass, is_dataclass
from typing import Any, Protocol

from starlette.concurrency import run_in_threadpool

from movie_chat_recommender.core.accumulator import ANTHROPIC_DELTA, DeltaSchema
from movie_chat_recommender.core.conversation import ChatSession, ConversationMessage, utc_now_iso
from movie_chat_recommender.core.decoder import StreamDecoder
from movie_chat_recommender.core.preferences import extract_preferences
from movie_chat_recommender.core.scanner import DEFAULT_MAX_PENDING_CHARS
from movie_chat_recommender.core.trigger import ExtractionTrigger
from movie_chat_recommender.core.upstream import UpstreamError

logger = logging.getLogger(__name__)

LEGACY_DONE_LINE = "data: [DONE]\n\n"

EventSink = Callable[[dict[str, Any]], None]
TitleEnricher = Callable[[Iterable[str]], Awaitable[list[Any]]]


class SessionRecorder(Protocol):
    def append_message(self, session_id: str, message: ConversationMessage) -> None: ...

    def mark_preferences_extracted(self, session_id: str, preferences: dict[str, Any]) -> bool: ...

    def save_title_matches(self, session_id: str, matches: list[dict[str, Any]]) -> None: ...


def encode_event(envelope: dict[str, Any]) -> str:
    return f"data: {json.dumps(envelope, ensure_ascii=False)}\n\n"


@dataclass(frozen=True)
class ExchangeOutcome:
    preferences_extracted: bool = False
    preferences: dict[str, Any] | None = None


class SessionEmitter:
    """Builds the outward event envelopes of one stream.

    ``complete`` hands back the terminal lines exactly once; every later call
    returns nothing. Each envelope is also passed to ``sink`` when given.
    """

    def __init__(self, session_id: str, *, sink: EventSink | None = None) -> None:
        self.session_id = session_id
        self.completed = False
        self._sink = sink

    def _emit(self, event_type: str, **fields: Any) -> dict[str, Any]:
        envelope = {"type": event_type, **fields, "timestamp": utc_now_iso()}
        if self._sink is not None:
            self._sink(envelope)
        return envelope

    def start(self) -> str:
        return encode_event(self._emit("start", sessionId=self.session_id))

    def content(self, text: str) -> str:
        return encode_event(self._emit("content", content=text))

    def error(self, message: str) -> str:
        return encode_event(self._emit("error", message=message))

    def complete(self, full_response: str, outcome: ExchangeOutcome) -> list[str]:
        if self.completed:
            return []
        self.completed = True

        fields: dict[str, Any] = {
            "sessionId": self.session_id,
            "fullResponse": full_response,
            "preferencesExtracted": outcome.preferences_extracted,
        }
        if outcome.preferences_extracted:
            fields["preferences"] = outcome.preferences
        envelope = self._emit("complete", **fields)
        return [encode_event(envelope), LEGACY_DONE_LINE]


def finalize_exchange(
    session: ChatSession,
    full_response: str,
    *,
    store: SessionRecorder,
    trigger: ExtractionTrigger,
    current_year: int | None = None,
) -> ExchangeOutcome:
    """Record the assistant reply, then run extraction if the trigger fires.

    Extraction problems are logged and leave the session unextracted; they
    never fail the chat turn.
    """

    reply = ConversationMessage(role="assistant", content=full_response)
    session.append(reply)
    store.append_message(session.session_id, reply)

    decision = trigger.evaluate(session, full_response)
    if not decision.fire:
        return ExchangeOutcome()

    try:
        preferences = extract_preferences(session.transcript(), current_year=current_year).to_dict()
        if not store.mark_preferences_extracted(session.session_id, preferences):
            logger.info("Session %s was already marked as extracted", session.session_id)
            return ExchangeOutcome()
    except Exception:
        logger.exception("Preference extraction failed for session %s", session.session_id)
        return ExchangeOutcome()

    trigger.mark_fired(session, preferences)
    logger.info(
        "Extracted preferences for session %s (reason=%s)", session.session_id, decision.reason
    )
    return ExchangeOutcome(preferences_extracted=True, preferences=preferences)


async def _enrich_titles(
    session_id: str,
    preferences: dict[str, Any],
    *,
    store: SessionRecorder,
    enrich: TitleEnricher,
) -> None:
    titles = preferences.get("movieTitles") or []
    if not titles:
        return
    try:
        matches = await enrich(titles)
        await run_in_threadpool(
            store.save_title_matches,
            session_id,
            [asdict(m) if is_dataclass(m) else m for m in matches],
        )
    except Exception:
        logger.warning("Title enrichment failed for session %s", session_id, exc_info=True)


# Enrichment tasks outlive a consumer that disconnects right after ``complete``.
_ENRICHMENT_TASKS: set[asyncio.Task[None]] = set()


def _start_enrichment(
    session_id: str,
    preferences: dict[str, Any],
    *,
    store: SessionRecorder,
    enrich: TitleEnricher,
) -> asyncio.Task[None]:
    task = asyncio.create_task(
        _enrich_titles(session_id, preferences, store=store, enrich=enrich)
    )
    _ENRICHMENT_TASKS.add(task)
    task.add_done_callback(_ENRICHMENT_TASKS.discard)
    return task


async def stream_chat_events(
    session: ChatSession,
    chunks: AsyncIterable[bytes],
    *,
    store: SessionRecorder,
    schema: DeltaSchema = ANTHROPIC_DELTA,
    trigger: ExtractionTrigger | None = None,
    max_pending_chars: int = DEFAULT_MAX_PENDING_CHARS,
    enrich: TitleEnricher | None = None,
    sink: EventSink | None = None,
    current_year: int | None = None,
) -> AsyncIterator[str]:
    """Run one exchange's decode loop and yield encoded outward events.

    Always ends with exactly one ``complete`` event (followed by the legacy
    ``[DONE]`` line), whether the upstream finished, failed, or the consumer
    went away. In the last case the terminal event only reaches ``sink``.

    Session-store calls run in the threadpool. Title enrichment starts after
    extraction and never delays ``complete``.
    """

    trigger = trigger or ExtractionTrigger()
    emitter = SessionEmitter(session.session_id, sink=sink)
    decoder = StreamDecoder(schema, max_pending_chars=max_pending_chars)
    outcome = ExchangeOutcome()
    finalized = False
    cancelled = False
    error_line: str | None = None

    try:
        yield emitter.start()

        async for chunk in chunks:
            for event in decoder.feed(chunk):
                yield emitter.content(event.text)
            if decoder.done:
                break

        for event in decoder.finish():
            yield emitter.content(event.text)

        finalized = True
        outcome = await run_in_threadpool(
            finalize_exchange,
            session,
            decoder.text,
            store=store,
            trigger=trigger,
            current_year=current_year,
        )

        enrichment: asyncio.Task[None] | None = None
        if outcome.preferences_extracted and enrich is not None:
            enrichment = _start_enrichment(
                session.session_id, outcome.preferences or {}, store=store, enrich=enrich
            )

        for line in emitter.complete(decoder.text, outcome):
            yield line

        if enrichment is not None:
            await asyncio.shield(enrichment)
    except (asyncio.CancelledError, GeneratorExit):
        cancelled = True
        logger.info("Stream for session %s cancelled by consumer", session.session_id)
        raise
    except UpstreamError as e:
        logger.error("Upstream failure for session %s: %s", session.session_id, e)
        error_line = emitter.error(str(e))
    except Exception:
        logger.exception("Chat stream crashed for session %s", session.session_id)
        error_line = emitter.error("Streaming failed")
    finally:
        decoder.finish()
        if not finalized and decoder.text:
            if cancelled:
                # Awaiting inside a cancelled scope would raise again.
                _record_partial_reply(session, decoder.text, store=store)
            else:
                await run_in_threadpool(_record_partial_reply, session, decoder.text, store=store)

        terminal = emitter.complete(decoder.text, outcome)
        try:
            if not cancelled:
                if error_line is not None:
                    yield error_line
                for line in terminal:
                    yield line
        finally:
            aclose = getattr(chunks, "aclose", None)
            if aclose is not None:
                try:
                    await aclose()
                except Exception:
                    logger.debug("Closing upstream stream failed", exc_info=True)


def _record_partial_reply(session: ChatSession, text: str, *, store: SessionRecorder) -> None:
    reply = ConversationMessage(role="assistant", content=text)
    try:
        session.append(reply)
        store.append_message(session.session_id, reply)
    except Exception:
        logger.exception("Failed to persist partial reply for session %s", session.session_id)
