from __future__ import annotations

import codecs
import logging
from dataclasses import dataclass, field

from movie_chat_recommender.core.accumulator import ANTHROPIC_DELTA, ContentAccumulator, DeltaSchema
from movie_chat_recommender.core.framing import (
    EVENT_PREFIX,
    event_payload,
    feed_lines,
    is_done_sentinel,
)
from movie_chat_recommender.core.scanner import (
    DEFAULT_MAX_PENDING_CHARS,
    feed_fragment,
    scan_objects,
)

logger = logging.getLogger(__name__)


def _utf8_decoder() -> codecs.IncrementalDecoder:
    return codecs.getincrementaldecoder("utf-8")(errors="replace")


@dataclass
class PendingBuffer:
    """Reassembly state of exactly one stream."""

    line_remainder: str = ""
    object_remainder: str = ""
    text_decoder: codecs.IncrementalDecoder = field(default_factory=_utf8_decoder)

    def clear(self) -> None:
        self.line_remainder = ""
        self.object_remainder = ""
        self.text_decoder.reset()


@dataclass(frozen=True)
class ContentEvent:
    index: int
    text: str


class StreamDecoder:
    """Pull-based decoder: raw byte chunks in, content events out.

    One instance per stream. ``feed`` is called with every chunk as it arrives
    and returns the events decoded so far from it; once the ``[DONE]``
    sentinel is seen, ``done`` is true and further input is ignored.
    """

    def __init__(
        self,
        schema: DeltaSchema = ANTHROPIC_DELTA,
        *,
        max_pending_chars: int = DEFAULT_MAX_PENDING_CHARS,
    ) -> None:
        self.pending = PendingBuffer()
        self.accumulator = ContentAccumulator(schema)
        self.max_pending_chars = max_pending_chars
        self.done = False
        self._finished = False
        self._next_index = 0

    @property
    def text(self) -> str:
        return self.accumulator.text

    def feed(self, chunk: bytes | str) -> list[ContentEvent]:
        if self.done:
            return []

        if isinstance(chunk, bytes):
            chunk = self.pending.text_decoder.decode(chunk)

        lines, self.pending.line_remainder = feed_lines(self.pending.line_remainder, chunk)

        events: list[ContentEvent] = []
        for line in lines:
            payload = event_payload(line)
            if is_done_sentinel(payload):
                self._on_sentinel(events)
                break
            if payload:
                self._consume_payload(payload, events)
        return events

    def finish(self) -> list[ContentEvent]:
        """Best-effort parse of whatever is still buffered; runs at most once.

        Never raises. The pending buffer is discarded afterwards.
        """

        if self._finished:
            return []
        self._finished = True

        events: list[ContentEvent] = []
        try:
            if not self.done:
                tail = self.pending.line_remainder + self.pending.text_decoder.decode(
                    b"", final=True
                )
                tail = tail.rstrip("\r")
                if tail.startswith(EVENT_PREFIX):
                    payload = event_payload(tail)
                    if payload and not is_done_sentinel(payload):
                        self.pending.object_remainder += payload

            if self.pending.object_remainder.strip():
                for obj in scan_objects(self.pending.object_remainder).objects:
                    self._emit(obj, events)
        except Exception:
            logger.exception("Final parse of buffered stream data failed")
        finally:
            self.done = True
            self.pending.clear()

        return events

    def _on_sentinel(self, events: list[ContentEvent]) -> None:
        self.done = True
        if self.pending.object_remainder.strip():
            try:
                for obj in scan_objects(self.pending.object_remainder).objects:
                    self._emit(obj, events)
            except Exception:
                logger.exception("Final parse at stream sentinel failed")
        self._finished = True
        self.pending.clear()

    def _consume_payload(self, payload: str, events: list[ContentEvent]) -> None:
        objects, self.pending.object_remainder = feed_fragment(
            self.pending.object_remainder,
            payload,
            max_chars=self.max_pending_chars,
        )
        for obj in objects:
            self._emit(obj, events)

    def _emit(self, obj: dict, events: list[ContentEvent]) -> None:
        delta = self.accumulator.add(obj)
        if delta is None:
            return
        events.append(ContentEvent(index=self._next_index, text=delta))
        self._next_index += 1
