from __future__ import annotations

from collections.abc import Iterator

EVENT_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"


def _iter_event_lines(complete: list[str]) -> Iterator[str]:
    for line in complete:
        if line.endswith("\r"):
            line = line[:-1]
        # Anything that is not an event-data line (comments, "event:", blank
        # separators, junk) is framing noise.
        if line.startswith(EVENT_PREFIX):
            yield line


def feed_lines(remainder: str, chunk: str) -> tuple[Iterator[str], str]:
    """Split ``remainder + chunk`` into complete event-data lines.

    Returns a lazy iterator over the complete ``data:`` lines and the trailing
    partial line, which the caller must pass back in with the next chunk.
    Never raises on malformed input.
    """

    text = remainder + chunk
    head, sep, tail = text.rpartition("\n")
    if not sep:
        return iter(()), text

    return _iter_event_lines(head.split("\n")), tail


def event_payload(line: str) -> str:
    """Return the payload of a ``data:`` line without prefix and padding."""

    if line.startswith(EVENT_PREFIX):
        line = line[len(EVENT_PREFIX) :]
    return line.strip()


def is_done_sentinel(payload: str) -> bool:
    return payload == DONE_SENTINEL
