from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_MAX_PENDING_CHARS = 10_000


@dataclass(frozen=True)
class Incomplete:
    """No closing brace yet for the object opened at ``start``; keep buffering."""

    start: int


@dataclass(frozen=True)
class Malformed:
    """A balanced span that is not a valid JSON object; skipped by callers."""

    span: str
    reason: str


@dataclass
class ScanResult:
    objects: list[dict[str, Any]] = field(default_factory=list)
    remainder: str = ""
    malformed: list[Malformed] = field(default_factory=list)


def find_object_end(buffer: str, start: int) -> int | Incomplete:
    """Return the index of the brace closing the object opened at ``start``.

    Braces only count outside of string literals; a backslash inside a string
    consumes exactly the next character.
    """

    depth = 0
    in_string = False
    escaped = False

    for i in range(start, len(buffer)):
        ch = buffer[i]

        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue

        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i

    return Incomplete(start=start)


def parse_object(span: str) -> dict[str, Any] | Malformed:
    try:
        payload = json.loads(span)
    except json.JSONDecodeError as e:
        return Malformed(span=span, reason=str(e))

    if not isinstance(payload, dict):
        return Malformed(span=span, reason=f"expected an object, got {type(payload).__name__}")
    return payload


def scan_objects(buffer: str) -> ScanResult:
    """Extract every complete JSON object from ``buffer``.

    Fast path: the whole buffer is exactly one document. Otherwise walk the
    buffer brace by brace, collecting back-to-back objects and skipping the
    malformed ones. Whatever follows the last complete object is returned as
    the remainder; if no object completes, the buffer comes back unchanged.
    """

    stripped = buffer.strip()
    if not stripped:
        return ScanResult(remainder=buffer)

    try:
        whole = json.loads(stripped)
    except json.JSONDecodeError:
        pass
    else:
        if isinstance(whole, dict):
            return ScanResult(objects=[whole])
        # A complete scalar/array payload can never become an object; drop it.
        malformed = Malformed(span=stripped, reason="not an object")
        logger.debug("Skipping non-object payload: %.100s", stripped)
        return ScanResult(malformed=[malformed])

    result = ScanResult()
    pos = 0
    while True:
        start = buffer.find("{", pos)
        if start == -1:
            break

        end = find_object_end(buffer, start)
        if isinstance(end, Incomplete):
            break

        parsed = parse_object(buffer[start : end + 1])
        if isinstance(parsed, Malformed):
            logger.debug("Skipping malformed JSON object: %.100s (%s)", parsed.span, parsed.reason)
            result.malformed.append(parsed)
        else:
            result.objects.append(parsed)
        pos = end + 1

    result.remainder = buffer[pos:] if pos else buffer
    return result


def feed_fragment(
    pending: str,
    fragment: str,
    *,
    max_chars: int = DEFAULT_MAX_PENDING_CHARS,
) -> tuple[list[dict[str, Any]], str]:
    """Append one event payload to the pending text and scan it.

    Returns the complete objects and the new pending text. The pending text
    never exceeds ``max_chars``: on overrun the stale prefix is dropped and
    scanning restarts from ``fragment`` alone.
    """

    result = scan_objects(pending + fragment)
    objects = result.objects
    remainder = result.remainder

    if len(remainder) > max_chars:
        logger.warning(
            "Pending JSON buffer exceeded %d chars; resyncing from latest fragment", max_chars
        )
        if len(remainder) > len(fragment):
            # The fragment lies wholly inside the stale text, so none of its
            # objects have been yielded yet.
            resync = scan_objects(fragment)
            objects = objects + resync.objects
            remainder = resync.remainder
        if len(remainder) > max_chars:
            remainder = ""

    return objects, remainder
