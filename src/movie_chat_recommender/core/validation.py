from __future__ import annotations

import re

MAX_MESSAGE_CHARS = 1000


class MessageValidationError(RuntimeError):
    def __init__(self, errors: list[str]) -> None:
        super().__init__("; ".join(errors))
        self.errors = errors


# Prompt-injection and markup patterns rejected outright.
_DANGEROUS_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"ignore\s+previous\s+instructions", re.IGNORECASE),
    re.compile(r"system\s*:", re.IGNORECASE),
    re.compile(r"assistant\s*:", re.IGNORECASE),
    re.compile(r"human\s*:", re.IGNORECASE),
    re.compile(r"<\s*script\s*>", re.IGNORECASE),
    re.compile(r"javascript\s*:", re.IGNORECASE),
    re.compile(r"vbscript\s*:", re.IGNORECASE),
    re.compile(r"\bon\w+\s*=", re.IGNORECASE),
    re.compile(r"data\s*:\s*text/html", re.IGNORECASE),
)

_TAG_RE = re.compile(r"<[^>]*>")
_ENTITY_RE = re.compile(r"&[a-z]+;", re.IGNORECASE)


def sanitize_message(message: str) -> str:
    """Strip markup from a user chat message and reject unsafe content.

    Raises MessageValidationError listing every problem found.
    """

    errors: list[str] = []
    if len(message) > MAX_MESSAGE_CHARS:
        errors.append(f"Message too long (max {MAX_MESSAGE_CHARS} characters)")

    if any(p.search(message) for p in _DANGEROUS_PATTERNS):
        errors.append("Message contains potentially unsafe content")

    sanitized = _ENTITY_RE.sub("", _TAG_RE.sub("", message)).strip()
    if not sanitized:
        errors.append("Message cannot be empty")

    if errors:
        raise MessageValidationError(errors)
    return sanitized
