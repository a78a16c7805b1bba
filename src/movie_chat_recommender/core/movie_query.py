from __future__ import annotations

import logging
import re

logger = logging.getLogger(__name__)

# Tried in order; the first pattern whose capture survives the filters wins.
MOVIE_QUERY_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"tell me about (.+)", re.IGNORECASE),
    re.compile(r"what about (.+)", re.IGNORECASE),
    re.compile(r"do you know (.+)", re.IGNORECASE),
    re.compile(r"have you seen (.+)", re.IGNORECASE),
    re.compile(r"what's (.+) about", re.IGNORECASE),
    re.compile(r"is (.+) good", re.IGNORECASE),
    re.compile(r"(.+) movie", re.IGNORECASE),
)

NON_MOVIE_TERMS = frozenset({"movies", "films", "cinema", "that", "this", "it", "them"})

MIN_QUERY_TITLE_LEN = 3


def detect_movie_query(message: str) -> str | None:
    """Return the film a message asks about, e.g. "tell me about Alien" -> "Alien"."""

    for pattern in MOVIE_QUERY_PATTERNS:
        m = pattern.search(message)
        if m is None:
            continue
        title = m.group(1).strip().rstrip("?.!").strip()
        if len(title) >= MIN_QUERY_TITLE_LEN and title.lower() not in NON_MOVIE_TERMS:
            logger.info("Detected movie query for %r", title)
            return title
    return None
