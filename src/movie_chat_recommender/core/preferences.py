from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import date
from typing import Any

logger = logging.getLogger(__name__)

MIN_YEAR = 1900
DEFAULT_YEAR_MIN = 1980
MAX_RECENT_YEARS = 50

MIN_RATING = 1.0
MAX_RATING = 10.0
DEFAULT_RATING_MIN = 6.0

MIN_TITLE_LEN = 2
MAX_TITLE_LEN = 100


@dataclass(frozen=True)
class YearRange:
    min: int
    max: int

    def to_dict(self) -> dict[str, int]:
        return {"min": self.min, "max": self.max}


@dataclass(frozen=True)
class RatingRange:
    min: float
    max: float

    def to_dict(self) -> dict[str, float]:
        return {"min": self.min, "max": self.max}


@dataclass(frozen=True)
class ExtractedPreferences:
    genres: frozenset[str]
    year_range: YearRange
    rating_range: RatingRange
    movie_titles: frozenset[str]

    def to_dict(self) -> dict[str, Any]:
        # Sorted so identical preferences always serialise identically.
        return {
            "genres": sorted(self.genres),
            "yearRange": self.year_range.to_dict(),
            "ratingRange": self.rating_range.to_dict(),
            "movieTitles": sorted(self.movie_titles),
        }


# Canonical genre -> substrings that imply it.
GENRE_KEYWORDS: dict[str, tuple[str, ...]] = {
    "Comedy": ("comedy", "comedies", "funny", "humor", "laugh"),
    "Horror": ("horror", "scary", "fear", "frightening", "terrifying", "shining"),
    "Action": ("action", "fight", "explosion", "adventure"),
    "Drama": ("drama", "emotional", "serious"),
    "Romance": ("romance", "romantic", "love"),
    "Sci-Fi": ("sci-fi", "science fiction", "futuristic", "space"),
    "Thriller": ("thriller", "suspense", "tense"),
    "Fantasy": ("fantasy", "magic", "wizards"),
    "Crime": ("crime", "gangster", "heist", "mafia"),
    "Mystery": ("mystery", "mysteries", "whodunit", "detective"),
    "Animation": ("animation", "animated", "anime", "pixar"),
    "Documentary": ("documentary", "documentaries"),
}


@dataclass(frozen=True)
class RangeRule:
    """One priority category: its patterns and how a match becomes a range.

    ``build`` returns ``None`` when the match fails validation; the next match
    (and then the next category) is tried.
    """

    name: str
    patterns: tuple[re.Pattern[str], ...]
    build: Callable[[re.Match[str], int], Any]


def _year_range(lo: int, hi: int, current_year: int, *, rule: str) -> YearRange | None:
    if MIN_YEAR <= lo <= hi <= current_year:
        return YearRange(min=lo, max=hi)
    logger.debug("Discarding %s year match %d-%d", rule, lo, hi)
    return None


def _recent_years(m: re.Match[str], current_year: int) -> YearRange | None:
    years_back = int(m.group(1))
    if not 0 < years_back <= MAX_RECENT_YEARS:
        logger.debug("Discarding recent-years match %r", m.group(0))
        return None
    return _year_range(current_year - years_back, current_year, current_year, rule="recent")


def _explicit_years(m: re.Match[str], current_year: int) -> YearRange | None:
    return _year_range(int(m.group(1)), int(m.group(2)), current_year, rule="explicit")


def _after_year(m: re.Match[str], current_year: int) -> YearRange | None:
    return _year_range(int(m.group(1)), current_year, current_year, rule="after")


def _before_year(m: re.Match[str], current_year: int) -> YearRange | None:
    return _year_range(DEFAULT_YEAR_MIN, int(m.group(1)), current_year, rule="before")


def _decade(m: re.Match[str], current_year: int) -> YearRange | None:
    start = int(m.group(1))
    end = start + 9
    if end > current_year:
        logger.debug("Capping decade %ds at current year %d", start, current_year)
        end = current_year
    return _year_range(start, end, current_year, rule="decade")


# Evaluated top to bottom; the first category with any valid match wins.
YEAR_RULES: tuple[RangeRule, ...] = (
    RangeRule(
        name="recent",
        patterns=(re.compile(r"\b(?:last|past|recent)\s+(\d{1,3})\s+years?\b"),),
        build=_recent_years,
    ),
    RangeRule(
        name="explicit",
        patterns=(
            re.compile(r"\bfrom\s+(\d{4})\s+to\s+(\d{4})\b"),
            re.compile(r"\bbetween\s+(\d{4})\s+and\s+(\d{4})\b"),
            re.compile(r"\b(\d{4})\s*-\s*(\d{4})\b"),
        ),
        build=_explicit_years,
    ),
    RangeRule(
        name="after",
        patterns=(
            re.compile(r"\b(?:after|since)\s+(\d{4})\b"),
            re.compile(r"\bfrom\s+(\d{4})\b"),
        ),
        build=_after_year,
    ),
    RangeRule(
        name="before",
        patterns=(re.compile(r"\b(?:before|until)\s+(\d{4})\b"),),
        build=_before_year,
    ),
    RangeRule(
        name="decade",
        patterns=(re.compile(r"\b(\d{3}0)'?s\b"),),
        build=_decade,
    ),
)


_NUM = r"(\d{1,2}(?:\.\d+)?)"


def _rating_range(lo: float, hi: float, *, rule: str) -> RatingRange | None:
    if MIN_RATING <= lo <= hi <= MAX_RATING:
        return RatingRange(min=lo, max=hi)
    logger.debug("Discarding %s rating match %s-%s", rule, lo, hi)
    return None


def _at_least(m: re.Match[str], _current_year: int) -> RatingRange | None:
    return _rating_range(float(m.group(1)), MAX_RATING, rule="minimum")


def _rating_between(m: re.Match[str], _current_year: int) -> RatingRange | None:
    return _rating_range(float(m.group(1)), float(m.group(2)), rule="between")


def _at_most(m: re.Match[str], _current_year: int) -> RatingRange | None:
    return _rating_range(MIN_RATING, float(m.group(1)), rule="maximum")


RATING_RULES: tuple[RangeRule, ...] = (
    RangeRule(
        name="minimum",
        patterns=(
            re.compile(rf"(?<![\d.]){_NUM}\s*\+"),
            re.compile(rf"(?<![\d.]){_NUM}\s*or\s+higher\b"),
            re.compile(rf"\b(?:above|over|at\s+least|minimum(?:\s+of)?)\s+{_NUM}(?![\d.])"),
        ),
        build=_at_least,
    ),
    RangeRule(
        name="between",
        patterns=(
            re.compile(rf"(?<![\d.]){_NUM}\s*-\s*{_NUM}(?![\d.])"),
            re.compile(rf"\bbetween\s+{_NUM}\s+and\s+{_NUM}(?![\d.])"),
        ),
        build=_rating_between,
    ),
    RangeRule(
        name="maximum",
        patterns=(re.compile(rf"\b(?:under|below|less\s+than)\s+{_NUM}(?![\d.])"),),
        build=_at_most,
    ),
)


_TITLE_CONNECTORS = r"(?:of|the|a|an|in|on|to|for|from|with)"
_TITLE_LEAD = r"[A-Z][\w'’&:-]*"
_TITLE_WORD = r"[A-Z0-9][\w'’&:-]*"

TITLE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r'"([^"\n]+)"'),
    re.compile(r"“([^”\n]+)”"),
    re.compile(r"(?<!\w)'([^'\n]+)'(?!\w)"),
    re.compile(
        rf"\b[Ll]ike\s+({_TITLE_LEAD}(?:\s+(?:{_TITLE_CONNECTORS}\s+)*{_TITLE_WORD})*)"
    ),
)


def _first_match(rules: Iterable[RangeRule], text: str, current_year: int) -> Any:
    for rule in rules:
        for pattern in rule.patterns:
            for m in pattern.finditer(text):
                value = rule.build(m, current_year)
                if value is not None:
                    logger.debug("Rule %r matched %r -> %s", rule.name, m.group(0), value)
                    return value
    return None


def detect_genres(folded: str) -> frozenset[str]:
    return frozenset(
        genre
        for genre, keywords in GENRE_KEYWORDS.items()
        if any(keyword in folded for keyword in keywords)
    )


def detect_year_range(folded: str, *, current_year: int) -> YearRange:
    found = _first_match(YEAR_RULES, folded, current_year)
    return found or YearRange(min=DEFAULT_YEAR_MIN, max=current_year)


def detect_rating_range(folded: str) -> RatingRange:
    found = _first_match(RATING_RULES, folded, 0)
    return found or RatingRange(min=DEFAULT_RATING_MIN, max=MAX_RATING)


def detect_movie_titles(text: str) -> frozenset[str]:
    """Collect quoted phrases and "like <Capitalized Phrase>" references.

    Runs on the original-case text; capitalisation is what marks a title.
    """

    titles: set[str] = set()
    for pattern in TITLE_PATTERNS:
        for m in pattern.finditer(text):
            title = m.group(1).strip().strip(" .,;:!?")
            if MIN_TITLE_LEN <= len(title) <= MAX_TITLE_LEN:
                titles.add(title)
    return frozenset(titles)


def extract_preferences(
    transcript: str, *, current_year: int | None = None
) -> ExtractedPreferences:
    """Turn a conversation transcript into structured movie preferences.

    Deterministic and side-effect free: the same transcript and year always
    give the same result. Genre, year and rating rules run on the case-folded
    text; titles are read from the original text.
    """

    year = current_year if current_year is not None else date.today().year
    folded = transcript.casefold()

    prefs = ExtractedPreferences(
        genres=detect_genres(folded),
        year_range=detect_year_range(folded, current_year=year),
        rating_range=detect_rating_range(folded),
        movie_titles=detect_movie_titles(transcript),
    )
    logger.debug("Extracted preferences: %s", prefs.to_dict())
    return prefs
