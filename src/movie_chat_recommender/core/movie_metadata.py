from __future__ import annotations

import json
import logging
import os
import re
from collections.abc import Iterable
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

import httpx

logger = logging.getLogger(__name__)

TMDB_BASE = "https://api.themoviedb.org/3"


class MovieMetadataError(RuntimeError):
    pass


@dataclass(frozen=True)
class MovieMatch:
    query: str
    tmdb_id: int
    title: str
    year: int | None = None
    rating: float | None = None
    overview: str | None = None


def default_data_dir() -> Path:
    return Path(os.environ.get("MOVIE_CHAT_RECOMMENDER_DATA_DIR", "data")).resolve()


def _cache_key(title: str) -> str:
    key = re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")
    return key or "untitled"


def _cache_path(title: str, *, data_dir: Path | None = None) -> Path:
    base = data_dir or default_data_dir()
    return base / "movies" / f"{_cache_key(title)}.json"


def load_cached_match(title: str, *, data_dir: Path | None = None) -> MovieMatch | None:
    path = _cache_path(title, data_dir=data_dir)
    if not path.exists():
        return None

    try:
        raw = json.loads(path.read_text())
        return MovieMatch(**raw)
    except (json.JSONDecodeError, TypeError):
        return None


def persist_match(match: MovieMatch, *, data_dir: Path | None = None) -> Path:
    path = _cache_path(match.query, data_dir=data_dir)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(asdict(match), indent=2, sort_keys=True) + "\n")
    return path


def parse_search_result(query: str, payload: dict[str, Any]) -> MovieMatch | None:
    """Pick the first usable hit of a TMDB ``/search/movie`` response."""

    results = payload.get("results")
    if not isinstance(results, list):
        return None

    for item in results:
        if not isinstance(item, dict):
            continue
        tmdb_id = item.get("id")
        title = item.get("title")
        if not isinstance(tmdb_id, int) or not isinstance(title, str) or not title.strip():
            continue

        year: int | None = None
        release_date = item.get("release_date")
        if isinstance(release_date, str) and len(release_date) >= 4:
            try:
                year = int(release_date[:4])
            except ValueError:
                year = None

        rating = item.get("vote_average")
        overview = item.get("overview")
        return MovieMatch(
            query=query,
            tmdb_id=tmdb_id,
            title=title.strip(),
            year=year,
            rating=float(rating) if isinstance(rating, (int, float)) else None,
            overview=overview.strip() if isinstance(overview, str) and overview.strip() else None,
        )

    return None


async def search_movie(
    title: str,
    *,
    api_key: str,
    client: httpx.AsyncClient | None = None,
    timeout_s: float = 10.0,
) -> MovieMatch | None:
    close_client = False
    if client is None:
        client = httpx.AsyncClient(timeout=timeout_s)
        close_client = True

    try:
        try:
            resp = await client.get(
                f"{TMDB_BASE}/search/movie",
                params={"query": title, "api_key": api_key, "include_adult": "false"},
            )
        except httpx.HTTPError as e:
            raise MovieMetadataError(f"Movie lookup failed: {e}") from e

        if resp.status_code >= 400:
            raise MovieMetadataError(f"TMDB responded with {resp.status_code}")
        try:
            payload = resp.json()
        except ValueError as e:
            raise MovieMetadataError("TMDB returned a non-JSON body") from e
        if not isinstance(payload, dict):
            return None
        return parse_search_result(title, payload)
    finally:
        if close_client:
            await client.aclose()


async def enrich_titles(
    titles: Iterable[str],
    *,
    api_key: str,
    client: httpx.AsyncClient | None = None,
    data_dir: Path | None = None,
) -> list[MovieMatch]:
    """Look up extracted titles; failures are logged and skipped."""

    matches: list[MovieMatch] = []
    for title in sorted(set(titles)):
        cached = load_cached_match(title, data_dir=data_dir)
        if cached is not None:
            matches.append(cached)
            continue

        try:
            match = await search_movie(title, api_key=api_key, client=client)
        except MovieMetadataError as e:
            logger.warning("Skipping title enrichment for %r: %s", title, e)
            continue

        if match is None:
            continue
        persist_match(match, data_dir=data_dir)
        matches.append(match)

    return matches


def format_movie_info(match: MovieMatch) -> str:
    lines = [f"Title: {match.title}"]
    if match.year is not None:
        lines.append(f"Year: {match.year}")
    if match.rating is not None:
        lines.append(f"TMDB rating: {match.rating:.1f}/10")
    if match.overview:
        lines.append(f"Plot: {match.overview}")
    return "\n".join(lines)


async def movie_info_for_chat(
    title: str,
    *,
    api_key: str,
    client: httpx.AsyncClient | None = None,
    data_dir: Path | None = None,
) -> str:
    """Summary of one film for the chat system prompt; never raises."""

    match = load_cached_match(title, data_dir=data_dir)
    if match is None:
        try:
            match = await search_movie(title, api_key=api_key, client=client)
        except MovieMetadataError as e:
            logger.warning("Movie lookup for chat failed for %r: %s", title, e)
            return (
                f'I encountered an error while looking up "{title}". '
                "Please try asking about the movie in a different way."
            )
        if match is None:
            return (
                f'I couldn\'t find any movie titled "{title}" in the TMDB database. '
                "It might be a very new release, indie film, "
                "or the title might be slightly different."
            )
        persist_match(match, data_dir=data_dir)

    return format_movie_info(match)
