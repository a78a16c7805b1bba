from __future__ import annotations

import os
from dataclasses import dataclass

ENV_PREFIX = "MOVIE_CHAT_RECOMMENDER_"

SUPPORTED_PROVIDERS = ("anthropic", "groq")

DEFAULT_MODELS = {
    "anthropic": "claude-3-5-sonnet-20241022",
    "groq": "llama-3.3-70b-versatile",
}


def _env(name: str, default: str = "") -> str:
    return os.environ.get(f"{ENV_PREFIX}{name}", default).strip()


def _env_int(name: str, default: int) -> int:
    raw = _env(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = _env(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    """Runtime configuration, read from the environment once per app instance."""

    provider: str = "anthropic"
    model: str = DEFAULT_MODELS["anthropic"]
    max_tokens: int = 1000
    temperature: float = 0.7
    timeout_s: float = 60.0

    # Ceiling for the structured-object reassembly buffer of one stream.
    max_pending_chars: int = 10_000

    log_level: str = "INFO"

    anthropic_api_key: str | None = None
    groq_api_key: str | None = None
    tmdb_api_key: str | None = None

    @property
    def provider_api_key(self) -> str | None:
        if self.provider == "groq":
            return self.groq_api_key
        return self.anthropic_api_key

    @classmethod
    def from_env(cls) -> Settings:
        provider = _env("PROVIDER", "anthropic").lower()
        if provider not in SUPPORTED_PROVIDERS:
            provider = "anthropic"

        return cls(
            provider=provider,
            model=_env("MODEL") or DEFAULT_MODELS[provider],
            max_tokens=_env_int("MAX_TOKENS", 1000),
            temperature=_env_float("TEMPERATURE", 0.7),
            timeout_s=_env_float("TIMEOUT_S", 60.0),
            max_pending_chars=max(1, _env_int("MAX_PENDING_CHARS", 10_000)),
            log_level=_env("LOG_LEVEL", "INFO").upper() or "INFO",
            anthropic_api_key=os.environ.get("ANTHROPIC_API_KEY") or None,
            groq_api_key=os.environ.get("GROQ_API_KEY") or None,
            tmdb_api_key=os.environ.get("TMDB_API_KEY") or None,
        )
