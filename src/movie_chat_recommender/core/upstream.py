from __future__ import annotations

from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass
from typing import Any

import httpx

from movie_chat_recommender.core.accumulator import ANTHROPIC_DELTA, OPENAI_DELTA, DeltaSchema
from movie_chat_recommender.core.config import Settings
from movie_chat_recommender.core.conversation import ConversationMessage


class UpstreamError(RuntimeError):
    pass


MOVIE_SYSTEM_PROMPT = """You are a friendly movie expert helping a user discover films they will enjoy.
Have a natural conversation to learn their taste: favourite genres, films they loved,
eras they prefer and how highly rated a film should be. Keep replies short and concrete,
mention film titles in quotes, and when you have a clear picture of their taste,
summarise it and tell them their preferences have been noted."""


def with_movie_info(system_prompt: str, movie_info: str) -> str:
    if not movie_info:
        return system_prompt
    return (
        f"{system_prompt}\n\nCURRENT MOVIE INFORMATION:\n{movie_info}\n\n"
        "Use this information to provide accurate details about the movie in your response."
    )


@dataclass(frozen=True)
class ProviderConfig:
    name: str
    url: str
    delta_schema: DeltaSchema
    # Anthropic takes the system prompt as a top-level field.
    system_as_field: bool
    auth_header: str
    auth_prefix: str = ""
    extra_headers: tuple[tuple[str, str], ...] = ()

    def headers(self, api_key: str) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
            self.auth_header: f"{self.auth_prefix}{api_key}",
        }
        headers.update(dict(self.extra_headers))
        return headers


PROVIDERS: dict[str, ProviderConfig] = {
    "anthropic": ProviderConfig(
        name="anthropic",
        url="https://api.anthropic.com/v1/messages",
        delta_schema=ANTHROPIC_DELTA,
        system_as_field=True,
        auth_header="x-api-key",
        extra_headers=(("anthropic-version", "2023-06-01"),),
    ),
    "groq": ProviderConfig(
        name="groq",
        url="https://api.groq.com/openai/v1/chat/completions",
        delta_schema=OPENAI_DELTA,
        system_as_field=False,
        auth_header="Authorization",
        auth_prefix="Bearer ",
    ),
}


def provider_for(settings: Settings) -> ProviderConfig:
    try:
        return PROVIDERS[settings.provider]
    except KeyError as e:
        raise UpstreamError(f"Unknown provider: {settings.provider}") from e


def build_payload(
    provider: ProviderConfig,
    settings: Settings,
    history: Sequence[ConversationMessage],
    *,
    system_prompt: str = MOVIE_SYSTEM_PROMPT,
) -> dict[str, Any]:
    messages: list[dict[str, str]] = [
        {"role": m.role, "content": m.content} for m in history if m.content
    ]
    payload: dict[str, Any] = {
        "model": settings.model,
        "max_tokens": settings.max_tokens,
        "temperature": settings.temperature,
        "stream": True,
    }
    if provider.system_as_field:
        payload["system"] = system_prompt
        payload["messages"] = messages
    else:
        payload["messages"] = [{"role": "system", "content": system_prompt}, *messages]
    return payload


async def open_upstream_stream(
    settings: Settings,
    history: Sequence[ConversationMessage],
    *,
    client: httpx.AsyncClient | None = None,
    system_prompt: str = MOVIE_SYSTEM_PROMPT,
) -> AsyncIterator[bytes]:
    """Stream the raw response body of a chat completion, chunk by chunk.

    Chunk boundaries are whatever the transport delivers; decoding is the
    caller's job.
    """

    provider = provider_for(settings)
    api_key = settings.provider_api_key
    if not api_key:
        raise UpstreamError(f"No API key configured for provider {provider.name}")

    close_client = False
    if client is None:
        client = httpx.AsyncClient(timeout=settings.timeout_s)
        close_client = True

    try:
        async with client.stream(
            "POST",
            provider.url,
            json=build_payload(provider, settings, history, system_prompt=system_prompt),
            headers=provider.headers(api_key),
        ) as resp:
            if resp.status_code >= 400:
                await resp.aread()
                raise UpstreamError(
                    f"{provider.name} streaming API responded with {resp.status_code}"
                )
            async for chunk in resp.aiter_bytes():
                yield chunk
    except httpx.HTTPError as e:
        raise UpstreamError(f"{provider.name} streaming request failed: {e}") from e
    finally:
        if close_client:
            await client.aclose()
