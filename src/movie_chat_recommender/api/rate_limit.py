from __future__ import annotations

import math
import os
import time
from collections import deque
from dataclasses import dataclass, field
from threading import Lock

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response

ENV_PREFIX = "MOVIE_CHAT_RECOMMENDER_RL_"

# Checked in order when the app sits behind a proxy.
CLIENT_IP_HEADERS = ("x-forwarded-for", "x-real-ip", "cf-connecting-ip")


@dataclass(frozen=True)
class RateDecision:
    allowed: bool
    limit: int
    remaining: int
    retry_after_s: int = 0


@dataclass
class _Window:
    hits: deque[float] = field(default_factory=deque)


class SlidingWindowRateLimiter:
    """In-process sliding-window rate limiter.

    Protects the paid text-generation upstream from accidental abuse; it is
    not meant to be exact across processes. Keys are client address plus a
    logical bucket name.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._windows: dict[str, _Window] = {}

    def check(self, *, key: str, limit: int, window_s: float) -> RateDecision:
        now = time.time()
        cutoff = now - window_s
        with self._lock:
            w = self._windows.setdefault(key, _Window())
            while w.hits and w.hits[0] < cutoff:
                w.hits.popleft()

            if len(w.hits) >= limit:
                retry_after = max(1, math.ceil(w.hits[0] + window_s - now))
                return RateDecision(False, limit, 0, retry_after)

            w.hits.append(now)
            return RateDecision(True, limit, max(0, limit - len(w.hits)))


def client_key(request: Request) -> str:
    for header in CLIENT_IP_HEADERS:
        raw = request.headers.get(header, "")
        ip = raw.split(",")[0].strip()
        if ip:
            return ip
    return request.client.host if request.client else "unknown"


def _bucket_from_env(name: str, limit: str, window_s: str) -> tuple[int, float]:
    return (
        int(os.environ.get(f"{ENV_PREFIX}{name}", limit)),
        float(os.environ.get(f"{ENV_PREFIX}{name}_WINDOW_S", window_s)),
    )


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, *, limiter: SlidingWindowRateLimiter | None = None) -> None:
        super().__init__(app)
        self._limiter = limiter or SlidingWindowRateLimiter()

        # Tunable via env vars (useful for tests/deploy).
        self._global = _bucket_from_env("GLOBAL", "60", "60")
        self._chat = _bucket_from_env("CHAT", "20", "60")

    @staticmethod
    def _rejected(decision: RateDecision) -> Response:
        return JSONResponse(
            status_code=429,
            content={"detail": "Rate limit exceeded", "retry_after": decision.retry_after_s},
            headers={
                "Retry-After": str(decision.retry_after_s),
                "X-RateLimit-Limit": str(decision.limit),
                "X-RateLimit-Remaining": "0",
            },
        )

    async def dispatch(self, request: Request, call_next) -> Response:
        ip = client_key(request)

        limit, window_s = self._global
        decision = self._limiter.check(key=f"{ip}:global", limit=limit, window_s=window_s)
        if not decision.allowed:
            return self._rejected(decision)

        if request.method == "POST" and request.url.path == "/api/chat":
            limit, window_s = self._chat
            decision = self._limiter.check(key=f"{ip}:chat", limit=limit, window_s=window_s)
            if not decision.allowed:
                return self._rejected(decision)

        response = await call_next(request)
        response.headers["X-RateLimit-Remaining"] = str(decision.remaining)
        return response
