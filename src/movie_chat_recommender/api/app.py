from __future__ import annotations

import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from movie_chat_recommender.api.rate_limit import RateLimitMiddleware
from movie_chat_recommender.api.routes import router
from movie_chat_recommender.api.session import create_session_store
from movie_chat_recommender.core.config import Settings
from movie_chat_recommender.core.logging_utils import configure_logging

logger = logging.getLogger(__name__)


def _parse_csv_env(name: str) -> list[str]:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return []

    # Support both comma-separated values and newline-separated values (common in PaaS).
    parts = [p.strip() for p in raw.replace("\n", ",").split(",")]
    return [p for p in parts if p]


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    app = FastAPI(title="Movie Chat Recommender", version="0.1.0")

    # Attach shared components.
    app.state.settings = settings
    app.state.session_store = create_session_store()

    # CORS is opt-in, e.g.
    #   MOVIE_CHAT_RECOMMENDER_CORS_ORIGINS=https://your.site,https://admin.your.site
    cors_origins = _parse_csv_env("MOVIE_CHAT_RECOMMENDER_CORS_ORIGINS")
    if cors_origins:
        # Allow '*' for quick demos; do not allow credentials with wildcard.
        allow_all = "*" in cors_origins
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"] if allow_all else cors_origins,
            allow_credentials=False,
            allow_methods=["*"] if allow_all else ["GET", "POST", "OPTIONS"],
            allow_headers=["*"],
        )

    app.add_middleware(RateLimitMiddleware)

    # Ensure unexpected errors don't leak internals.
    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(_request, exc: Exception):
        logger.error("Unhandled error: %s", exc, exc_info=exc)
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    app.include_router(router)
    logger.info("Movie chat app ready (provider=%s, model=%s)", settings.provider, settings.model)
    return app


app = create_app()
