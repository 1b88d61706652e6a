"""
Multi-provider OAuth connectors — application entry point.
"""

from __future__ import annotations

import logging
import sys
from datetime import timedelta
from typing import Optional

import httpx
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from auth.session import SessionCorrelator
from config.settings import Settings, config
from connectors.models import utcnow
from connectors.registry import build_registry
from connectors.routes import oauth_router, router as connectors_router
from connectors.store import TokenStore, build_token_store

logging.basicConfig(
    level=logging.DEBUG if config.debug else logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(name)s — %(message)s",
    stream=sys.stdout,
)
for _noisy in ("httpcore", "httpx", "urllib3"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    *,
    token_store: Optional[TokenStore] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """
    Build the app.  Provider descriptors, the token store and the session
    correlator are created here, once, and shared by every request.
    """
    settings = settings or config

    app = FastAPI(
        title="OAuth Connectors",
        version="1.0.0",
        description="Multi-provider OAuth2 connect / callback / logout and token access.",
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.registry = build_registry(settings, transport=transport)
    app.state.token_store = token_store or build_token_store(settings)
    app.state.session_correlator = SessionCorrelator(
        settings.session_secret,
        cookie_name=settings.session_cookie_name,
        max_age=settings.session_cookie_max_age,
        secure=settings.cookie_secure,
    )

    # Routes
    app.include_router(oauth_router)
    app.include_router(connectors_router, prefix="/api/v1/connectors")

    @app.on_event("startup")
    async def on_startup():
        store: TokenStore = app.state.token_store
        await store.initialize()

        # Clean up pending authorizations abandoned by a previous run
        cutoff = utcnow() - timedelta(seconds=settings.oauth_state_ttl_seconds)
        purged = await store.purge_pending(cutoff)
        if purged:
            logger.info("Purged %d stale pending authorizations", purged)

        logger.info("Providers: %s", ", ".join(app.state.registry.list_configured()) or "none")
        logger.info("Application ready to accept requests.")

    @app.on_event("shutdown")
    async def on_shutdown():
        await app.state.token_store.close()

    return app


if __name__ == "__main__":
    uvicorn.run(
        "main:create_app",
        factory=True,
        host=config.host,
        port=config.port,
        reload=config.debug,
        log_level="debug" if config.debug else "info",
    )
