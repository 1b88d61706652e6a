"""
Connector routes — OAuth authorize/callback/logout plus a small JSON API.

Browser entries (no prefix):
  GET /authenticate-{provider}            → 302 to the provider's consent page
  GET /authenticate-{provider}/callback   → 302 to the landing page
  GET /authenticate-{provider}/logout     → 302 to the landing page

Browser entries never raise to the transport: every failure is logged and
turned into a landing-page redirect carrying a ``success=`` / ``info=`` /
``error=`` indicator.

JSON API (prefix /api/v1/connectors):
  GET /providers, GET /connections, GET /{provider}/status
"""

from __future__ import annotations

import asyncio
import functools
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import RedirectResponse

from auth.dependencies import (
    get_current_user_id,
    get_registry,
    get_session_correlator,
    get_settings,
    get_token_store,
)
from auth.session import SessionCorrelator
from config.settings import Settings
from connectors.errors import ConnectorError, StoreUnavailableError, UnknownProviderError
from connectors.flow import begin_authorization, complete_authorization
from connectors.models import RevocationResult
from connectors.registry import ConnectorRegistry
from connectors.store import TokenStore
from connectors.token_manager import get_connection_status, list_connections, revoke_connection

logger = logging.getLogger(__name__)

oauth_router = APIRouter(tags=["oauth"])
router = APIRouter(tags=["connectors"])


def _landing(settings: Settings, **query: str) -> RedirectResponse:
    return RedirectResponse(
        settings.landing_url(urlencode(query)),
        status_code=status.HTTP_302_FOUND,
    )


def _log_detached_exchange(provider: str, exchange: "asyncio.Future[Any]") -> None:
    """Report how a callback exchange ended after its client went away."""
    if exchange.cancelled():
        logger.error("Detached %s OAuth exchange was cancelled", provider)
        return
    exc = exchange.exception()
    if exc is not None:
        logger.error("Detached %s OAuth exchange failed: %s", provider, exc)
    else:
        record = exchange.result()
        logger.info("Detached %s OAuth exchange stored tokens for user %s", provider, record.user_id)


# ── Browser entries ────────────────────────────────────────────────────


@oauth_router.get("/authenticate-{provider}")
async def authorize(
    provider: str,
    request: Request,
    user_id: Optional[str] = Query(None, alias="userId"),
    settings: Settings = Depends(get_settings),
    registry: ConnectorRegistry = Depends(get_registry),
    store: TokenStore = Depends(get_token_store),
    correlator: SessionCorrelator = Depends(get_session_correlator),
) -> RedirectResponse:
    """Start the OAuth flow; remembers the user in the identity cookie."""
    hint = user_id or correlator.resolve_identity(request.cookies)
    try:
        target = await begin_authorization(
            registry,
            store,
            provider,
            hint,
            state_ttl_seconds=settings.oauth_state_ttl_seconds,
        )
    except ConnectorError as exc:
        logger.error("OAuth initiation failed for %s: %s", provider, exc)
        return _landing(settings, error=exc.indicator)
    except Exception:
        logger.exception("Unexpected OAuth initiation failure for %s", provider)
        return _landing(settings, error="auth_failed")

    response = RedirectResponse(target.url, status_code=status.HTTP_302_FOUND)
    correlator.bind_identity(response, target.user_id)
    return response


@oauth_router.get("/authenticate-{provider}/callback")
async def oauth_callback(
    provider: str,
    request: Request,
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    settings: Settings = Depends(get_settings),
    registry: ConnectorRegistry = Depends(get_registry),
    store: TokenStore = Depends(get_token_store),
    correlator: SessionCorrelator = Depends(get_session_correlator),
) -> RedirectResponse:
    """
    OAuth callback — the provider redirects here after consent.

    The exchange is shielded from client disconnects so a code the
    provider has already issued is still redeemed and persisted.
    """
    cookie_user_id = correlator.resolve_identity(request.cookies)
    exchange = asyncio.ensure_future(
        complete_authorization(
            registry,
            store,
            provider,
            code,
            state=state,
            cookie_user_id=cookie_user_id,
            error=error,
            state_ttl_seconds=settings.oauth_state_ttl_seconds,
        )
    )
    try:
        record = await asyncio.shield(exchange)
    except asyncio.CancelledError:
        logger.warning("Client left during %s OAuth callback; finishing the exchange", provider)
        exchange.add_done_callback(functools.partial(_log_detached_exchange, provider))
        raise
    except StoreUnavailableError as exc:
        logger.error("OAuth callback could not persist %s tokens: %s", provider, exc)
        return _landing(settings, error="auth_failed")
    except ConnectorError as exc:
        logger.error("OAuth callback failed for %s: %s", provider, exc)
        return _landing(settings, error=exc.indicator)
    except Exception:
        logger.exception("Unexpected OAuth callback failure for %s", provider)
        return _landing(settings, error="auth_failed")

    response = _landing(settings, success=f"{provider}_connected")
    correlator.bind_identity(response, record.user_id)
    return response


@oauth_router.get("/authenticate-{provider}/logout")
async def logout(
    provider: str,
    request: Request,
    user_id: Optional[str] = Query(None, alias="userId"),
    settings: Settings = Depends(get_settings),
    registry: ConnectorRegistry = Depends(get_registry),
    store: TokenStore = Depends(get_token_store),
    correlator: SessionCorrelator = Depends(get_session_correlator),
) -> RedirectResponse:
    """Clear the user's stored tokens for ``provider`` and expire the cookie."""
    user_id = user_id or correlator.resolve_identity(request.cookies)
    if not user_id:
        logger.info("Logout from %s without an identity", provider)
        return _landing(settings, info="not_authenticated")

    logger.info("Processing %s logout for user %s", provider, user_id)
    try:
        result = await revoke_connection(registry, store, user_id, provider)
    except ConnectorError as exc:
        # Cookie is left alone: the store did not record the logout.
        logger.error("Logout failed for %s/%s: %s", provider, user_id, exc)
        return _landing(settings, error="logout_failed")
    except Exception:
        logger.exception("Unexpected logout failure for %s/%s", provider, user_id)
        return _landing(settings, error="logout_failed")

    if result is RevocationResult.ALREADY_LOGGED_OUT:
        return _landing(settings, info="not_authenticated")

    response = _landing(settings, success=f"{provider}_disconnected")
    correlator.clear_identity(response)
    return response


# ── JSON API ───────────────────────────────────────────────────────────


@router.get("/providers")
async def list_providers(
    registry: ConnectorRegistry = Depends(get_registry),
) -> List[Dict[str, str]]:
    """
    List all configured connector providers.
    No auth required — used by the frontend to show available connectors.
    """
    return registry.list_providers()


@router.get("/connections")
async def get_connections(
    user_id: str = Depends(get_current_user_id),
    store: TokenStore = Depends(get_token_store),
) -> List[Dict[str, Any]]:
    """List all OAuth connections for the cookie's user."""
    try:
        return await list_connections(store, user_id)
    except StoreUnavailableError as exc:
        raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, str(exc))


@router.get("/{provider}/status")
async def connection_status(
    provider: str,
    user_id: str = Depends(get_current_user_id),
    settings: Settings = Depends(get_settings),
    registry: ConnectorRegistry = Depends(get_registry),
    store: TokenStore = Depends(get_token_store),
) -> Dict[str, Any]:
    """Report whether the cookie's user is connected to ``provider``."""
    try:
        return await get_connection_status(
            registry, store, user_id, provider, leeway_seconds=settings.token_expiry_leeway_seconds
        )
    except UnknownProviderError as exc:
        raise HTTPException(status.HTTP_404_NOT_FOUND, str(exc))
    except StoreUnavailableError as exc:
        raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, str(exc))
