"""
Token manager — read, refresh and revoke per-user OAuth tokens.

``get_active_token`` is the single interface the action dispatcher uses
to get a live token for a user + provider combination.  Every failure
it reports is a ``ConnectorError`` subclass, so callers can tell
"never connected" (``NotConnectedError``) from "temporarily unavailable"
(``StoreUnavailableError``).
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List

import httpx

from connectors.base import Capability
from connectors.errors import (
    ConnectorError,
    ExpiredError,
    NotConnectedError,
    TokenExchangeError,
)
from connectors.models import RevocationResult, TokenRecord, utcnow
from connectors.registry import ConnectorRegistry
from connectors.store import TokenStore

logger = logging.getLogger(__name__)


async def get_active_token(
    registry: ConnectorRegistry,
    store: TokenStore,
    user_id: str,
    provider: str,
    *,
    leeway_seconds: int = 0,
) -> str:
    """
    Get a valid access token for the user + provider.

    1. Look up the record in the store.
    2. If the token has expired, refresh it once (when the provider
       supports refresh and a refresh token was issued).
    3. Return the access_token string.

    Raises
    ------
    NotConnectedError
        No record, or the record was revoked.
    ExpiredError
        Token expired and could not be refreshed.
    StoreUnavailableError
        The token store could not be read or written.
    """
    try:
        record = await store.get(user_id, provider)
        if record is None or not record.is_connected:
            raise NotConnectedError(f"User {user_id} has not connected {provider}", provider=provider)

        if not record.is_expired(leeway_seconds=leeway_seconds):
            return record.access_token

        return await _refresh(registry, store, record)
    except ConnectorError:
        raise
    except Exception as exc:
        logger.exception("get_active_token error for %s/%s", provider, user_id)
        raise ConnectorError(f"Unexpected token lookup failure: {exc}", provider=provider) from exc


async def _refresh(registry: ConnectorRegistry, store: TokenStore, record: TokenRecord) -> str:
    provider = record.provider_id
    connector = registry.get(provider)
    if (
        connector is None
        or not record.refresh_token
        or not connector.descriptor.has(Capability.SUPPORTS_REFRESH)
    ):
        raise ExpiredError(f"{provider} token expired and cannot be refreshed", provider=provider)

    try:
        refreshed = await connector.refresh_access_token(record.refresh_token)
    except TokenExchangeError as exc:
        logger.warning("Token refresh failed for %s/%s: %s", provider, record.user_id, exc)
        raise ExpiredError(f"{provider} token refresh failed", provider=provider) from exc

    # Some providers rotate refresh tokens
    updated = record.model_copy(
        update={
            "access_token": refreshed["access_token"],
            "refresh_token": refreshed.get("refresh_token") or record.refresh_token,
            "expires_at": refreshed.get("expires_at"),
            "scopes": refreshed.get("scopes") or record.scopes,
            "updated_at": utcnow(),
        }
    )
    if not await store.replace_if_current(updated, expected_access_token=record.access_token):
        # A logout or re-authorization landed while the refresh was in flight.
        current = await store.get(record.user_id, provider)
        if current is None or not current.is_connected:
            logger.info("Discarding %s refresh for user %s: disconnected meanwhile", provider, record.user_id)
            raise NotConnectedError(f"User {record.user_id} has not connected {provider}", provider=provider)
        if current.is_expired():
            raise ExpiredError(f"{provider} token was replaced while refreshing", provider=provider)
        return current.access_token

    logger.info("Refreshed %s token for user %s", provider, record.user_id)
    return updated.access_token


async def revoke_connection(
    registry: ConnectorRegistry,
    store: TokenStore,
    user_id: str,
    provider: str,
) -> RevocationResult:
    """
    Clear the stored credentials for ``user_id`` on ``provider``.

    Idempotent: a missing or already-cleared record reports
    ``ALREADY_LOGGED_OUT`` without writing.  Store failures propagate as
    ``StoreUnavailableError`` so the caller never reports a logout that
    did not persist.
    """
    connector = registry.require(provider)
    record = await store.get(user_id, provider)
    if record is None or not record.is_connected:
        logger.info("User %s not connected to %s; nothing to revoke", user_id, provider)
        return RevocationResult.ALREADY_LOGGED_OUT

    if connector.descriptor.has(Capability.REQUIRES_EXPLICIT_REVOCATION):
        try:
            revoked = await connector.revoke_token(record.access_token)
        except httpx.HTTPError as exc:
            logger.warning("%s token revocation request failed: %s", provider, exc)
            revoked = False
        if not revoked:
            logger.warning("%s did not confirm token revocation for user %s", provider, user_id)

    await store.put(record.cleared())
    logger.info("Disconnected %s for user %s", provider, user_id)
    return RevocationResult.REVOKED


async def list_connections(store: TokenStore, user_id: str) -> List[Dict[str, Any]]:
    """Return all connections for a user (no tokens exposed)."""
    records = await store.list_for_user(user_id)
    return [r.summary() for r in records if r.is_connected]


async def get_connection_status(
    registry: ConnectorRegistry,
    store: TokenStore,
    user_id: str,
    provider: str,
    *,
    leeway_seconds: int = 0,
) -> Dict[str, Any]:
    """Whether ``user_id`` currently holds credentials for ``provider``."""
    registry.require(provider)
    record = await store.get(user_id, provider)
    if record is None or not record.is_connected:
        return {"provider": provider, "connected": False, "expired": False}
    status = record.summary()
    status["expired"] = record.is_expired(leeway_seconds=leeway_seconds)
    return status
