"""
Authorization-code flow — the authorize step and the callback exchange.

Both functions are transport-free: the routes layer turns their results
into redirects and cookies.
"""

from __future__ import annotations

import logging
import secrets
from datetime import timedelta
from typing import Optional

from auth.session import SessionCorrelator
from connectors.base import BaseConnector, Capability
from connectors.errors import (
    AuthorizationDeniedError,
    InvalidStateError,
    MissingCodeError,
    UnauthenticatedError,
)
from connectors.models import AuthorizationRedirect, PendingAuthorization, TokenRecord, utcnow
from connectors.registry import ConnectorRegistry
from connectors.store import TokenStore

logger = logging.getLogger(__name__)

DEFAULT_STATE_TTL_SECONDS = 600


async def begin_authorization(
    registry: ConnectorRegistry,
    store: TokenStore,
    provider: str,
    user_id_hint: Optional[str] = None,
    *,
    state_ttl_seconds: int = DEFAULT_STATE_TTL_SECONDS,
) -> AuthorizationRedirect:
    """
    Build the provider's authorize URL for ``user_id_hint``.

    A fresh identity is minted when no hint is given: connecting a
    provider is the usual first contact for a new user.  Providers with
    the ``uses_state`` capability get a single-use CSRF state recorded
    as a pending authorization.
    """
    connector = registry.require(provider)
    user_id = user_id_hint or SessionCorrelator.new_identity()

    state = None
    if connector.descriptor.has(Capability.USES_STATE):
        purged = await store.purge_pending(utcnow() - timedelta(seconds=state_ttl_seconds))
        if purged:
            logger.debug("Purged %d stale pending authorizations", purged)
        state = secrets.token_urlsafe(32)
        await store.put_pending(
            PendingAuthorization(state=state, user_id=user_id, provider_id=provider)
        )

    logger.info("Initiating %s OAuth for user %s", provider, user_id)
    return AuthorizationRedirect(url=connector.get_auth_url(state), user_id=user_id, state=state)


async def complete_authorization(
    registry: ConnectorRegistry,
    store: TokenStore,
    provider: str,
    code: Optional[str],
    *,
    state: Optional[str] = None,
    cookie_user_id: Optional[str] = None,
    error: Optional[str] = None,
    state_ttl_seconds: int = DEFAULT_STATE_TTL_SECONDS,
) -> TokenRecord:
    """
    Exchange ``code`` for tokens and persist them for the recovered user.

    Single attempt: authorization codes are single-use, so a failed
    exchange is reported and the user has to start over.  Nothing is
    written unless the exchange produced a complete record.
    """
    connector = registry.require(provider)

    if error:
        raise AuthorizationDeniedError(f"{provider} authorization denied: {error}", provider=provider)
    if not code:
        raise MissingCodeError("Authorization code missing from callback", provider=provider)

    user_id = await _recover_identity(connector, store, state, cookie_user_id, state_ttl_seconds)

    logger.info("Processing %s OAuth callback for user %s", provider, user_id)
    fields = await connector.handle_callback(code)
    record = TokenRecord(user_id=user_id, provider_id=provider, **fields)
    await store.put(record)

    logger.info(
        "OAuth connected: user=%s provider=%s account=%s",
        user_id,
        provider,
        record.account_name or record.account_id,
    )
    return record


async def _recover_identity(
    connector: BaseConnector,
    store: TokenStore,
    state: Optional[str],
    cookie_user_id: Optional[str],
    state_ttl_seconds: int,
) -> str:
    provider = connector.provider_name
    if not connector.descriptor.has(Capability.USES_STATE):
        if not cookie_user_id:
            raise UnauthenticatedError("No identity cookie on callback", provider=provider)
        return cookie_user_id

    if not state:
        raise InvalidStateError("Callback is missing the state parameter", provider=provider)
    pending = await store.pop_pending(state)
    if pending is None:
        raise InvalidStateError("Unknown or already used OAuth state", provider=provider)
    if pending.provider_id != provider:
        raise InvalidStateError(
            f"OAuth state was issued for {pending.provider_id}, not {provider}", provider=provider
        )
    if pending.is_expired(state_ttl_seconds):
        raise InvalidStateError("OAuth state expired", provider=provider)
    if cookie_user_id and cookie_user_id != pending.user_id:
        raise InvalidStateError("OAuth state belongs to a different user", provider=provider)
    return pending.user_id
