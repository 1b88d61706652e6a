"""
BaseConnector — the generic OAuth2 authorization-code client.

One connector class drives every provider; what differs between
providers lives in an immutable ``ProviderDescriptor`` (endpoints,
credentials, scopes, capabilities).  Subclasses only override how a
token response is read (``parse_token_response``) and, optionally,
how the connected account is described (``fetch_profile``).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional, Tuple
from urllib.parse import urlencode

import httpx
from pydantic import ValidationError

from connectors.errors import TokenExchangeError
from connectors.models import TokenRecord

logger = logging.getLogger(__name__)


class Capability(str, Enum):
    SUPPORTS_REFRESH = "supports_refresh"
    REQUIRES_EXPLICIT_REVOCATION = "requires_explicit_revocation"
    USES_STATE = "uses_state"


@dataclass(frozen=True)
class ProviderDescriptor:
    """Static, process-wide configuration of one OAuth2 provider."""

    provider_id: str
    display_name: str
    authorize_endpoint: str
    token_endpoint: str
    client_id: str
    client_secret: str
    redirect_uri: str
    scopes: Tuple[str, ...] = ()
    scope_separator: str = " "
    capabilities: FrozenSet[Capability] = frozenset()
    revocation_endpoint: Optional[str] = None
    extra_authorize_params: Tuple[Tuple[str, str], ...] = field(default=())
    icon: str = "🔗"

    def has(self, capability: Capability) -> bool:
        return capability in self.capabilities

    @property
    def scope_string(self) -> str:
        return self.scope_separator.join(self.scopes)


class BaseConnector:
    """OAuth2 client for a single provider."""

    def __init__(
        self,
        descriptor: ProviderDescriptor,
        *,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.descriptor = descriptor
        self._timeout = timeout
        self._transport = transport

    # ── Identity ────────────────────────────────────────────────────────

    @property
    def provider_name(self) -> str:
        return self.descriptor.provider_id

    @property
    def display_name(self) -> str:
        return self.descriptor.display_name

    @property
    def icon(self) -> str:
        return self.descriptor.icon

    def is_configured(self) -> bool:
        return bool(self.descriptor.client_id and self.descriptor.client_secret)

    # ── OAuth flow ──────────────────────────────────────────────────────

    def get_auth_url(self, state: Optional[str] = None) -> str:
        """Build the provider's authorize URL (no network I/O)."""
        d = self.descriptor
        params: Dict[str, str] = {
            "client_id": d.client_id,
            "redirect_uri": d.redirect_uri,
            "response_type": "code",
            "scope": d.scope_string,
        }
        params.update(dict(d.extra_authorize_params))
        if state is not None:
            params["state"] = state
        return f"{d.authorize_endpoint}?{urlencode(params)}"

    async def handle_callback(self, code: str) -> Dict[str, Any]:
        """
        Exchange the authorization code for tokens.

        Returns
        -------
        dict of ``TokenRecord`` fields (everything but user/provider ids).

        Raises
        ------
        TokenExchangeError
            Non-2xx status, timeout, non-JSON body, or a body without
            ``access_token``.
        """
        d = self.descriptor
        async with self._client() as client:
            data, resp = await self._post_token(
                client,
                {
                    "client_id": d.client_id,
                    "client_secret": d.client_secret,
                    "code": code,
                    "redirect_uri": d.redirect_uri,
                    "grant_type": "authorization_code",
                },
            )
            fields = self._validated(data, resp)
            try:
                profile = await self.fetch_profile(client, fields)
            except (httpx.HTTPError, ValueError, KeyError, TypeError, AttributeError) as exc:
                # Display names are not critical to the connection.
                logger.warning("%s profile lookup failed: %s", d.provider_id, exc)
                profile = {}

        for key, value in profile.items():
            if isinstance(value, str) and value and fields.get(key) is None:
                fields[key] = value
        return fields

    async def refresh_access_token(self, refresh_token: str) -> Dict[str, Any]:
        """Exchange a refresh token for a fresh access token."""
        d = self.descriptor
        async with self._client() as client:
            data, resp = await self._post_token(
                client,
                {
                    "client_id": d.client_id,
                    "client_secret": d.client_secret,
                    "refresh_token": refresh_token,
                    "grant_type": "refresh_token",
                },
            )
        return self._validated(data, resp)

    async def revoke_token(self, access_token: str) -> bool:
        """
        Revoke the token at the provider.
        Returns True on success, False if unsupported or rejected.
        """
        d = self.descriptor
        if not d.revocation_endpoint:
            return False
        async with self._client() as client:
            resp = await client.post(
                d.revocation_endpoint,
                data={
                    "token": access_token,
                    "client_id": d.client_id,
                    "client_secret": d.client_secret,
                },
            )
        return resp.is_success

    # ── Provider hooks ──────────────────────────────────────────────────

    def parse_token_response(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Map a token-endpoint JSON body onto ``TokenRecord`` fields."""
        return {
            "access_token": data.get("access_token"),
            "refresh_token": data.get("refresh_token"),
            "expires_at": expires_at_from(data.get("expires_in")),
            "scopes": split_scopes(data.get("scope")),
        }

    async def fetch_profile(self, client: httpx.AsyncClient, fields: Dict[str, Any]) -> Dict[str, Any]:
        """Optional lookup of account / user names after a successful exchange."""
        return {}

    # ── Helpers ─────────────────────────────────────────────────────────

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    async def _post_token(self, client: httpx.AsyncClient, form: Dict[str, str]) -> Tuple[Dict[str, Any], httpx.Response]:
        provider = self.descriptor.provider_id
        try:
            resp = await client.post(
                self.descriptor.token_endpoint,
                data=form,
                headers={"Accept": "application/json"},
            )
        except httpx.TimeoutException as exc:
            raise TokenExchangeError(f"{provider} token endpoint timed out", provider=provider) from exc
        except httpx.HTTPError as exc:
            raise TokenExchangeError(f"{provider} token request failed: {exc}", provider=provider) from exc

        if not resp.is_success:
            raise TokenExchangeError(
                f"{provider} token endpoint returned an error",
                provider=provider,
                status_code=resp.status_code,
                body=resp.text,
            )
        try:
            data = resp.json()
        except ValueError as exc:
            raise TokenExchangeError(
                f"{provider} token endpoint returned non-JSON body",
                provider=provider,
                status_code=resp.status_code,
                body=resp.text,
            ) from exc
        if not isinstance(data, dict):
            raise TokenExchangeError(
                f"{provider} token response is not an object",
                provider=provider,
                status_code=resp.status_code,
                body=resp.text,
            )
        if data.get("error"):
            raise TokenExchangeError(
                f"{provider} OAuth error: {data.get('error_description') or data['error']}",
                provider=provider,
                status_code=resp.status_code,
                body=resp.text,
            )
        return data, resp

    def _validated(self, data: Dict[str, Any], resp: httpx.Response) -> Dict[str, Any]:
        """Parse a token body and check it against the ``TokenRecord`` schema."""
        provider = self.descriptor.provider_id
        try:
            fields = self.parse_token_response(data)
            token = fields.get("access_token")
            if not isinstance(token, str) or not token:
                raise TokenExchangeError(
                    f"{provider} token response missing access_token",
                    provider=provider,
                    status_code=resp.status_code,
                    body=resp.text,
                )
            checked = TokenRecord(user_id="", provider_id=provider, **fields)
        except (ValidationError, TypeError, ValueError, AttributeError, OverflowError) as exc:
            raise TokenExchangeError(
                f"{provider} token response malformed: {exc}",
                provider=provider,
                status_code=resp.status_code,
                body=resp.text,
            ) from exc
        return checked.model_dump(include=set(fields))


def expires_at_from(expires_in: Any) -> Optional[datetime]:
    """Absolute expiry from a relative ``expires_in``; ``None`` means non-expiring."""
    if expires_in is None or expires_in == "":
        return None
    seconds = int(expires_in)
    return datetime.now(timezone.utc) + timedelta(seconds=seconds)


def split_scopes(scope: Any) -> list:
    """Providers disagree on comma vs space separated scope strings."""
    if not scope:
        return []
    if isinstance(scope, (list, tuple)):
        return [str(s) for s in scope]
    if not isinstance(scope, str):
        raise TypeError(f"scope must be a string, got {type(scope).__name__}")
    return scope.replace(",", " ").split()
