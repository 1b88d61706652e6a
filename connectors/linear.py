"""
LinearConnector — OAuth2 for the Linear project tracker.
"""

from __future__ import annotations

from typing import Any, Dict

import httpx

from config.settings import Settings
from connectors.base import BaseConnector, Capability, ProviderDescriptor

_LINEAR_AUTH_URL = "https://linear.app/oauth/authorize"
_LINEAR_TOKEN_URL = "https://api.linear.app/oauth/token"
_LINEAR_REVOKE_URL = "https://api.linear.app/oauth/revoke"
_LINEAR_GRAPHQL_URL = "https://api.linear.app/graphql"

_VIEWER_QUERY = "query { viewer { id name } organization { id name } }"


def linear_descriptor(settings: Settings) -> ProviderDescriptor:
    return ProviderDescriptor(
        provider_id="linear",
        display_name="Linear",
        authorize_endpoint=_LINEAR_AUTH_URL,
        token_endpoint=_LINEAR_TOKEN_URL,
        client_id=settings.linear_client_id,
        client_secret=settings.linear_client_secret,
        redirect_uri=settings.callback_url("linear"),
        scopes=("read", "write"),
        scope_separator=",",
        capabilities=frozenset({Capability.SUPPORTS_REFRESH}),
        revocation_endpoint=_LINEAR_REVOKE_URL,
        icon="📐",
    )


class LinearConnector(BaseConnector):
    """OAuth2 connector for Linear."""

    async def fetch_profile(self, client: httpx.AsyncClient, fields: Dict[str, Any]) -> Dict[str, Any]:
        resp = await client.post(
            _LINEAR_GRAPHQL_URL,
            headers={"Authorization": f"Bearer {fields['access_token']}"},
            json={"query": _VIEWER_QUERY},
        )
        resp.raise_for_status()
        data = resp.json().get("data") or {}
        viewer = data.get("viewer") or {}
        organization = data.get("organization") or {}
        return {
            "account_id": organization.get("id"),
            "account_name": organization.get("name"),
            "provider_user_id": viewer.get("id"),
            "provider_user_name": viewer.get("name"),
        }
