"""
GitHubConnector — OAuth2 for GitHub API access.

Classic OAuth app tokens never expire; GitHub Apps with "Expire user
authorization tokens" enabled return ``expires_in`` and a refresh token,
which the generic refresh path handles.
"""

from __future__ import annotations

from typing import Any, Dict

import httpx

from config.settings import Settings
from connectors.base import BaseConnector, Capability, ProviderDescriptor

# GitHub OAuth2 endpoints
_GH_AUTH_URL = "https://github.com/login/oauth/authorize"
_GH_TOKEN_URL = "https://github.com/login/oauth/access_token"
_GH_API = "https://api.github.com"


def github_descriptor(settings: Settings) -> ProviderDescriptor:
    capabilities = {Capability.USES_STATE, Capability.SUPPORTS_REFRESH}
    if settings.github_revoke_on_logout:
        capabilities.add(Capability.REQUIRES_EXPLICIT_REVOCATION)
    return ProviderDescriptor(
        provider_id="github",
        display_name="GitHub",
        authorize_endpoint=_GH_AUTH_URL,
        token_endpoint=_GH_TOKEN_URL,
        client_id=settings.github_client_id,
        client_secret=settings.github_client_secret,
        redirect_uri=settings.callback_url("github"),
        scopes=("repo", "read:user", "user:email"),
        scope_separator=" ",
        capabilities=frozenset(capabilities),
        revocation_endpoint=f"{_GH_API}/applications/{settings.github_client_id}/token",
        icon="🐙",
    )


class GitHubConnector(BaseConnector):
    """OAuth2 connector for GitHub."""

    async def fetch_profile(self, client: httpx.AsyncClient, fields: Dict[str, Any]) -> Dict[str, Any]:
        user_resp = await client.get(
            f"{_GH_API}/user",
            headers={
                "Authorization": f"Bearer {fields['access_token']}",
                "Accept": "application/vnd.github+json",
            },
        )
        user_resp.raise_for_status()
        user = user_resp.json()
        user_id = str(user["id"]) if user.get("id") is not None else None
        return {
            "account_id": user_id,
            "account_name": user.get("login"),
            "provider_user_id": user_id,
            "provider_user_name": user.get("name") or user.get("login"),
        }

    async def revoke_token(self, access_token: str) -> bool:
        """Revoke the token via GitHub's OAuth application API."""
        d = self.descriptor
        async with self._client() as client:
            resp = await client.request(
                "DELETE",
                d.revocation_endpoint,
                auth=(d.client_id, d.client_secret),
                json={"access_token": access_token},
                headers={"Accept": "application/vnd.github+json"},
            )
        return resp.status_code == 204
