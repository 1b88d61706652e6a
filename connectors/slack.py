"""
SlackConnector — OAuth2 v2 for Slack workspaces.

Slack answers token requests with HTTP 200 even on failure and reports
the outcome in an ``ok`` flag; user tokens arrive under ``authed_user``
and the workspace under ``team``.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

import httpx

from config.settings import Settings
from connectors.base import BaseConnector, Capability, ProviderDescriptor, expires_at_from, split_scopes
from connectors.errors import TokenExchangeError

logger = logging.getLogger(__name__)

_SLACK_AUTH_URL = "https://slack.com/oauth/v2/authorize"
_SLACK_TOKEN_URL = "https://slack.com/api/oauth.v2.access"
_SLACK_USERS_INFO_URL = "https://slack.com/api/users.info"

SLACK_SCOPES = (
    "channels:read",
    "groups:read",
    "im:read",
    "mpim:read",
    "users:read",
    "channels:history",
    "groups:history",
    "im:history",
    "mpim:history",
    "chat:write",
)


def slack_descriptor(settings: Settings) -> ProviderDescriptor:
    return ProviderDescriptor(
        provider_id="slack",
        display_name="Slack",
        authorize_endpoint=_SLACK_AUTH_URL,
        token_endpoint=_SLACK_TOKEN_URL,
        client_id=settings.slack_client_id,
        client_secret=settings.slack_client_secret,
        redirect_uri=settings.callback_url("slack"),
        scopes=SLACK_SCOPES,
        scope_separator=",",
        capabilities=frozenset({Capability.USES_STATE, Capability.SUPPORTS_REFRESH}),
        # user_scope makes Slack issue the authed_user token preferred below
        extra_authorize_params=(("user_scope", ",".join(SLACK_SCOPES)),),
        icon="💬",
    )


class SlackConnector(BaseConnector):
    """OAuth2 connector for Slack."""

    def parse_token_response(self, data: Dict[str, Any]) -> Dict[str, Any]:
        if data.get("ok") is False:
            raise TokenExchangeError(
                f"Slack OAuth error: {data.get('error', 'unknown_error')}",
                provider="slack",
                status_code=200,
                body=str(data),
            )

        authed_user = data.get("authed_user") or {}
        team = data.get("team") or {}

        # Prefer the user token: actions run as the person who connected.
        return {
            "access_token": authed_user.get("access_token") or data.get("access_token"),
            "refresh_token": authed_user.get("refresh_token") or data.get("refresh_token"),
            "expires_at": expires_at_from(authed_user.get("expires_in") or data.get("expires_in")),
            "account_id": team.get("id") or data.get("team_id"),
            "account_name": team.get("name") or data.get("team_name"),
            "provider_user_id": authed_user.get("id"),
            "scopes": split_scopes(authed_user.get("scope") or data.get("scope")),
        }

    async def fetch_profile(self, client: httpx.AsyncClient, fields: Dict[str, Any]) -> Dict[str, Any]:
        slack_user_id = fields.get("provider_user_id")
        if not slack_user_id:
            return {}

        resp = await client.post(
            _SLACK_USERS_INFO_URL,
            headers={"Authorization": f"Bearer {fields['access_token']}"},
            data={"user": slack_user_id},
        )
        resp.raise_for_status()
        info = resp.json()
        if not info.get("ok"):
            logger.warning("Slack users.info failed: %s", info.get("error"))
            return {}

        user = info.get("user") or {}
        profile = user.get("profile") or {}
        return {
            "provider_user_name": user.get("real_name") or profile.get("display_name") or user.get("name"),
        }
