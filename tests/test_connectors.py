"""
Tests for provider descriptors, the registry and token-response parsing.
"""

from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from connectors.base import Capability
from connectors.errors import TokenExchangeError, UnknownProviderError
from connectors.registry import build_registry
from tests.conftest import GITHUB_TOKEN_URL, LINEAR_TOKEN_URL, SLACK_TOKEN_URL, make_settings


def _query(url: str) -> dict:
    return {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}


class TestRegistry:
    def test_unconfigured_providers_are_skipped(self):
        registry = build_registry(make_settings(linear_client_id="", github_client_secret=""))
        assert registry.list_configured() == ["slack"]
        assert registry.get("linear") is None

    def test_require_unknown_provider(self, registry):
        with pytest.raises(UnknownProviderError):
            registry.require("jira")

    def test_list_providers(self, registry):
        providers = {p["provider"]: p for p in registry.list_providers()}
        assert set(providers) == {"slack", "linear", "github"}
        assert providers["slack"]["connect_path"] == "/authenticate-slack"

    def test_capabilities(self, registry):
        assert registry.require("slack").descriptor.has(Capability.USES_STATE)
        assert not registry.require("linear").descriptor.has(Capability.USES_STATE)
        assert not registry.require("github").descriptor.has(Capability.REQUIRES_EXPLICIT_REVOCATION)

    def test_github_revocation_is_opt_in(self):
        registry = build_registry(make_settings(github_revoke_on_logout=True))
        assert registry.require("github").descriptor.has(Capability.REQUIRES_EXPLICIT_REVOCATION)

    def test_descriptors_are_immutable(self, registry):
        with pytest.raises(AttributeError):
            registry.require("slack").descriptor.client_id = "other"


class TestAuthUrl:
    def test_slack_url(self, registry):
        url = registry.require("slack").get_auth_url("st")
        q = _query(url)
        assert url.startswith("https://slack.com/oauth/v2/authorize?")
        assert q["client_id"] == "slack-id"
        assert q["response_type"] == "code"
        assert q["redirect_uri"] == "http://localhost:6100/authenticate-slack/callback"
        assert q["scope"].split(",")[0] == "channels:read"
        assert q["state"] == "st"

    def test_slack_requests_user_token_scopes(self, registry):
        q = _query(registry.require("slack").get_auth_url("st"))
        assert q["user_scope"] == q["scope"]
        assert "chat:write" in q["user_scope"].split(",")

    def test_linear_url_without_state(self, registry):
        q = _query(registry.require("linear").get_auth_url())
        assert q["scope"] == "read,write"
        assert "state" not in q

    def test_github_scopes_space_separated(self, registry):
        q = _query(registry.require("github").get_auth_url("st"))
        assert q["scope"] == "repo read:user user:email"

    def test_redirect_uri_follows_base_url(self):
        registry = build_registry(make_settings(base_url="https://connect.example.com/"))
        q = _query(registry.require("linear").get_auth_url())
        assert q["redirect_uri"] == "https://connect.example.com/authenticate-linear/callback"


class TestTokenExchange:
    @pytest.mark.asyncio
    async def test_slack_user_token_and_team(self, registry, provider_stub):
        provider_stub.add(
            SLACK_TOKEN_URL,
            json={
                "ok": True,
                "access_token": "xoxb-bot",
                "team": {"id": "T1", "name": "Acme"},
                "authed_user": {"id": "U9", "access_token": "xoxp-user", "scope": "chat:write,users:read"},
            },
        )
        provider_stub.add(
            "https://slack.com/api/users.info",
            json={"ok": True, "user": {"real_name": "Ada Lovelace"}},
        )

        fields = await registry.require("slack").handle_callback("abc123")

        assert fields["access_token"] == "xoxp-user"
        assert fields["account_id"] == "T1"
        assert fields["account_name"] == "Acme"
        assert fields["provider_user_id"] == "U9"
        assert fields["provider_user_name"] == "Ada Lovelace"
        assert fields["scopes"] == ["chat:write", "users:read"]
        assert fields["expires_at"] is None

    @pytest.mark.asyncio
    async def test_slack_ok_false_is_an_exchange_error(self, registry, provider_stub):
        provider_stub.add(SLACK_TOKEN_URL, json={"ok": False, "error": "invalid_code"})
        with pytest.raises(TokenExchangeError, match="invalid_code"):
            await registry.require("slack").handle_callback("abc123")

    @pytest.mark.asyncio
    async def test_profile_failure_is_not_fatal(self, registry, provider_stub):
        provider_stub.add(LINEAR_TOKEN_URL, json={"access_token": "lin", "expires_in": 3600})
        provider_stub.add("https://api.linear.app/graphql", status_code=500, json={})

        fields = await registry.require("linear").handle_callback("c")

        assert fields["access_token"] == "lin"
        assert fields.get("account_name") is None
        assert fields["expires_at"] is not None

    @pytest.mark.asyncio
    async def test_linear_profile_fills_account(self, registry, provider_stub):
        provider_stub.add(LINEAR_TOKEN_URL, json={"access_token": "lin"})
        provider_stub.add(
            "https://api.linear.app/graphql",
            json={"data": {"viewer": {"id": "v1", "name": "Grace"}, "organization": {"id": "o1", "name": "Org"}}},
        )

        fields = await registry.require("linear").handle_callback("c")

        assert fields["account_id"] == "o1"
        assert fields["provider_user_name"] == "Grace"

    @pytest.mark.asyncio
    async def test_github_error_in_200_body(self, registry, provider_stub):
        provider_stub.add(
            GITHUB_TOKEN_URL,
            json={"error": "bad_verification_code", "error_description": "The code passed is incorrect"},
        )
        with pytest.raises(TokenExchangeError, match="incorrect"):
            await registry.require("github").handle_callback("c")

    @pytest.mark.asyncio
    async def test_non_2xx_carries_status_and_body(self, registry, provider_stub):
        provider_stub.add(GITHUB_TOKEN_URL, status_code=502, text="upstream down")
        with pytest.raises(TokenExchangeError) as excinfo:
            await registry.require("github").handle_callback("c")
        assert excinfo.value.status_code == 502
        assert excinfo.value.body == "upstream down"

    @pytest.mark.asyncio
    async def test_non_json_body(self, registry, provider_stub):
        provider_stub.add(LINEAR_TOKEN_URL, text="<html>oops</html>")
        with pytest.raises(TokenExchangeError, match="non-JSON"):
            await registry.require("linear").handle_callback("c")

    @pytest.mark.asyncio
    async def test_missing_access_token(self, registry, provider_stub):
        provider_stub.add(LINEAR_TOKEN_URL, json={"token_type": "Bearer"})
        with pytest.raises(TokenExchangeError, match="access_token"):
            await registry.require("linear").handle_callback("c")

    @pytest.mark.asyncio
    async def test_malformed_expires_in(self, registry, provider_stub):
        provider_stub.add(LINEAR_TOKEN_URL, json={"access_token": "lin", "expires_in": "soon"})
        with pytest.raises(TokenExchangeError, match="malformed"):
            await registry.require("linear").handle_callback("c")

    @pytest.mark.asyncio
    async def test_wrong_field_type_is_an_exchange_error(self, registry, provider_stub):
        provider_stub.add(LINEAR_TOKEN_URL, json={"access_token": "lin", "refresh_token": 123})
        with pytest.raises(TokenExchangeError, match="malformed") as excinfo:
            await registry.require("linear").handle_callback("c")
        assert excinfo.value.status_code == 200
        assert "refresh_token" in excinfo.value.body

    @pytest.mark.asyncio
    async def test_slack_numeric_team_id_is_an_exchange_error(self, registry, provider_stub):
        provider_stub.add(SLACK_TOKEN_URL, json={"ok": True, "access_token": "tok", "team_id": 42})
        with pytest.raises(TokenExchangeError, match="malformed"):
            await registry.require("slack").handle_callback("c")

    @pytest.mark.asyncio
    async def test_huge_expires_in_is_an_exchange_error(self, registry, provider_stub):
        provider_stub.add(LINEAR_TOKEN_URL, json={"access_token": "lin", "expires_in": 10**20})
        with pytest.raises(TokenExchangeError, match="malformed"):
            await registry.require("linear").handle_callback("c")

    @pytest.mark.asyncio
    async def test_refresh_with_wrong_field_type(self, registry, provider_stub):
        provider_stub.add(LINEAR_TOKEN_URL, json={"access_token": "lin", "scope": {"read": True}})
        with pytest.raises(TokenExchangeError, match="malformed"):
            await registry.require("linear").refresh_access_token("r1")

    @pytest.mark.asyncio
    async def test_non_string_profile_values_are_ignored(self, registry, provider_stub):
        provider_stub.add(LINEAR_TOKEN_URL, json={"access_token": "lin"})
        provider_stub.add(
            "https://api.linear.app/graphql",
            json={"data": {"viewer": {"id": 7, "name": "Grace"}, "organization": {"id": 8, "name": "Org"}}},
        )

        fields = await registry.require("linear").handle_callback("c")

        assert fields.get("account_id") is None
        assert fields["account_name"] == "Org"
        assert fields["provider_user_name"] == "Grace"

    @pytest.mark.asyncio
    async def test_timeout_is_an_exchange_error(self, registry, provider_stub):
        def _timeout(request):
            raise httpx.ReadTimeout("timed out", request=request)

        provider_stub.add(LINEAR_TOKEN_URL, handler=_timeout)
        with pytest.raises(TokenExchangeError, match="timed out"):
            await registry.require("linear").handle_callback("c")

    @pytest.mark.asyncio
    async def test_exchange_request_shape(self, registry, provider_stub):
        provider_stub.add(LINEAR_TOKEN_URL, json={"access_token": "lin"})

        await registry.require("linear").handle_callback("the-code")

        request = provider_stub.requests_to(LINEAR_TOKEN_URL)[0]
        form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
        assert request.method == "POST"
        assert form == {
            "client_id": "linear-id",
            "client_secret": "linear-secret",
            "code": "the-code",
            "redirect_uri": "http://localhost:6100/authenticate-linear/callback",
            "grant_type": "authorization_code",
        }
