"""
Shared fixtures: test settings, an in-memory store, and a stub for the
providers' HTTP endpoints.
"""

from typing import Any, Callable, Dict, List, Optional, Union

import httpx
import pytest

from config.settings import Settings
from connectors.registry import ConnectorRegistry, build_registry
from connectors.store import InMemoryTokenStore

SLACK_TOKEN_URL = "https://slack.com/api/oauth.v2.access"
LINEAR_TOKEN_URL = "https://api.linear.app/oauth/token"
GITHUB_TOKEN_URL = "https://github.com/login/oauth/access_token"


class ProviderStub:
    """
    Callable for ``httpx.MockTransport``: answers by URL (query ignored),
    records every request, and returns 404 for anything unregistered.
    """

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self._routes: Dict[str, Callable[[httpx.Request], httpx.Response]] = {}

    def add(
        self,
        url: str,
        *,
        status_code: int = 200,
        json: Any = None,
        text: Optional[str] = None,
        handler: Optional[Callable[[httpx.Request], httpx.Response]] = None,
    ) -> None:
        if handler is None:
            if text is not None:
                handler = lambda request: httpx.Response(status_code, text=text)  # noqa: E731
            else:
                handler = lambda request: httpx.Response(status_code, json=json)  # noqa: E731
        self._routes[url] = handler

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = f"{request.url.scheme}://{request.url.host}{request.url.path}"
        handler = self._routes.get(key)
        if handler is None:
            return httpx.Response(404, json={"error": "not_found"})
        return handler(request)

    def requests_to(self, url: str) -> List[httpx.Request]:
        return [
            r for r in self.requests
            if f"{r.url.scheme}://{r.url.host}{r.url.path}" == url
        ]


def make_settings(**overrides: Union[str, int, bool]) -> Settings:
    values: Dict[str, Any] = {
        "slack_client_id": "slack-id",
        "slack_client_secret": "slack-secret",
        "linear_client_id": "linear-id",
        "linear_client_secret": "linear-secret",
        "github_client_id": "gh-id",
        "github_client_secret": "gh-secret",
        "session_secret": "test-session-secret",
        "token_store_backend": "memory",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def provider_stub() -> ProviderStub:
    return ProviderStub()


@pytest.fixture
def registry(settings: Settings, provider_stub: ProviderStub) -> ConnectorRegistry:
    return build_registry(settings, transport=httpx.MockTransport(provider_stub))


@pytest.fixture
def store() -> InMemoryTokenStore:
    return InMemoryTokenStore()
