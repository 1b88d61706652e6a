"""
ConnectorRegistry — the immutable provider map built once at startup.
"""

from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Type

import httpx

from config.settings import Settings
from connectors.base import BaseConnector, ProviderDescriptor
from connectors.errors import UnknownProviderError
from connectors.github import GitHubConnector, github_descriptor
from connectors.linear import LinearConnector, linear_descriptor
from connectors.slack import SlackConnector, slack_descriptor

logger = logging.getLogger(__name__)

# ── All known connectors: add new ones here ─────────────────────────────

_ALL_CONNECTORS: List[Tuple[Type[BaseConnector], Callable[[Settings], ProviderDescriptor]]] = [
    (SlackConnector, slack_descriptor),
    (LinearConnector, linear_descriptor),
    (GitHubConnector, github_descriptor),
]


class ConnectorRegistry:
    """Read-only lookup of configured connectors by provider id."""

    def __init__(self, connectors: Iterable[BaseConnector]) -> None:
        self._connectors = MappingProxyType({c.provider_name: c for c in connectors})

    def get(self, provider: str) -> Optional[BaseConnector]:
        """Get a connector by provider name."""
        return self._connectors.get(provider)

    def require(self, provider: str) -> BaseConnector:
        connector = self._connectors.get(provider)
        if connector is None:
            raise UnknownProviderError(provider)
        return connector

    def list_providers(self) -> List[Dict[str, str]]:
        """Return info about all available connectors."""
        return [
            {
                "provider": c.provider_name,
                "display_name": c.display_name,
                "icon": c.icon,
                "connect_path": f"/authenticate-{c.provider_name}",
            }
            for c in self._connectors.values()
        ]

    def list_configured(self) -> List[str]:
        """Return names of configured connectors."""
        return list(self._connectors.keys())


def build_registry(
    settings: Settings,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ConnectorRegistry:
    """Register every connector whose client id and secret are set."""
    connectors = []
    for connector_cls, make_descriptor in _ALL_CONNECTORS:
        conn = connector_cls(
            make_descriptor(settings),
            timeout=settings.oauth_http_timeout_seconds,
            transport=transport,
        )
        if conn.is_configured():
            connectors.append(conn)
            logger.info(
                "Connector registered: %s (%s)",
                conn.display_name,
                conn.provider_name,
            )
        else:
            logger.warning(
                "Connector %s skipped — not configured (missing client_id/secret)",
                conn.provider_name,
            )
    return ConnectorRegistry(connectors)
