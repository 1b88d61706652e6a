"""
Error kinds raised by the connector flows.

Each error carries an ``indicator``: the machine-readable value the
browser-facing routes put in the landing-page query string.
"""

from __future__ import annotations

from typing import Optional


class ConnectorError(Exception):
    """Base class for every error crossing the connector boundary."""

    indicator = "auth_failed"

    def __init__(self, message: str, *, provider: Optional[str] = None) -> None:
        super().__init__(message)
        self.provider = provider


class UnknownProviderError(ConnectorError):
    indicator = "unknown_provider"

    def __init__(self, provider: str) -> None:
        super().__init__(f"Provider '{provider}' not found or not configured", provider=provider)


class MissingCodeError(ConnectorError):
    indicator = "missing_parameters"


class InvalidStateError(ConnectorError):
    indicator = "invalid_state"


class AuthorizationDeniedError(ConnectorError):
    """The provider redirected back with ``error=…`` instead of a code."""

    @property
    def indicator(self) -> str:  # type: ignore[override]
        return f"{self.provider}_auth_failed"


class TokenExchangeError(ConnectorError):
    """The token endpoint rejected the request or returned an unusable body."""

    def __init__(
        self,
        message: str,
        *,
        provider: Optional[str] = None,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
    ) -> None:
        super().__init__(message, provider=provider)
        self.status_code = status_code
        self.body = body

    def __str__(self) -> str:
        base = super().__str__()
        if self.status_code is None:
            return base
        return f"{base} (status={self.status_code}, body={self.body!r})"


class NotConnectedError(ConnectorError):
    indicator = "not_connected"


class ExpiredError(ConnectorError):
    indicator = "token_expired"


class StoreUnavailableError(ConnectorError):
    indicator = "store_unavailable"


class UnauthenticatedError(ConnectorError):
    indicator = "not_authenticated"
