"""
FastAPI dependencies for the connector routes.

The provider registry, token store and session correlator are built
once in ``main.create_app`` and hung off ``app.state``; these helpers
hand them to route handlers.
"""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status

from auth.session import SessionCorrelator
from config.settings import Settings
from connectors.errors import UnauthenticatedError
from connectors.registry import ConnectorRegistry
from connectors.store import TokenStore


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_registry(request: Request) -> ConnectorRegistry:
    return request.app.state.registry


def get_token_store(request: Request) -> TokenStore:
    return request.app.state.token_store


def get_session_correlator(request: Request) -> SessionCorrelator:
    return request.app.state.session_correlator


async def get_current_user_id(
    request: Request,
    correlator: SessionCorrelator = Depends(get_session_correlator),
) -> str:
    """
    Resolve the identity cookie, returning the internal ``user_id``.

    Raises ``HTTPException(401)`` when the cookie is missing or invalid.
    """
    try:
        return correlator.require_identity(request.cookies)
    except UnauthenticatedError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
        )
