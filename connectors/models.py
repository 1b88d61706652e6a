"""
Pydantic schemas for stored connector state.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def record_key(user_id: str, provider_id: str) -> str:
    """Provider-qualified store key for a (user, provider) pair."""
    return f"{provider_id}:{user_id}"


class TokenRecord(BaseModel):
    """
    Credentials one user holds for one provider.

    Written whole: a re-authorization replaces every field, and a logout
    writes a copy whose credential and account fields are all ``None``.
    A record without ``access_token`` reads the same as no record.
    """

    model_config = ConfigDict(frozen=True)

    user_id: str
    provider_id: str
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    account_id: Optional[str] = None          # team / workspace / account id
    account_name: Optional[str] = None
    provider_user_id: Optional[str] = None
    provider_user_name: Optional[str] = None
    scopes: List[str] = Field(default_factory=list)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def key(self) -> str:
        return record_key(self.user_id, self.provider_id)

    @property
    def is_connected(self) -> bool:
        return bool(self.access_token)

    def is_expired(self, now: Optional[datetime] = None, leeway_seconds: int = 0) -> bool:
        if self.expires_at is None:
            return False
        now = now or utcnow()
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return expires_at.timestamp() - leeway_seconds <= now.timestamp()

    def cleared(self) -> "TokenRecord":
        """Copy with every credential and account field removed."""
        return TokenRecord(user_id=self.user_id, provider_id=self.provider_id)

    def summary(self) -> Dict[str, Any]:
        """Token-free view for API responses."""
        return {
            "provider": self.provider_id,
            "connected": self.is_connected,
            "account_id": self.account_id,
            "account_name": self.account_name,
            "provider_user_id": self.provider_user_id,
            "provider_user_name": self.provider_user_name,
            "scopes": list(self.scopes),
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "updated_at": self.updated_at.isoformat(),
        }


class PendingAuthorization(BaseModel):
    """CSRF state recorded by the authorize step, consumed once by the callback."""

    model_config = ConfigDict(frozen=True)

    state: str
    user_id: str
    provider_id: str
    created_at: datetime = Field(default_factory=utcnow)

    def is_expired(self, ttl_seconds: int, now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        created_at = self.created_at
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        return now.timestamp() - created_at.timestamp() > ttl_seconds


class AuthorizationRedirect(BaseModel):
    """Where to send the browser to start a provider's consent screen."""

    url: str
    user_id: str
    state: Optional[str] = None


class RevocationResult(str, Enum):
    ALREADY_LOGGED_OUT = "already_logged_out"
    REVOKED = "revoked"
