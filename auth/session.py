"""
Session correlation — binds a browser to an internal user id via a cookie.

The cookie value is a base64url JSON payload signed with HMAC-SHA256
(``<payload>.<sig>``), so a client cannot forge another user's id.
Works against anything exposing Starlette's ``set_cookie`` signature,
which keeps it usable without an HTTP stack.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
import uuid
from base64 import urlsafe_b64decode, urlsafe_b64encode
from typing import Any, Mapping, Optional, Protocol

from connectors.errors import UnauthenticatedError

logger = logging.getLogger(__name__)


class CookieSink(Protocol):
    def set_cookie(self, key: str, value: str = "", max_age: Optional[int] = None, **kwargs: Any) -> None:
        ...


class SessionCorrelator:
    """Resolve, bind and clear the identity cookie."""

    def __init__(
        self,
        secret: str,
        *,
        cookie_name: str = "connector_user_id",
        max_age: int = 600,
        secure: bool = False,
    ) -> None:
        self._secret = secret.encode()
        self.cookie_name = cookie_name
        self.max_age = max_age
        self.secure = secure

    @staticmethod
    def new_identity() -> str:
        return uuid.uuid4().hex

    # ── Token encoding ──────────────────────────────────────────────────

    def _sign(self, raw: bytes) -> str:
        return hmac.new(self._secret, raw, hashlib.sha256).hexdigest()

    def encode(self, user_id: str) -> str:
        payload = {"user_id": user_id, "exp": int(time.time()) + self.max_age}
        raw = json.dumps(payload, separators=(",", ":")).encode()
        return urlsafe_b64encode(raw).decode().rstrip("=") + "." + self._sign(raw)

    def decode(self, token: str) -> Optional[str]:
        """Return the user id in ``token``, or ``None`` if invalid or expired."""
        try:
            body, sig = token.split(".", 1)
            raw = urlsafe_b64decode(body + "=" * (-len(body) % 4))
            if not hmac.compare_digest(sig, self._sign(raw)):
                raise ValueError("bad signature")
            payload = json.loads(raw)
            if payload.get("exp", 0) < time.time():
                raise ValueError("cookie expired")
            user_id = payload["user_id"]
            if not isinstance(user_id, str) or not user_id:
                raise ValueError("bad user_id")
            return user_id
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            logger.warning("Rejected identity cookie: %s", exc)
            return None

    # ── Cookie contract ─────────────────────────────────────────────────

    def resolve_identity(self, cookies: Mapping[str, str]) -> Optional[str]:
        token = cookies.get(self.cookie_name)
        if not token:
            return None
        return self.decode(token)

    def require_identity(self, cookies: Mapping[str, str]) -> str:
        user_id = self.resolve_identity(cookies)
        if user_id is None:
            raise UnauthenticatedError("No valid identity cookie on request")
        return user_id

    def bind_identity(self, response: CookieSink, user_id: str) -> None:
        response.set_cookie(
            self.cookie_name,
            self.encode(user_id),
            max_age=self.max_age,
            httponly=True,
            secure=self.secure,
            samesite="lax",
        )

    def clear_identity(self, response: CookieSink) -> None:
        response.set_cookie(
            self.cookie_name,
            "",
            max_age=0,
            httponly=True,
            secure=self.secure,
            samesite="lax",
        )
