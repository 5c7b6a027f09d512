"""Session token creation and verification.

Learn: Session tokens are HS256 JWTs, self-verifying: checking one only
needs the signing secret and the clock. Both login paths (local password
and federated SSO) end here, so downstream code never cares which path
produced a token — only the `origin` claim differs.

Claims:
- sub: local user id
- username
- iat / exp: issue and expiry timestamps (exp = iat + ttl, default 8h)
- jti: random token id, used by the optional denylist
- origin: "local" or "federated"
- scopes: federated tokens only; local tokens are implicitly fully privileged
"""

import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

import jwt

from agentgate.auth.errors import (
    ConfigurationError,
    InvalidTokenError,
    TokenExpiredError,
)

ORIGIN_LOCAL = "local"
ORIGIN_FEDERATED = "federated"
_ORIGINS = (ORIGIN_LOCAL, ORIGIN_FEDERATED)


@dataclass
class SessionClaims:
    """Decoded, verified contents of a session token."""

    subject_id: str
    username: str
    issued_at: datetime
    expires_at: datetime
    token_id: str
    origin: str = ORIGIN_LOCAL
    scopes: list[str] = field(default_factory=list)


class SessionTokenCodec:
    """Issues and verifies signed session tokens."""

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        ttl: timedelta = timedelta(hours=8),
    ):
        if not secret:
            raise ConfigurationError("Session signing secret is not set")
        self._secret = secret
        self.algorithm = algorithm
        self.ttl = ttl

    def issue(
        self,
        user_id: str,
        username: str,
        scopes: Optional[Iterable[str]] = None,
        origin: str = ORIGIN_LOCAL,
        now: Optional[datetime] = None,
    ) -> str:
        """Create a signed session token for a user."""
        if origin not in _ORIGINS:
            raise ValueError(f"Unknown token origin: {origin}")
        issued = now or datetime.now(timezone.utc)
        payload = {
            "sub": str(user_id),
            "username": username,
            "iat": issued,
            "exp": issued + self.ttl,
            "jti": secrets.token_hex(16),
            "origin": origin,
        }
        if origin == ORIGIN_FEDERATED:
            payload["scopes"] = sorted(set(scopes or ()))
        return jwt.encode(payload, self._secret, algorithm=self.algorithm)

    def verify(self, token: str) -> SessionClaims:
        """Verify signature and expiry, return the claims.

        Raises TokenExpiredError for an expired token and
        InvalidTokenError for anything else wrong with it.
        """
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self.algorithm],
                options={"require": ["sub", "exp", "iat"]},
            )
        except jwt.ExpiredSignatureError:
            raise TokenExpiredError("Token has expired")
        except jwt.InvalidTokenError as e:
            raise InvalidTokenError(f"Invalid token: {e}")

        origin = payload.get("origin", ORIGIN_LOCAL)
        if origin not in _ORIGINS:
            raise InvalidTokenError("Invalid token: unknown origin")
        scopes = payload.get("scopes") or []
        if not isinstance(scopes, list):
            raise InvalidTokenError("Invalid token: malformed scopes")

        return SessionClaims(
            subject_id=str(payload["sub"]),
            username=payload.get("username", ""),
            issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
            expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
            token_id=payload.get("jti", ""),
            origin=origin,
            scopes=[str(s) for s in scopes],
        )


def build_codec(settings) -> SessionTokenCodec:
    """Codec from app settings (dev secret outside production)."""
    return SessionTokenCodec(
        secret=settings.effective_session_secret,
        algorithm=settings.session_algorithm,
        ttl=timedelta(minutes=settings.session_ttl_minutes),
    )
