"""FastAPI auth dependencies.

Learn: These are used as Depends() in route handlers to resolve the
caller to a CurrentIdentity and enforce scopes.

The authentication mode is picked once in create_app and stored on
app.state.authenticator:
1. BearerAuthenticator — normal mode. Verifies our session token (local
   or federated, same codec) and re-checks that the user still exists.
2. PlatformAuthenticator — single-tenant override. Every request runs as
   the first account; tokens are not looked at.

Scopes: federated sessions carry the scopes the provider granted.
Local sessions are treated as trusted operators and pass every scope
check.
"""

from typing import Optional

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from agentgate.auth.errors import (
    Forbidden,
    InvalidTokenError,
    TokenExpiredError,
    Unauthenticated,
)
from agentgate.auth.state import SessionDenylist
from agentgate.auth.tokens import ORIGIN_FEDERATED, ORIGIN_LOCAL, SessionTokenCodec
from agentgate.db.engine import get_db
from agentgate.services.auth_service import AuthService
from agentgate.services.user_service import UserService


class CurrentIdentity:
    """Represents the authenticated identity making the request.

    Learn: This is the unified auth context. Downstream code only asks
    `has_scope` and reads user_id; it never needs to know which login
    path produced the session.
    """

    def __init__(
        self,
        user_id: str,
        username: str,
        origin: str = ORIGIN_LOCAL,
        scopes: Optional[list[str]] = None,
    ):
        self.user_id = user_id
        self.username = username
        self.origin = origin
        self.scopes = scopes or []

    @property
    def is_federated(self) -> bool:
        return self.origin == ORIGIN_FEDERATED

    def has_scope(self, scope: str) -> bool:
        """Local sessions are fully privileged; federated ones need the scope."""
        if self.origin == ORIGIN_LOCAL:
            return True
        return scope in self.scopes

    def require(self, scope: str) -> None:
        if not self.has_scope(scope):
            raise Forbidden(f"Missing required scope: {scope}")


class BearerAuthenticator:
    """Resolves `Authorization: Bearer <session token>`."""

    mode = "bearer"

    def __init__(
        self,
        codec: SessionTokenCodec,
        denylist: Optional[SessionDenylist] = None,
    ):
        self.codec = codec
        self.denylist = denylist

    async def authenticate(
        self, authorization: Optional[str], db: AsyncSession
    ) -> Optional[CurrentIdentity]:
        if not authorization:
            return None
        token = parse_bearer(authorization)

        try:
            claims = self.codec.verify(token)
        except TokenExpiredError:
            raise Unauthenticated("Token has expired")
        except InvalidTokenError:
            raise Unauthenticated("Invalid token")

        if self.denylist is not None and await self.denylist.is_revoked(
            claims.token_id
        ):
            raise Unauthenticated("Token has been revoked")

        # Deleting a user must cut off their sessions immediately
        user = await UserService(db).get(claims.subject_id)
        if user is None:
            raise Unauthenticated("Invalid token. User not found.")

        return CurrentIdentity(
            user_id=str(user.id),
            username=user.username,
            origin=claims.origin,
            scopes=claims.scopes,
        )


class PlatformAuthenticator:
    """Single-tenant mode: bind every request to the first account."""

    mode = "platform"

    async def authenticate(
        self, authorization: Optional[str], db: AsyncSession
    ) -> Optional[CurrentIdentity]:
        user = await UserService(db).first_user()
        if user is None:
            raise HTTPException(
                status_code=500, detail="Platform mode: No user found in database"
            )
        return CurrentIdentity(
            user_id=str(user.id), username=user.username, origin=ORIGIN_LOCAL
        )


def build_authenticator(settings, codec, denylist=None):
    """Pick the auth mode once, at startup."""
    if settings.platform_mode:
        return PlatformAuthenticator()
    return BearerAuthenticator(codec, denylist)


def parse_bearer(authorization: str) -> str:
    """Token from an `Authorization: Bearer ...` header, or Unauthenticated."""
    scheme, _, token = authorization.strip().partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token or " " in token:
        raise Unauthenticated("Malformed Authorization header")
    return token


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=401,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user_optional(
    request: Request,
    authorization: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
) -> Optional[CurrentIdentity]:
    """Extract current identity (optional — returns None if no auth).

    A header that is present but bad is still a 401: a broken token
    shouldn't silently degrade to anonymous.
    """
    try:
        return await request.app.state.authenticator.authenticate(authorization, db)
    except Unauthenticated as e:
        raise _unauthorized(str(e))


async def get_current_user(
    identity: Optional[CurrentIdentity] = Depends(get_current_user_optional),
) -> CurrentIdentity:
    """Extract current identity (required — 401 if no auth)."""
    if not identity:
        raise _unauthorized("Access denied. No token provided.")
    return identity


async def get_registering_operator(
    request: Request,
    authorization: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
) -> Optional[CurrentIdentity]:
    """Caller vouching for a new account on /register, if any.

    Only bearer sessions count. Platform mode has no caller to vouch, so
    registration there follows the same closed-by-default rule.
    """
    authenticator = request.app.state.authenticator
    if not authorization or not isinstance(authenticator, BearerAuthenticator):
        return None
    try:
        return await authenticator.authenticate(authorization, db)
    except Unauthenticated as e:
        raise _unauthorized(str(e))


def require_scope(scope: str):
    """Dependency factory: authenticated AND holding `scope` (else 403)."""

    async def _check_scope(
        identity: CurrentIdentity = Depends(get_current_user),
    ) -> CurrentIdentity:
        try:
            identity.require(scope)
        except Forbidden as e:
            raise HTTPException(status_code=403, detail=str(e))
        return identity

    return _check_scope


def get_auth_service(
    request: Request, db: AsyncSession = Depends(get_db)
) -> AuthService:
    state = request.app.state
    return AuthService(
        db=db,
        settings=state.settings,
        client=state.oauth_client,
        states=state.state_store,
        codec=state.codec,
        denylist=state.denylist,
    )
