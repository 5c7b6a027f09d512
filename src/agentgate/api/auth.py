"""Auth API — local accounts and the SSO round trip.

Learn: Routes for both login paths:
- POST /auth/register → create a local account (closed once one exists)
- POST /auth/login → username/password → session token
- GET /auth/me → current identity
- GET /auth/oauth/login → 302 to the SSO provider (500 if unconfigured)
- GET /auth/oauth/callback → 302 back to the app with ?token= or ?error=
- POST /auth/oauth/logout (alias /auth/logout) → best-effort revoke, always 200
- GET /auth/oauth/status → is SSO configured, and where
"""

import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from agentgate.auth.dependencies import (
    CurrentIdentity,
    get_auth_service,
    get_current_user,
    get_registering_operator,
    parse_bearer,
)
from agentgate.auth.errors import (
    ConfigurationError,
    RegistrationClosed,
    Unauthenticated,
    UserExistsError,
)
from agentgate.db.engine import get_db
from agentgate.services.auth_service import AuthService
from agentgate.services.user_service import UserService

router = APIRouter(prefix="/auth")


# ─── Schemas ─────────────────────────────────────────────


class RegisterRequest(BaseModel):
    username: str = Field(min_length=3, max_length=64, pattern=r"^[A-Za-z0-9_.@-]+$")
    password: str = Field(min_length=8)
    email: Optional[str] = None
    display_name: Optional[str] = None


class LoginRequest(BaseModel):
    username: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class UserRead(BaseModel):
    id: uuid.UUID
    username: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    identity_provider: str
    created_at: Optional[datetime] = None
    last_login_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class LogoutResponse(BaseModel):
    success: bool = True
    message: str = "Logged out successfully"


class OAuthStatus(BaseModel):
    oauth_enabled: bool
    oauth_provider: str
    provider_url: str


# ─── Local accounts ──────────────────────────────────────


@router.post("/register", response_model=UserRead, status_code=201)
async def register(
    body: RegisterRequest,
    operator: Optional[CurrentIdentity] = Depends(get_registering_operator),
    svc: AuthService = Depends(get_auth_service),
):
    """Create a local username/password account.

    Open to anonymous callers only while no account exists (or when
    AGENTGATE_ALLOW_REGISTRATION is set). Otherwise a local operator
    session must vouch for the new account.
    """
    try:
        return await svc.register_local(
            body.username,
            body.password,
            email=body.email,
            display_name=body.display_name,
            operator=operator,
        )
    except RegistrationClosed:
        raise HTTPException(status_code=403, detail="Registration is closed")
    except UserExistsError:
        raise HTTPException(status_code=409, detail="Username already registered")


@router.post("/login", response_model=TokenResponse)
async def login(body: LoginRequest, svc: AuthService = Depends(get_auth_service)):
    """Login with username and password → session token."""
    token = await svc.login_local(body.username, body.password)
    if token is None:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return TokenResponse(
        access_token=token,
        expires_in=int(svc.codec.ttl.total_seconds()),
    )


@router.get("/me")
async def get_me(
    identity: CurrentIdentity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Get the current authenticated user's info."""
    user = await UserService(db).get(identity.user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    return {
        "id": str(user.id),
        "username": user.username,
        "email": user.email,
        "display_name": user.display_name,
        "identity_provider": user.identity_provider,
        "origin": identity.origin,
        "scopes": identity.scopes,
    }


# ─── SSO (OAuth2 Authorization Code flow) ────────────────


@router.get("/oauth/login")
async def oauth_login(svc: AuthService = Depends(get_auth_service)):
    """Start the SSO flow: issue a CSRF state, redirect to the provider."""
    try:
        url = await svc.begin_login()
    except ConfigurationError:
        raise HTTPException(
            status_code=500,
            detail={
                "error": "OAuth2 not configured",
                "hint": "Set AGENTGATE_OAUTH_CLIENT_ID and "
                "AGENTGATE_OAUTH_CLIENT_SECRET environment variables",
            },
        )
    return RedirectResponse(url, status_code=302)


@router.get("/oauth/callback")
async def oauth_callback(
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    error_description: Optional[str] = Query(None),
    svc: AuthService = Depends(get_auth_service),
):
    """Provider redirects here. Always answers with a redirect to the app."""
    result = await svc.complete_login(
        code, state, error=error, error_description=error_description
    )
    return RedirectResponse(result.redirect_url, status_code=302)


@router.post("/oauth/logout", response_model=LogoutResponse)
@router.post("/logout", response_model=LogoutResponse)
async def logout(
    authorization: Optional[str] = Header(None),
    svc: AuthService = Depends(get_auth_service),
):
    """Best-effort revocation; succeeds even without a (valid) token."""
    token = None
    if authorization:
        try:
            token = parse_bearer(authorization)
        except Unauthenticated:
            token = None
    await svc.logout(token)
    return LogoutResponse()


@router.get("/oauth/status", response_model=OAuthStatus)
async def oauth_status(svc: AuthService = Depends(get_auth_service)):
    """Whether SSO is configured, and the provider it points at."""
    return svc.status()
