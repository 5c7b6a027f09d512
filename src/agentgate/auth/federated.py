"""OAuth2 client for the external SSO provider.

Learn: Relying-party side of the Authorization Code flow:
1. build_authorization_request(state) → URL the browser is redirected to
2. exchange_code(code) → server-to-server POST, HTTP Basic client auth
3. fetch_profile(access_token) → GET userinfo with a bearer token
4. revoke(token) → best-effort, never raises

Codes are single-use, so nothing here retries.
"""

from dataclasses import dataclass, field
from typing import Any, Optional
from urllib.parse import urlencode

import httpx
import jwt
import structlog

from agentgate.auth.errors import ConfigurationError, UpstreamError
from agentgate.db.models import SUBJECT_MAX_LENGTH

logger = structlog.get_logger()

AUTHORIZE_PATH = "/api/v1/oauth/authorize"
TOKEN_PATH = "/api/v1/oauth/token"
USERINFO_PATH = "/api/v1/oauth/userinfo"
REVOKE_PATH = "/api/v1/oauth/revoke"

# Upstream bodies are kept for diagnostics, but not unbounded
_MAX_ERROR_BODY = 2000


@dataclass
class TokenSet:
    access_token: str
    id_token: Optional[str] = None
    # granted scopes; empty when the provider omits `scope` (RFC 6749: same as requested)
    scopes: list[str] = field(default_factory=list)
    # id_token claims, decoded WITHOUT signature verification; informational only
    raw_claims: dict[str, Any] = field(default_factory=dict)


@dataclass
class FederatedProfile:
    subject: str
    email: Optional[str] = None
    name: Optional[str] = None


class FederatedIdentityClient:
    """Talks to the provider's authorize/token/userinfo/revoke endpoints."""

    def __init__(
        self,
        base_url: str,
        client_id: str = "",
        client_secret: str = "",
        redirect_uri: str = "",
        scopes: str = "openid profile email",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.scopes = scopes
        self.timeout = timeout
        self._transport = transport
        if not self.is_configured():
            logger.warning(
                "oauth.not_configured",
                hint="Set AGENTGATE_OAUTH_CLIENT_ID and AGENTGATE_OAUTH_CLIENT_SECRET",
            )

    @classmethod
    def from_settings(cls, settings, transport=None) -> "FederatedIdentityClient":
        return cls(
            base_url=settings.oauth_provider_url,
            client_id=settings.oauth_client_id,
            client_secret=settings.oauth_client_secret,
            redirect_uri=settings.oauth_redirect_uri,
            scopes=settings.oauth_scopes,
            timeout=settings.oauth_http_timeout,
            transport=transport,
        )

    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def _require_configured(self) -> None:
        if not self.is_configured():
            raise ConfigurationError("OAuth2 client id/secret are not configured")

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=False,
            transport=self._transport,
        )

    def build_authorization_request(self, state: str) -> str:
        """Provider authorization URL carrying our opaque state."""
        self._require_configured()
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": self.scopes,
            "state": state,
        }
        return f"{self.base_url}{AUTHORIZE_PATH}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> TokenSet:
        """Trade an authorization code for tokens."""
        self._require_configured()
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_uri,
        }
        payload = await self._request(
            "POST",
            TOKEN_PATH,
            what="Token exchange",
            data=data,
            auth=(self.client_id, self.client_secret),
        )
        access_token = payload.get("access_token")
        if not access_token:
            raise UpstreamError("Token exchange failed: no access_token in response")
        id_token = payload.get("id_token")
        return TokenSet(
            access_token=access_token,
            id_token=id_token,
            scopes=str(payload.get("scope") or "").split(),
            raw_claims=_unverified_claims(id_token),
        )

    async def fetch_profile(self, access_token: str) -> FederatedProfile:
        """Userinfo for the token's owner; `sub` is the stable subject."""
        payload = await self._request(
            "GET",
            USERINFO_PATH,
            what="User info",
            headers={"Authorization": f"Bearer {access_token}"},
        )
        subject = payload.get("sub") or payload.get("id")
        if not subject:
            raise UpstreamError("User info failed: response has no subject")
        subject = str(subject)
        if len(subject) > SUBJECT_MAX_LENGTH:
            raise UpstreamError("User info failed: subject is too long")
        return FederatedProfile(
            subject=subject,
            email=payload.get("email"),
            name=payload.get("name"),
        )

    async def revoke(self, token: str) -> bool:
        """Ask the provider to revoke a token. Failures are logged, not raised."""
        if not token or not self.is_configured():
            return False
        try:
            await self._request(
                "POST",
                REVOKE_PATH,
                what="Token revocation",
                data={"token": token, "token_type_hint": "access_token"},
                auth=(self.client_id, self.client_secret),
                expect_json=False,
            )
        except UpstreamError as e:
            logger.warning(
                "oauth.revoke_failed", status_code=e.status_code, error=str(e)
            )
            return False
        return True

    async def _request(
        self,
        method: str,
        path: str,
        what: str,
        expect_json: bool = True,
        **kwargs,
    ) -> dict[str, Any]:
        try:
            async with self._client() as client:
                response = await client.request(
                    method, f"{self.base_url}{path}", **kwargs
                )
        except httpx.HTTPError as e:
            raise UpstreamError(f"{what} failed: {e.__class__.__name__}")

        if response.is_error:
            body = response.text[:_MAX_ERROR_BODY]
            raise UpstreamError(
                f"{what} failed: HTTP {response.status_code}",
                status_code=response.status_code,
                body=body,
            )
        if not expect_json:
            return {}
        try:
            payload = response.json()
        except ValueError:
            raise UpstreamError(
                f"{what} failed: response is not JSON",
                status_code=response.status_code,
            )
        if not isinstance(payload, dict):
            raise UpstreamError(f"{what} failed: unexpected response shape")
        return payload


def _unverified_claims(id_token: Optional[str]) -> dict[str, Any]:
    if not id_token:
        return {}
    try:
        return jwt.decode(id_token, options={"verify_signature": False})
    except jwt.InvalidTokenError:
        return {}
