"""Auth service — login, SSO callback, logout.

Learn: This is the OAuth2 relying-party state machine:

    Idle ──begin_login──▶ AwaitingCallback ──complete_login──▶ Authenticated
                                          └────────────────▶ Rejected

begin_login issues a CSRF state and returns the provider URL.
complete_login consumes that state (single use), exchanges the code,
fetches the profile, applies the email allow-list, reconciles the
account by provider subject, and issues our own session token.

Every callback outcome is a redirect back to the app root. Rejections
carry a short machine-readable `error` code; upstream error text is
logged, never forwarded to the browser.
"""

from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlencode

import structlog
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from agentgate.auth.errors import (
    AccessDenied,
    ConfigurationError,
    CsrfError,
    InvalidTokenError,
    RegistrationClosed,
    UpstreamError,
)
from agentgate.auth.federated import FederatedIdentityClient
from agentgate.auth.state import SessionDenylist, StateHandshakeStore
from agentgate.auth.tokens import (
    ORIGIN_FEDERATED,
    ORIGIN_LOCAL,
    SessionTokenCodec,
)
from agentgate.db.models import User
from agentgate.services.user_service import UserService

logger = structlog.get_logger()

# Callback error codes (the `error` query parameter on the app root)
ERROR_MISSING_PARAMETERS = "missing_parameters"
ERROR_INVALID_STATE = "invalid_state"
ERROR_ACCESS_DENIED = "access_denied"
ERROR_LOGIN_FAILED = "login_failed"
ERROR_NOT_CONFIGURED = "not_configured"

ACCESS_DENIED_DESCRIPTION = (
    "Access denied. Your email is not authorized to use this application."
)


@dataclass
class CallbackResult:
    """Where to send the browser after the provider callback."""

    redirect_url: str
    token: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.token is not None


class AuthService:
    """Business logic for both login paths."""

    def __init__(
        self,
        db: AsyncSession,
        settings,
        client: FederatedIdentityClient,
        states: StateHandshakeStore,
        codec: SessionTokenCodec,
        denylist: Optional[SessionDenylist] = None,
    ):
        self.db = db
        self.settings = settings
        self.client = client
        self.states = states
        self.codec = codec
        self.denylist = denylist
        self.users = UserService(db)

    # ─── Local login ────────────────────────────────────

    async def register_local(
        self,
        username: str,
        password: str,
        email: Optional[str] = None,
        display_name: Optional[str] = None,
        operator=None,
    ) -> User:
        """Create a local account if the registration policy allows it.

        Allowed when registration is open, when a local operator session
        vouches for the account, or when no account exists yet (the
        bootstrap case). `operator` is the caller's CurrentIdentity.
        """
        vouched = operator is not None and not operator.is_federated
        if not (self.settings.allow_registration or vouched):
            if await self.users.has_users():
                logger.warning("auth.registration_refused", username=username)
                raise RegistrationClosed("Registration is closed")
        return await self.users.create_local(
            username, password, email=email, display_name=display_name
        )

    async def login_local(self, username: str, password: str) -> Optional[str]:
        """Session token for valid credentials, None otherwise."""
        user = await self.users.authenticate_local(username, password)
        if user is None:
            logger.info("auth.login_failed", username=username)
            return None
        await self.users.touch_login(user)
        logger.info("auth.login", user_id=str(user.id), origin=ORIGIN_LOCAL)
        return self.codec.issue(user.id, user.username, origin=ORIGIN_LOCAL)

    # ─── Federated login ────────────────────────────────

    async def begin_login(self) -> str:
        """Idle → AwaitingCallback. Returns the provider authorization URL.

        Raises ConfigurationError before touching the state store if the
        client has no credentials.
        """
        if not self.client.is_configured():
            raise ConfigurationError("OAuth2 not configured")
        state = await self.states.issue()
        logger.info("oauth.login_started")
        return self.client.build_authorization_request(state)

    async def complete_login(
        self,
        code: Optional[str],
        state: Optional[str],
        error: Optional[str] = None,
        error_description: Optional[str] = None,
    ) -> CallbackResult:
        """AwaitingCallback → Authenticated | Rejected."""
        if error:
            # Provider-side rejection (user cancelled, consent denied...).
            # No state lookup: nothing to consume on this path.
            logger.warning("oauth.provider_error", error=error)
            params = {"error": error}
            if error_description:
                params["error_description"] = error_description
            return self._reject(params)

        if not code or not state:
            logger.warning("oauth.callback_rejected", reason=ERROR_MISSING_PARAMETERS)
            return self._reject({"error": ERROR_MISSING_PARAMETERS})

        try:
            user, scopes = await self._authenticate_callback(code, state)
        except CsrfError as e:
            logger.warning("oauth.callback_rejected", reason=e.reason)
            return self._reject({"error": ERROR_INVALID_STATE})
        except AccessDenied:
            return self._reject(
                {
                    "error": ERROR_ACCESS_DENIED,
                    "error_description": ACCESS_DENIED_DESCRIPTION,
                }
            )
        except UpstreamError as e:
            logger.error(
                "oauth.callback_upstream_error",
                error=str(e),
                status_code=e.status_code,
                upstream_body=e.body,
            )
            return self._reject({"error": ERROR_LOGIN_FAILED})
        except ConfigurationError:
            logger.error("oauth.callback_not_configured")
            return self._reject({"error": ERROR_NOT_CONFIGURED})
        except (SQLAlchemyError, RedisError) as e:
            # State store or account store unavailable mid-callback
            logger.error("oauth.callback_failed", error=str(e))
            await self.db.rollback()
            return self._reject({"error": ERROR_LOGIN_FAILED})

        token = self.codec.issue(
            user.id, user.username, scopes=scopes, origin=ORIGIN_FEDERATED
        )
        logger.info("auth.login", user_id=str(user.id), origin=ORIGIN_FEDERATED)
        url = self._root_url(
            {"token": token, "oauth": self.settings.oauth_provider_name}
        )
        return CallbackResult(redirect_url=url, token=token)

    async def _authenticate_callback(
        self, code: str, state: str
    ) -> tuple[User, list[str]]:
        if not await self.states.consume(state):
            raise CsrfError("invalid_or_expired_state")

        tokens = await self.client.exchange_code(code)
        profile = await self.client.fetch_profile(tokens.access_token)

        email = (profile.email or "").strip().lower()
        if email not in self.settings.allowed_emails:
            logger.warning("oauth.access_denied", email=email)
            raise AccessDenied(email)
        logger.info("oauth.access_granted", email=email)

        user = await self.users.upsert_federated(
            profile, link_emails=self.settings.link_emails
        )
        scopes = tokens.scopes or self.client.scopes.split()
        return user, scopes

    # ─── Logout ─────────────────────────────────────────

    async def logout(self, token: Optional[str]) -> None:
        """Best-effort revocation. Never raises; logout always succeeds.

        Only federated sessions are announced to the provider; a local
        session token means nothing to it.
        """
        if not token:
            return
        try:
            claims = self.codec.verify(token)
        except InvalidTokenError:
            # Already unusable, nothing to revoke
            return

        if claims.origin == ORIGIN_FEDERATED and self.client.is_configured():
            await self.client.revoke(token)

        if self.denylist is not None:
            try:
                await self.denylist.revoke(claims.token_id, claims.expires_at)
            except RedisError as e:
                logger.warning(
                    "auth.session_revoke_failed",
                    user_id=claims.subject_id,
                    error=str(e),
                )
                return
            logger.info("auth.session_revoked", user_id=claims.subject_id)

    def status(self) -> dict:
        return {
            "oauth_enabled": self.client.is_configured(),
            "oauth_provider": self.settings.oauth_provider_name,
            "provider_url": self.client.base_url,
        }

    # ─── Helpers ────────────────────────────────────────

    def _root_url(self, params: dict) -> str:
        root = self.settings.app_root_url or "/"
        sep = "&" if "?" in root else "?"
        return f"{root}{sep}{urlencode(params)}"

    def _reject(self, params: dict) -> CallbackResult:
        return CallbackResult(
            redirect_url=self._root_url(params), error=params["error"]
        )
