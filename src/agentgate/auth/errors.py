"""Auth error taxonomy.

Learn: Domain code raises these; only the FastAPI layer (dependencies
and routes) turns them into HTTP statuses or callback redirects.
That keeps services testable without a request object.
"""

from typing import Optional


class AuthError(Exception):
    """Base class for every auth failure."""


class ConfigurationError(AuthError, ValueError):
    """Missing or unsafe configuration.

    Also a ValueError so pydantic validators can raise it directly
    and have it abort Settings construction.
    """


class UpstreamError(AuthError):
    """The identity provider failed or answered with a non-2xx status."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: str = "",
    ):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class CsrfError(AuthError):
    """Callback state missing, unknown, expired, or already used."""

    def __init__(self, reason: str = "invalid_state"):
        super().__init__(reason)
        self.reason = reason


class Unauthenticated(AuthError):
    """No usable credentials on the request (401)."""


class Forbidden(AuthError):
    """Authenticated, but the required scope is missing (403)."""


class AccessDenied(AuthError):
    """Federated identity is valid but not on the email allow-list."""


class InvalidTokenError(AuthError):
    """Session token failed signature or claim checks."""


class TokenExpiredError(InvalidTokenError):
    """Session token signature is fine but exp is in the past."""


class UserExistsError(AuthError):
    """Username already taken."""


class RegistrationClosed(Forbidden):
    """Self-registration is off and no local operator vouched for the account."""
