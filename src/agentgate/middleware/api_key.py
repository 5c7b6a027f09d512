"""Shared API key middleware.

Learn: An optional outer gate in front of session auth. When
AGENTGATE_API_KEY is set, every API request must carry the same value
in `X-API-Key`; the comparison is constant-time. When it is unset the
check is skipped entirely.

The health probe and the two browser-driven SSO legs are exempt: the
browser follows redirects to them and cannot attach custom headers.
"""

import secrets

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

API_PREFIX = "/api/"
API_KEY_HEADER = "X-API-Key"

EXEMPT_PATHS = (
    "/api/v1/health",
    "/api/v1/auth/oauth/login",
    "/api/v1/auth/oauth/callback",
)


class ApiKeyMiddleware(BaseHTTPMiddleware):
    """Reject API requests without the configured X-API-Key."""

    def __init__(self, app, api_key: str = ""):
        super().__init__(app)
        self.api_key = api_key

    async def dispatch(self, request: Request, call_next) -> Response:
        path = request.url.path
        if (
            not self.api_key
            or request.method == "OPTIONS"
            or not path.startswith(API_PREFIX)
            or path in EXEMPT_PATHS
        ):
            return await call_next(request)

        supplied = request.headers.get(API_KEY_HEADER, "")
        if not secrets.compare_digest(supplied.encode(), self.api_key.encode()):
            return JSONResponse(status_code=401, content={"detail": "Invalid API key"})
        return await call_next(request)
