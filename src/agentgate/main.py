"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. Everything auth-related is resolved here, once:
- the session token codec (fails fast without a signing secret)
- the key store behind OAuth state and the denylist (memory or Redis)
- the SSO client
- the auth mode (bearer tokens, or single-tenant platform mode)

The database engine is built from the same Settings and kept on
app.state. Lifespan opens Redis (when it backs the key store) and
creates tables.
"""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from agentgate import __version__
from agentgate.api import api_router
from agentgate.auth.dependencies import build_authenticator
from agentgate.auth.federated import FederatedIdentityClient
from agentgate.auth.state import (
    MemoryKeyStore,
    RedisKeyStore,
    SessionDenylist,
    StateHandshakeStore,
)
from agentgate.auth.tokens import build_codec
from agentgate.config import Settings, settings as default_settings
from agentgate.db.engine import build_engine, build_session_factory
from agentgate.services.collaborators import InMemoryAgentDirectory, InMemoryTaskQueue

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: Anything before `yield` runs at startup, after `yield` runs at shutdown.
    """
    settings: Settings = app.state.settings
    logger.info(
        "agentgate.starting",
        version=__version__,
        environment=settings.environment,
        auth_mode=app.state.authenticator.mode,
        state_backend=settings.state_backend,
        oauth_enabled=app.state.oauth_client.is_configured(),
    )
    if not settings.session_secret:
        logger.warning(
            "agentgate.dev_session_secret",
            hint="Using the development signing secret; set AGENTGATE_SESSION_SECRET",
        )
    if settings.platform_mode:
        logger.warning("agentgate.platform_mode_enabled")

    from agentgate.db.redis import close_redis, init_redis

    if settings.state_backend == "redis":
        # OAuth state must be shared across instances; no silent fallback
        await init_redis(settings.redis_url)
        logger.info("agentgate.redis_connected", url=settings.redis_url)
    else:
        try:
            await init_redis(settings.redis_url)
            logger.info("agentgate.redis_connected", url=settings.redis_url)
        except Exception as e:
            logger.warning("agentgate.redis_unavailable", error=str(e))
            # Optional here: only rate limiting uses it
            await close_redis()

    await init_db(app.state.db_engine)

    yield

    logger.info("agentgate.shutdown")
    await close_redis()
    await app.state.db_engine.dispose()


def create_app(
    settings: Optional[Settings] = None,
    *,
    agent_directory=None,
    task_queue=None,
    key_store=None,
    oauth_transport=None,
) -> FastAPI:
    """Build and return the FastAPI application."""
    settings = settings or default_settings

    app = FastAPI(
        title="agentgate",
        description="Authentication gateway for the agent dashboard",
        version=__version__,
        lifespan=lifespan,
    )

    # ── Credential store ─────────────────────────────────────
    app.state.db_engine = build_engine(settings.database_url, echo=settings.debug)
    app.state.session_factory = build_session_factory(app.state.db_engine)

    # ── Auth components ──────────────────────────────────────
    if key_store is None:
        key_store = (
            RedisKeyStore() if settings.state_backend == "redis" else MemoryKeyStore()
        )
    codec = build_codec(settings)
    denylist = SessionDenylist(key_store) if settings.session_denylist_enabled else None

    app.state.settings = settings
    app.state.codec = codec
    app.state.state_store = StateHandshakeStore(
        key_store, ttl_seconds=settings.oauth_state_ttl_seconds
    )
    app.state.denylist = denylist
    app.state.oauth_client = FederatedIdentityClient.from_settings(
        settings, transport=oauth_transport
    )
    app.state.authenticator = build_authenticator(settings, codec, denylist)
    app.state.agent_directory = agent_directory or InMemoryAgentDirectory()
    app.state.task_queue = task_queue or InMemoryTaskQueue()

    # ── Middleware stack ──────────────────────────────────────
    # Note: Starlette middleware executes in reverse order of registration.
    # Request flow: RequestId → Security → RateLimit → CORS → ApiKey → handler
    # CORS sits outside the key check so preflights and 401s carry CORS headers.

    from agentgate.middleware.api_key import ApiKeyMiddleware
    from agentgate.middleware.rate_limit import RateLimitMiddleware
    from agentgate.middleware.request_id import RequestIdMiddleware
    from agentgate.middleware.security import SecurityHeadersMiddleware

    app.add_middleware(ApiKeyMiddleware, api_key=settings.api_key)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(
        RateLimitMiddleware,
        default_rpm=settings.rate_limit_rpm,
        auth_rpm=settings.rate_limit_auth_rpm,
    )
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestIdMiddleware)

    app.include_router(api_router)

    return app


# Default app instance (used by uvicorn: agentgate.main:app)
app = create_app()
