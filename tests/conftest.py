"""Test fixtures — a throwaway database, a fake SSO provider, and app clients.

Learn: Testing pattern for async SQLAlchemy + FastAPI + an external OAuth provider:

1. Each test gets its own SQLite file (aiosqlite) with the schema created
   fresh, so there is no cross-test pollution and no server to run.
2. The app's get_db dependency is overridden to hand out sessions on
   that engine — one session per request, like production.
3. The SSO provider is an httpx.MockTransport injected into the
   FederatedIdentityClient. No network; every upstream call is recorded
   so tests can assert what was (or wasn't) sent.
4. make_client() builds a fresh app per call, so a test can flip settings
   (platform mode, denylist, no SSO credentials) without touching globals.
"""

import os

# Before any agentgate import: the module-level app must not need asyncpg
os.environ.setdefault("AGENTGATE_DATABASE_URL", "sqlite+aiosqlite://")

from urllib.parse import parse_qs, urlsplit

import httpx
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from agentgate.auth.federated import TOKEN_PATH, USERINFO_PATH, REVOKE_PATH
from agentgate.auth.state import MemoryKeyStore
from agentgate.config import Settings
from agentgate.db.engine import get_db, init_db
from agentgate.main import create_app
from agentgate.services.collaborators import InMemoryAgentDirectory

PROVIDER_URL = "https://sso.test"
ALLOWED_EMAIL = "admin@madfam.io"
SUBJECT = "janua-user-1"

AGENTS = [
    {"id": "agent-1", "name": "builder", "status": "running"},
    {"id": "agent-2", "name": "reviewer", "status": "idle"},
]
AGENT_LOGS = {
    "agent-1": {"main": ["line 1", "line 2", "line 3"], "sidecar": ["proxy up"]},
}


def make_settings(**overrides) -> Settings:
    """Settings with SSO configured against the fake provider."""
    values = dict(
        environment="test",
        database_url="sqlite+aiosqlite://",
        session_secret="test-signing-secret",
        oauth_provider_url=PROVIDER_URL,
        oauth_client_id="client-id",
        oauth_client_secret="client-secret",
        oauth_redirect_uri="https://app.test/auth/callback",
        oauth_allowed_emails=ALLOWED_EMAIL,
        app_root_url="/",
        # Most tests create several local accounts anonymously
        allow_registration=True,
    )
    values.update(overrides)
    return Settings(**values)


def redirect_params(response) -> dict:
    """Query parameters of a redirect's Location, first value each."""
    query = urlsplit(response.headers["location"]).query
    return {k: v[0] for k, v in parse_qs(query).items()}


# ═══════════════════════════════════════════════════════════
# Fake SSO provider
# ═══════════════════════════════════════════════════════════


class FakeProvider:
    """Token, userinfo and revoke endpoints answering from mutable fields.

    Set `fail_with` to an exception instance to simulate a network error.
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.token_status = 200
        self.token_body = {
            "access_token": "upstream-access-token",
            "token_type": "bearer",
            "id_token": None,
            "scope": "openid profile email agent:view agent:control",
        }
        self.userinfo_status = 200
        self.userinfo_body = {
            "sub": SUBJECT,
            "email": ALLOWED_EMAIL,
            "name": "Platform Admin",
        }
        self.revoke_status = 200
        self.fail_with = None
        self.transport = httpx.MockTransport(self.handle)

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_with is not None:
            raise self.fail_with
        path = request.url.path
        if path == TOKEN_PATH:
            if self.token_status >= 400:
                return httpx.Response(
                    self.token_status,
                    json={"error": "invalid_grant", "error_description": "secret-upstream-detail"},
                )
            body = {k: v for k, v in self.token_body.items() if v is not None}
            return httpx.Response(self.token_status, json=body)
        if path == USERINFO_PATH:
            return httpx.Response(self.userinfo_status, json=self.userinfo_body)
        if path == REVOKE_PATH:
            return httpx.Response(self.revoke_status)
        return httpx.Response(404, json={"error": "not_found"})

    def calls(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]


@pytest_asyncio.fixture()
async def provider():
    return FakeProvider()


# ═══════════════════════════════════════════════════════════
# Database
# ═══════════════════════════════════════════════════════════


@pytest_asyncio.fixture()
async def engine(tmp_path):
    """Fresh SQLite database file with the full schema."""
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'agentgate.db'}")
    await init_db(eng)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture()
async def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture()
async def db_session(session_factory):
    """Direct session for arranging and inspecting rows in tests."""
    async with session_factory() as session:
        yield session


# ═══════════════════════════════════════════════════════════
# App clients
# ═══════════════════════════════════════════════════════════


@pytest_asyncio.fixture()
async def make_client(session_factory, provider):
    """Factory: make_client(**settings_overrides) -> (app, client).

    Learn: get_db is overridden on each new app instance, so every request
    gets its own session on the test engine, like production does.
    """
    clients: list[AsyncClient] = []
    apps = []

    async def override_get_db():
        async with session_factory() as session:
            yield session

    async def _make(key_store=None, task_queue=None, **overrides):
        app = create_app(
            make_settings(**overrides),
            agent_directory=InMemoryAgentDirectory(AGENTS, AGENT_LOGS),
            task_queue=task_queue,
            key_store=key_store if key_store is not None else MemoryKeyStore(),
            oauth_transport=provider.transport,
        )
        app.dependency_overrides[get_db] = override_get_db
        ac = AsyncClient(transport=ASGITransport(app=app), base_url="http://test")
        clients.append(ac)
        apps.append(app)
        return app, ac

    yield _make

    for ac in clients:
        await ac.aclose()
    for app in apps:
        await app.state.db_engine.dispose()


@pytest_asyncio.fixture()
async def app_and_client(make_client):
    return await make_client()


@pytest_asyncio.fixture()
async def app(app_and_client):
    return app_and_client[0]


@pytest_asyncio.fixture()
async def client(app_and_client):
    """HTTP client for the default app: bearer mode, SSO configured."""
    return app_and_client[1]


# ═══════════════════════════════════════════════════════════
# Flow helpers
# ═══════════════════════════════════════════════════════════


async def register_and_login(client, username="alice", password="correct-horse-1"):
    """Create a local account and return a bearer header for it."""
    r = await client.post(
        "/api/v1/auth/register", json={"username": username, "password": password}
    )
    assert r.status_code == 201, r.text
    r = await client.post(
        "/api/v1/auth/login", json={"username": username, "password": password}
    )
    assert r.status_code == 200, r.text
    return {"Authorization": f"Bearer {r.json()['access_token']}"}


async def start_sso(client) -> str:
    """Begin the SSO flow and return the state the provider would echo back."""
    r = await client.get("/api/v1/auth/oauth/login")
    assert r.status_code == 302, r.text
    return redirect_params(r)["state"]


async def sso_login(client, code="auth-code-1") -> str:
    """Full SSO round trip; returns our session token."""
    state = await start_sso(client)
    r = await client.get(
        "/api/v1/auth/oauth/callback", params={"code": code, "state": state}
    )
    assert r.status_code == 302
    params = redirect_params(r)
    assert "token" in params, params
    return params["token"]
