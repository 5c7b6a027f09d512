"""Tests for security middleware — headers, request IDs, the shared API key.

Learn: Rate limiting is skipped in tests (no Redis connection is
opened), so we only test security headers, request IDs and the
optional X-API-Key gate here.
"""

import pytest


@pytest.mark.asyncio
async def test_security_headers_on_health(client):
    """Health endpoint returns security headers."""
    r = await client.get("/api/v1/health")
    assert r.status_code == 200
    assert r.headers["X-Content-Type-Options"] == "nosniff"
    assert r.headers["X-Frame-Options"] == "DENY"
    assert r.headers["Referrer-Policy"] == "no-referrer"
    # Only auth routes are marked uncacheable
    assert "Cache-Control" not in r.headers


@pytest.mark.asyncio
async def test_auth_routes_not_cacheable(client):
    r = await client.get("/api/v1/auth/oauth/status")
    assert r.headers["Cache-Control"] == "no-store"
    assert r.headers["Pragma"] == "no-cache"


@pytest.mark.asyncio
async def test_request_id_generated(client):
    """Each request gets a unique X-Request-ID header."""
    r1 = await client.get("/api/v1/health")
    r2 = await client.get("/api/v1/health")
    assert "X-Request-ID" in r1.headers
    assert "X-Request-ID" in r2.headers
    # Each request gets a unique ID
    assert r1.headers["X-Request-ID"] != r2.headers["X-Request-ID"]


@pytest.mark.asyncio
async def test_request_id_propagated(client):
    """Incoming X-Request-ID is propagated through the response."""
    custom_id = "test-trace-12345"
    r = await client.get(
        "/api/v1/health",
        headers={"X-Request-ID": custom_id},
    )
    assert r.headers["X-Request-ID"] == custom_id


@pytest.mark.asyncio
async def test_bad_request_id_replaced(client):
    """IDs that would pollute the logs are swapped for a fresh one."""
    bad = "x" * 200
    r = await client.get("/api/v1/health", headers={"X-Request-ID": bad})
    assert r.headers["X-Request-ID"] != bad
    assert len(r.headers["X-Request-ID"]) == 36


@pytest.mark.asyncio
async def test_no_hsts_on_http(client):
    """HSTS header is NOT set on HTTP connections (only HTTPS)."""
    r = await client.get("/api/v1/health")
    assert "Strict-Transport-Security" not in r.headers


@pytest.mark.asyncio
async def test_no_rate_limit_headers_without_redis(client):
    r = await client.get("/api/v1/health")
    assert "X-RateLimit-Limit" not in r.headers


# ═══════════════════════════════════════════════════════════
# Shared API key
# ═══════════════════════════════════════════════════════════

API_KEY = "shared-deploy-key"


@pytest.mark.asyncio
async def test_no_api_key_configured_means_no_check(client):
    r = await client.get("/api/v1/auth/oauth/status")
    assert r.status_code == 200


@pytest.mark.asyncio
async def test_api_key_missing_or_wrong(make_client):
    _, client = await make_client(api_key=API_KEY)

    r = await client.get("/api/v1/auth/oauth/status")
    assert r.status_code == 401
    assert r.json() == {"detail": "Invalid API key"}

    r = await client.get("/api/v1/auth/oauth/status", headers={"X-API-Key": "guess"})
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_api_key_accepted(make_client):
    _, client = await make_client(api_key=API_KEY)
    r = await client.get("/api/v1/auth/oauth/status", headers={"X-API-Key": API_KEY})
    assert r.status_code == 200


@pytest.mark.asyncio
async def test_api_key_checked_before_session_auth(make_client):
    """A valid session token alone is not enough."""
    _, client = await make_client(api_key=API_KEY)
    r = await client.post(
        "/api/v1/auth/register",
        json={"username": "alice", "password": "password_123"},
        headers={"X-API-Key": API_KEY},
    )
    assert r.status_code == 201
    r = await client.post(
        "/api/v1/auth/login",
        json={"username": "alice", "password": "password_123"},
        headers={"X-API-Key": API_KEY},
    )
    bearer = {"Authorization": f"Bearer {r.json()['access_token']}"}

    assert (await client.get("/api/v1/agents", headers=bearer)).status_code == 401
    r = await client.get("/api/v1/agents", headers={**bearer, "X-API-Key": API_KEY})
    assert r.status_code == 200


@pytest.mark.asyncio
async def test_health_and_browser_sso_legs_skip_api_key(make_client):
    _, client = await make_client(api_key=API_KEY)
    assert (await client.get("/api/v1/health")).status_code == 200

    r = await client.get("/api/v1/auth/oauth/login")
    assert r.status_code == 302
    r = await client.get("/api/v1/auth/oauth/callback", params={"error": "access_denied"})
    assert r.status_code == 302
