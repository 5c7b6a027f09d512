"""agentgate CLI — run the server and bootstrap accounts.

Usage:
    agentgate serve                              # Run the API with uvicorn
    agentgate create-user admin --email a@b.io   # Create a local account (prompts for password)
    agentgate gen-secret                         # Print a fresh session signing secret
    agentgate oauth-status                       # Ask a running server whether SSO is configured
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import os
import secrets
import sys
from typing import Optional

import click
import httpx

from agentgate import __version__

DEFAULT_API_URL = "http://localhost:8000"


def _api_url(api_url: Optional[str] = None) -> str:
    return (api_url or os.environ.get("AGENTGATE_API_URL", DEFAULT_API_URL)).rstrip("/")


def _run(coro):
    """Run an async coroutine from synchronous Click handler.

    Handles nested event loops (e.g. when invoked via Click CliRunner
    inside an existing async context like tests) by offloading to a thread.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


@click.group()
@click.version_option(version=__version__, prog_name="agentgate")
def main():
    """agentgate — authentication gateway for the agent dashboard."""


@main.command()
@click.option("--host", default=None, help="Bind address (default: AGENTGATE_HOST)")
@click.option("--port", default=None, type=int, help="Port (default: AGENTGATE_PORT)")
@click.option("--reload", is_flag=True, help="Auto-reload on code changes (dev only)")
def serve(host: Optional[str], port: Optional[int], reload: bool):
    """Run the API server."""
    import uvicorn

    from agentgate.config import settings

    uvicorn.run(
        "agentgate.main:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
    )


@main.command("create-user")
@click.argument("username")
@click.option("--email", default=None, help="Account email")
@click.option("--display-name", default=None, help="Name shown in the UI")
@click.option(
    "--password",
    prompt=True,
    hide_input=True,
    confirmation_prompt=True,
    help="Account password (prompted if omitted)",
)
@click.option("--database-url", default=None, help="Override AGENTGATE_DATABASE_URL")
def create_user(
    username: str,
    email: Optional[str],
    display_name: Optional[str],
    password: str,
    database_url: Optional[str],
):
    """Create a local username/password account.

    The first account created is also the one platform mode runs as.
    """
    if len(password) < 8:
        click.secho("Error: password must be at least 8 characters", fg="red", err=True)
        sys.exit(1)
    try:
        user = _run(_create_user_impl(username, password, email, display_name, database_url))
    except Exception as e:
        click.secho(f"Error: {e}", fg="red", err=True)
        sys.exit(1)
    click.secho(f"Created local user {user['username']} ({user['id']})", fg="green")


async def _create_user_impl(
    username: str,
    password: str,
    email: Optional[str],
    display_name: Optional[str],
    database_url: Optional[str],
) -> dict:
    from agentgate.config import settings
    from agentgate.db.engine import build_engine, build_session_factory, init_db
    from agentgate.services.user_service import UserService

    engine = build_engine(database_url or settings.database_url)
    try:
        await init_db(engine)
        async with build_session_factory(engine)() as session:
            user = await UserService(session).create_local(
                username, password, email=email, display_name=display_name
            )
            return {"id": str(user.id), "username": user.username}
    finally:
        await engine.dispose()


@main.command("gen-secret")
def gen_secret():
    """Print a random value for AGENTGATE_SESSION_SECRET."""
    click.echo(secrets.token_urlsafe(32))


@main.command("oauth-status")
@click.option("--api-url", default=None, help="Server URL (or set AGENTGATE_API_URL)")
def oauth_status(api_url: Optional[str]):
    """Show whether the running server has SSO configured."""
    try:
        data = _run(_oauth_status_impl(_api_url(api_url)))
    except httpx.HTTPError as e:
        click.secho(f"Error: could not reach server: {e}", fg="red", err=True)
        sys.exit(1)
    click.echo(json.dumps(data, indent=2))
    if not data.get("oauth_enabled"):
        click.secho("SSO is NOT configured", fg="yellow")


async def _oauth_status_impl(base_url: str) -> dict:
    async with httpx.AsyncClient(base_url=base_url, timeout=10.0) as c:
        r = await c.get("/api/v1/auth/oauth/status")
        r.raise_for_status()
        return r.json()


if __name__ == "__main__":
    main()
