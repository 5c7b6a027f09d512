"""Health check endpoint.

Learn: Simple GET endpoint that verifies the server is running and
its dependencies (database, and Redis when it backs the state store)
are reachable.
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from agentgate import __version__
from agentgate.db.engine import get_db

router = APIRouter()


@router.get("/health")
async def health_check(request: Request, db: AsyncSession = Depends(get_db)):
    """Check server health and dependency connectivity."""
    settings = request.app.state.settings
    checks = {
        "server": "ok",
        "version": __version__,
        "auth_mode": request.app.state.authenticator.mode,
    }

    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        checks["database"] = f"error: {e.__class__.__name__}"

    if settings.state_backend == "redis":
        try:
            from agentgate.db.redis import get_redis

            await get_redis().ping()
            checks["redis"] = "ok"
        except Exception as e:
            checks["redis"] = f"error: {e.__class__.__name__}"

    status = "healthy" if all(
        v == "ok" for k, v in checks.items() if k not in ("version", "auth_mode")
    ) else "degraded"

    return {"status": status, **checks}
