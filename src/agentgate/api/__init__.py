"""API route aggregation.

All routers registered here get mounted in main.py.

Learn: Health and auth routers are open. The agent and task routers
apply require_scope() per route, which implies authentication, so
they don't need a router-level auth dependency on top.
"""

from fastapi import APIRouter

from agentgate.api.agents import router as agents_router
from agentgate.api.auth import router as auth_router
from agentgate.api.health import router as health_router
from agentgate.api.tasks import router as tasks_router

api_router = APIRouter(prefix="/api/v1")

# Open routes, no auth required
api_router.include_router(health_router, tags=["health"])
api_router.include_router(auth_router, tags=["auth"])

# Scope-gated routes
api_router.include_router(agents_router, tags=["agents"])
api_router.include_router(tasks_router, tags=["tasks"])
