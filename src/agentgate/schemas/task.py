"""Pydantic schemas for queued agent tasks.

Learn: Separate schemas for create/read keeps the API clean.
- TaskCreate: what you POST to queue work for an agent
- TaskRead: what the API returns
"""

from typing import Any, Optional

from pydantic import BaseModel, Field


class TaskCreate(BaseModel):
    agent_id: str = Field(..., min_length=1, max_length=255)
    instruction: str = Field(..., min_length=1, max_length=10_000)
    params: dict[str, Any] = Field(default_factory=dict)


class TaskRead(BaseModel):
    id: str
    user_id: str
    spec: dict[str, Any]
    status: str
    created_at: Optional[str] = None


class TaskStats(BaseModel):
    queued: int = 0
    running: int = 0
    done: int = 0
    cancelled: int = 0
    total: int = 0
