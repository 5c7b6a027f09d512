"""Agent directory and task queue — the services behind the gated routes.

Learn: The real implementations (cluster pod enumeration, a Redis work
queue) live outside this service and are handed to create_app(). The
in-memory versions here let the gateway run on its own and give the
tests something deterministic to call.
"""

import itertools
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Optional, Protocol

TASK_QUEUED = "queued"
TASK_RUNNING = "running"
TASK_DONE = "done"
TASK_CANCELLED = "cancelled"
_CANCELLABLE = (TASK_QUEUED, TASK_RUNNING)


class AgentDirectory(Protocol):
    async def list_agents(self) -> list[dict[str, Any]]: ...

    async def get_agent(self, agent_id: str) -> Optional[dict[str, Any]]: ...

    def stream_logs(
        self, agent_id: str, container: Optional[str], lines: int
    ) -> AsyncIterator[str]: ...


class TaskQueue(Protocol):
    async def submit(self, spec: dict[str, Any], user_id: str) -> dict[str, Any]: ...

    async def get(self, task_id: str) -> Optional[dict[str, Any]]: ...

    async def list_for_user(self, user_id: str) -> list[dict[str, Any]]: ...

    async def cancel(self, task_id: str, user_id: str) -> bool: ...

    async def stats(self) -> dict[str, int]: ...


class InMemoryAgentDirectory:
    """Fixed set of agents with canned log lines per container."""

    def __init__(
        self,
        agents: Optional[list[dict[str, Any]]] = None,
        logs: Optional[dict[str, dict[str, list[str]]]] = None,
    ):
        self._agents = {a["id"]: dict(a) for a in (agents or [])}
        self._logs = logs or {}

    async def list_agents(self) -> list[dict[str, Any]]:
        return [dict(a) for a in self._agents.values()]

    async def get_agent(self, agent_id: str) -> Optional[dict[str, Any]]:
        agent = self._agents.get(agent_id)
        return dict(agent) if agent else None

    async def stream_logs(
        self, agent_id: str, container: Optional[str], lines: int
    ) -> AsyncIterator[str]:
        by_container = self._logs.get(agent_id, {})
        if container is None:
            container = next(iter(by_container), None)
        tail = by_container.get(container, []) if container else []
        for line in tail[-lines:] if lines > 0 else []:
            yield line


class InMemoryTaskQueue:
    """Process-local queue; tasks are owned by the user who submitted them."""

    def __init__(self):
        self._tasks: dict[str, dict[str, Any]] = {}
        self._ids = itertools.count(1)

    async def submit(self, spec: dict[str, Any], user_id: str) -> dict[str, Any]:
        task_id = str(next(self._ids))
        task = {
            "id": task_id,
            "user_id": user_id,
            "spec": dict(spec),
            "status": TASK_QUEUED,
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        self._tasks[task_id] = task
        return dict(task)

    async def get(self, task_id: str) -> Optional[dict[str, Any]]:
        task = self._tasks.get(task_id)
        return dict(task) if task else None

    async def list_for_user(self, user_id: str) -> list[dict[str, Any]]:
        return [dict(t) for t in self._tasks.values() if t["user_id"] == user_id]

    async def cancel(self, task_id: str, user_id: str) -> bool:
        task = self._tasks.get(task_id)
        if not task or task["user_id"] != user_id:
            return False
        if task["status"] not in _CANCELLABLE:
            return False
        task["status"] = TASK_CANCELLED
        return True

    async def stats(self) -> dict[str, int]:
        counts = {TASK_QUEUED: 0, TASK_RUNNING: 0, TASK_DONE: 0, TASK_CANCELLED: 0}
        for task in self._tasks.values():
            counts[task["status"]] = counts.get(task["status"], 0) + 1
        counts["total"] = len(self._tasks)
        return counts
