"""Task queue API routes.

Learn: Reads need `agent:view`, anything that changes the queue needs
`agent:control`. Tasks are scoped to the submitting user: someone
else's task id behaves exactly like a missing one (404).
"""

from fastapi import APIRouter, Depends, HTTPException, Request

from agentgate.auth.dependencies import CurrentIdentity, require_scope
from agentgate.schemas.task import TaskCreate, TaskRead, TaskStats
from agentgate.services.collaborators import TaskQueue

router = APIRouter(prefix="/tasks")


def _queue(request: Request) -> TaskQueue:
    return request.app.state.task_queue


@router.post("", response_model=TaskRead, status_code=201)
async def submit_task(
    body: TaskCreate,
    identity: CurrentIdentity = Depends(require_scope("agent:control")),
    queue: TaskQueue = Depends(_queue),
):
    """Queue work for an agent."""
    return await queue.submit(body.model_dump(), identity.user_id)


@router.get("", response_model=list[TaskRead])
async def list_tasks(
    identity: CurrentIdentity = Depends(require_scope("agent:view")),
    queue: TaskQueue = Depends(_queue),
):
    """The caller's tasks."""
    return await queue.list_for_user(identity.user_id)


@router.get("/stats", response_model=TaskStats)
async def task_stats(
    identity: CurrentIdentity = Depends(require_scope("agent:view")),
    queue: TaskQueue = Depends(_queue),
):
    return await queue.stats()


@router.get("/{task_id}", response_model=TaskRead)
async def get_task(
    task_id: str,
    identity: CurrentIdentity = Depends(require_scope("agent:view")),
    queue: TaskQueue = Depends(_queue),
):
    task = await queue.get(task_id)
    if not task or task["user_id"] != identity.user_id:
        raise HTTPException(status_code=404, detail="Task not found")
    return task


@router.delete("/{task_id}")
async def cancel_task(
    task_id: str,
    identity: CurrentIdentity = Depends(require_scope("agent:control")),
    queue: TaskQueue = Depends(_queue),
):
    """Cancel one of the caller's queued or running tasks."""
    if not await queue.cancel(task_id, identity.user_id):
        raise HTTPException(status_code=404, detail="Task not found or not cancellable")
    return {"cancelled": True}
