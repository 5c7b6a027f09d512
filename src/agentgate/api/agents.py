"""Agent directory API routes — all read-only, all need `agent:view`."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import StreamingResponse

from agentgate.auth.dependencies import require_scope
from agentgate.services.collaborators import AgentDirectory

router = APIRouter(prefix="/agents", dependencies=[Depends(require_scope("agent:view"))])


def _directory(request: Request) -> AgentDirectory:
    return request.app.state.agent_directory


@router.get("")
async def list_agents(directory: AgentDirectory = Depends(_directory)):
    return await directory.list_agents()


@router.get("/{agent_id}")
async def get_agent(agent_id: str, directory: AgentDirectory = Depends(_directory)):
    agent = await directory.get_agent(agent_id)
    if not agent:
        raise HTTPException(status_code=404, detail="Agent not found")
    return agent


@router.get("/{agent_id}/logs")
async def agent_logs(
    agent_id: str,
    container: Optional[str] = Query(None),
    lines: int = Query(100, ge=1, le=5000),
    directory: AgentDirectory = Depends(_directory),
):
    """Tail of an agent container's log, streamed as plain text."""
    if not await directory.get_agent(agent_id):
        raise HTTPException(status_code=404, detail="Agent not found")

    async def _lines():
        async for line in directory.stream_logs(agent_id, container, lines):
            yield line + "\n"

    return StreamingResponse(_lines(), media_type="text/plain")
