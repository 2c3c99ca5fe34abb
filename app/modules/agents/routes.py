from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from app.database.supabase_client import get_supabase
from app.modules.agents.schemas import (
    AgentCreate, AgentUpdate, AgentUpdateResponse, AgentListResponse, AgentDependencies
)
from app.modules.agents.service import AgentService
from app.core.cache import CACHE_CONFIG, generate_etag, handle_conditional_request
from app.core.dependencies import get_current_user_id
from supabase import Client
from typing import Dict

router = APIRouter(tags=["agents"])


def get_agent_service(supabase: Client = Depends(get_supabase)) -> AgentService:
    return AgentService(supabase)


@router.post("/agents", status_code=201)
async def create_agent(
    agent_data: AgentCreate,
    current_user: Dict = Depends(get_current_user_id),
    service: AgentService = Depends(get_agent_service)
):
    """Create a new agent for the current user"""
    return {"success": True, "agent": service.create_agent(agent_data, current_user["id"])}


@router.get("/user_agents", response_model=AgentListResponse)
async def list_user_agents(
    current_user: Dict = Depends(get_current_user_id),
    service: AgentService = Depends(get_agent_service)
):
    """List the current user's agents, newest first"""
    return AgentListResponse(agents=service.list_user_agents(current_user["id"]))


@router.get("/agents/{agent_id}")
async def get_agent(
    agent_id: str,
    request: Request,
    current_user: Dict = Depends(get_current_user_id),
    service: AgentService = Depends(get_agent_service)
):
    """Get agent by ID (owner only). Supports If-None-Match."""
    agent = service.get_agent(agent_id, current_user["id"])
    not_modified = handle_conditional_request(request, agent)
    if not_modified is not None:
        return not_modified
    return JSONResponse(
        content=agent,
        headers={"ETag": generate_etag(agent), "Cache-Control": CACHE_CONFIG["short"]},
    )


@router.patch("/agents/{agent_id}", response_model=AgentUpdateResponse)
async def update_agent(
    agent_id: str,
    agent_data: AgentUpdate,
    current_user: Dict = Depends(get_current_user_id),
    service: AgentService = Depends(get_agent_service)
):
    """Update name, description, purpose, is_active or settings"""
    return service.update_agent(agent_id, current_user["id"], agent_data)


@router.delete("/agents/{agent_id}")
async def delete_agent(
    agent_id: str,
    confirm: bool = False,
    current_user: Dict = Depends(get_current_user_id),
    service: AgentService = Depends(get_agent_service)
):
    """Delete agent and all dependent data; requires ?confirm=true"""
    if not confirm:
        raise HTTPException(
            status_code=400,
            detail={"error": "Confirmation required", "message": "Add ?confirm=true to delete this agent"}
        )
    service.delete_agent(agent_id, current_user["id"])
    return {"success": True, "message": "Agent deleted successfully"}


@router.get("/agents/{agent_id}/dependencies", response_model=AgentDependencies)
async def get_agent_dependencies(
    agent_id: str,
    current_user: Dict = Depends(get_current_user_id),
    service: AgentService = Depends(get_agent_service)
):
    """Rows that reference the agent, shown before deletion"""
    return service.get_dependencies(agent_id, current_user["id"])
