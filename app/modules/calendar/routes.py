from fastapi import APIRouter, Depends
from app.database.supabase_client import get_supabase
from app.modules.calendar.schemas import CalendarConfigRequest, CalendarConfigResponse, CalendarSaveResponse
from app.modules.calendar.service import CalendarService
from app.core.dependencies import get_current_user_id, get_owned_agent
from supabase import Client
from typing import Dict

router = APIRouter(prefix="/agents", tags=["calendar"])


def get_calendar_service(supabase: Client = Depends(get_supabase)) -> CalendarService:
    return CalendarService(supabase)


@router.get("/{agent_id}/calendar", response_model=CalendarConfigResponse)
async def get_calendar(
    agent_id: str,
    service: CalendarService = Depends(get_calendar_service)
):
    """Get an agent's calendar configuration (null when not configured)"""
    return service.get_calendar_config(agent_id)


@router.post("/{agent_id}/calendar", response_model=CalendarSaveResponse)
async def save_calendar(
    agent_id: str,
    config: CalendarConfigRequest,
    current_user: Dict = Depends(get_current_user_id),
    service: CalendarService = Depends(get_calendar_service),
    supabase: Client = Depends(get_supabase)
):
    """Create or update the calendar configuration (owner only)"""
    get_owned_agent(agent_id, current_user["id"], supabase, columns="id, user_id")
    return service.save_calendar_config(agent_id, config)


@router.delete("/{agent_id}/calendar")
async def delete_calendar(
    agent_id: str,
    current_user: Dict = Depends(get_current_user_id),
    service: CalendarService = Depends(get_calendar_service),
    supabase: Client = Depends(get_supabase)
):
    """Remove the calendar configuration (owner only)"""
    get_owned_agent(agent_id, current_user["id"], supabase, columns="id, user_id")
    return service.delete_calendar_config(agent_id)
