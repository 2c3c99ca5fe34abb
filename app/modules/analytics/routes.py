from fastapi import APIRouter, Depends, Query
from app.database.supabase_client import get_supabase
from app.modules.analytics.schemas import (
    AnalyticsEventCreate, AnalyticsListResponse, AnalyticsEventResponse, AnalyticsCleanupResponse
)
from app.modules.analytics.service import AnalyticsService
from app.core.dependencies import get_current_user_id, get_owned_agent
from supabase import Client
from typing import Dict, Optional

router = APIRouter(prefix="/agents", tags=["analytics"])


def get_analytics_service(supabase: Client = Depends(get_supabase)) -> AnalyticsService:
    return AnalyticsService(supabase)


@router.get("/{agent_id}/analytics", response_model=AnalyticsListResponse)
async def list_analytics(
    agent_id: str,
    start: Optional[str] = None,
    end: Optional[str] = None,
    limit: int = Query(1000, ge=1, le=5000),
    current_user: Dict = Depends(get_current_user_id),
    service: AnalyticsService = Depends(get_analytics_service),
    supabase: Client = Depends(get_supabase)
):
    """List analytics events for an agent with aggregated metrics (owner only)"""
    get_owned_agent(agent_id, current_user["id"], supabase)
    return service.list_events(agent_id, start=start, end=end, limit=limit)


@router.post("/{agent_id}/analytics", response_model=AnalyticsEventResponse)
async def create_analytics_event(
    agent_id: str,
    event: AnalyticsEventCreate,
    current_user: Dict = Depends(get_current_user_id),
    service: AnalyticsService = Depends(get_analytics_service),
    supabase: Client = Depends(get_supabase)
):
    """Log a custom analytics event"""
    get_owned_agent(agent_id, current_user["id"], supabase)
    return service.create_event(agent_id, event)


@router.delete("/{agent_id}/analytics", response_model=AnalyticsCleanupResponse)
async def cleanup_analytics(
    agent_id: str,
    days: int = Query(90, ge=0),
    current_user: Dict = Depends(get_current_user_id),
    service: AnalyticsService = Depends(get_analytics_service),
    supabase: Client = Depends(get_supabase)
):
    """Soft-delete analytics older than `days`"""
    get_owned_agent(agent_id, current_user["id"], supabase)
    return service.cleanup(agent_id, days)
