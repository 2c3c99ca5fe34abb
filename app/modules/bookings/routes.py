from fastapi import APIRouter, Depends, Query
from app.database.supabase_client import get_supabase
from app.modules.bookings.schemas import (
    BookingCreate, BookingCreateResponse, BookingListResponse, BookingUpdate, BookingUpdateResponse,
    BookingStats, AvailableSlotsResponse
)
from app.modules.bookings.service import BookingService
from app.core.dependencies import get_current_user_id, get_owned_agent
from supabase import Client
from typing import Dict, Optional

router = APIRouter(prefix="/agents", tags=["bookings"])


def get_booking_service(supabase: Client = Depends(get_supabase)) -> BookingService:
    return BookingService(supabase)


@router.post("/{agent_id}/bookings", response_model=BookingCreateResponse, status_code=201)
async def create_booking(
    agent_id: str,
    booking: BookingCreate,
    service: BookingService = Depends(get_booking_service)
):
    """Book a slot on the agent's calendar (public, used by chat widgets)"""
    return service.create_booking(agent_id, booking)


@router.get("/{agent_id}/bookings", response_model=BookingListResponse)
async def list_bookings(
    agent_id: str,
    status: Optional[str] = None,
    email: Optional[str] = None,
    date_from: Optional[str] = Query(None, alias="from"),
    date_to: Optional[str] = Query(None, alias="to"),
    limit: int = Query(50, ge=1),
    current_user: Dict = Depends(get_current_user_id),
    service: BookingService = Depends(get_booking_service),
    supabase: Client = Depends(get_supabase)
):
    """List bookings for an agent"""
    get_owned_agent(agent_id, current_user["id"], supabase, columns="id, user_id")
    return service.list_bookings(agent_id, status, email, date_from, date_to, limit)


@router.patch("/{agent_id}/bookings", response_model=BookingUpdateResponse)
async def update_booking(
    agent_id: str,
    update: BookingUpdate,
    current_user: Dict = Depends(get_current_user_id),
    service: BookingService = Depends(get_booking_service),
    supabase: Client = Depends(get_supabase)
):
    """Cancel or reschedule a booking"""
    get_owned_agent(agent_id, current_user["id"], supabase, columns="id, user_id")
    return service.update_booking(agent_id, update)


@router.get("/{agent_id}/bookings/stats", response_model=BookingStats)
async def booking_stats(
    agent_id: str,
    date_from: Optional[str] = Query(None, alias="from"),
    date_to: Optional[str] = Query(None, alias="to"),
    current_user: Dict = Depends(get_current_user_id),
    service: BookingService = Depends(get_booking_service),
    supabase: Client = Depends(get_supabase)
):
    get_owned_agent(agent_id, current_user["id"], supabase, columns="id, user_id")
    return service.get_stats(agent_id, date_from, date_to)


@router.get("/{agent_id}/bookings/availability", response_model=AvailableSlotsResponse)
async def booking_availability(
    agent_id: str,
    date_from: Optional[str] = Query(None, alias="from"),
    date_to: Optional[str] = Query(None, alias="to"),
    service: BookingService = Depends(get_booking_service)
):
    """Free slots on the agent's calendar (public)"""
    return service.get_available_slots(agent_id, date_from, date_to)
