from pydantic import BaseModel
from typing import Optional, List, Dict, Any


class AvailabilityWindow(BaseModel):
    start: str
    end: str


class CalendarConfigRequest(BaseModel):
    """Every field is optional; missing or falsy values fall back to the defaults."""
    is_active: Optional[bool] = None
    booking_duration: Optional[int] = None
    buffer_time: Optional[int] = None
    advance_booking_days: Optional[int] = None
    min_notice_hours: Optional[int] = None
    timezone: Optional[str] = None
    availability_rules: Optional[Dict[str, List[AvailabilityWindow]]] = None
    integration_type: Optional[str] = None
    calendly_url: Optional[str] = None
    send_confirmations: Optional[bool] = None
    send_reminders: Optional[bool] = None
    reminder_hours_before: Optional[int] = None
    required_fields: Optional[List[str]] = None


class AgentSummary(BaseModel):
    id: str
    name: Optional[str] = None


class CalendarConfigResponse(BaseModel):
    calendar: Optional[Dict[str, Any]] = None
    agent: AgentSummary


class CalendarSaveResponse(BaseModel):
    success: bool = True
    calendar: Dict[str, Any]
    message: str
