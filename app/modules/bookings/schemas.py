from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any, Literal


class BookingCreate(BaseModel):
    date: Optional[str] = None
    time: Optional[str] = None
    timezone: str = "UTC"
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_notes: Optional[str] = None
    session_id: Optional[str] = None
    duration_minutes: Optional[int] = None
    custom_fields: Dict[str, Any] = Field(default_factory=dict)


class BookingSummary(BaseModel):
    id: str
    date: str
    time: str
    timezone: Optional[str] = None
    duration: Optional[int] = None
    status: str
    external_url: Optional[str] = None


class BookingCreateResponse(BaseModel):
    success: bool = True
    booking: BookingSummary
    message: str


class BookingListResponse(BaseModel):
    bookings: List[Dict[str, Any]]
    count: int


class BookingUpdate(BaseModel):
    booking_id: Optional[str] = None
    action: Optional[Literal["cancel", "reschedule"]] = None
    new_date: Optional[str] = None
    new_time: Optional[str] = None
    cancellation_reason: Optional[str] = None


class BookingUpdateResponse(BaseModel):
    success: bool = True
    booking: Dict[str, Any]
    message: str


class BookingStats(BaseModel):
    total: int
    confirmed: int
    pending: int
    cancelled: int
    completed: int
    no_show: int
    rescheduled: int


class AvailableSlotsResponse(BaseModel):
    slots: List[Dict[str, str]]
    count: int
    timezone: str
