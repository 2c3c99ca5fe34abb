import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from fastapi import HTTPException
from supabase import Client

from app.core.email import EmailService, booking_confirmation_email, booking_cancellation_email
from app.database.supabase_client import fetch_single
from app.modules.analytics.service import log_event
from app.modules.bookings.parser import AvailabilityChecker
from app.modules.bookings.schemas import (
    BookingCreate, BookingCreateResponse, BookingSummary, BookingListResponse, BookingUpdate,
    BookingUpdateResponse, BookingStats, AvailableSlotsResponse
)
from app.modules.calendar.service import CalendarService

logger = logging.getLogger(__name__)

MAX_LIST_LIMIT = 100
BOOKING_STATUSES = ("confirmed", "pending", "cancelled", "completed", "no_show", "rescheduled")


class BookingService:
    def __init__(self, supabase: Client, email_service: EmailService = None):
        self.supabase = supabase
        self.email_service = email_service or EmailService()
        self.calendars = CalendarService(supabase)

    def create_booking(self, agent_id: str, data: BookingCreate) -> BookingCreateResponse:
        if not (data.date and data.time and data.customer_name and data.customer_email):
            raise HTTPException(status_code=400, detail="Missing required booking information")

        calendar = self.calendars.get_active_calendar(agent_id)
        if not calendar:
            raise HTTPException(status_code=404, detail="Calendar booking not available for this agent")

        duration = data.duration_minutes or calendar.get("booking_duration")
        try:
            availability = AvailabilityChecker.is_slot_available(calendar, data.date, data.time, duration)
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid date or time format")
        if not availability["available"]:
            raise HTTPException(
                status_code=409,
                detail={"error": "Time slot not available", "reason": availability.get("reason")}
            )

        existing = self.supabase.table("bookings")\
            .select("id")\
            .eq("agent_id", agent_id)\
            .eq("booking_date", data.date)\
            .eq("booking_time", data.time)\
            .eq("status", "confirmed")\
            .execute()
        if existing.data:
            raise HTTPException(status_code=409, detail="Time slot already booked")

        external_url = None
        if calendar.get("integration_type") == "calendly" and calendar.get("calendly_url"):
            external_url = calendar["calendly_url"]

        try:
            result = self.supabase.table("bookings").insert({
                "agent_id": agent_id,
                "agent_calendar_id": calendar["id"],
                "session_id": data.session_id or "direct",
                "booking_date": data.date,
                "booking_time": data.time,
                "duration_minutes": duration,
                "timezone": data.timezone,
                "customer_name": data.customer_name,
                "customer_email": data.customer_email,
                "customer_phone": data.customer_phone,
                "customer_notes": data.customer_notes,
                "custom_fields": data.custom_fields,
                "status": "pending" if external_url else "confirmed",
                "external_booking_id": None,
                "external_booking_url": external_url,
            }).execute()
        except Exception as e:
            logger.error(f"Error creating booking for agent {agent_id}: {e}")
            raise HTTPException(status_code=500, detail="Failed to create booking")
        if not result.data:
            raise HTTPException(status_code=500, detail="Failed to create booking")
        booking = result.data[0]

        if calendar.get("send_confirmations") and not external_url:
            self._send_confirmation(booking, calendar)

        log_event(self.supabase, agent_id, "booking_interaction", {
            "booking_id": booking["id"],
            "action": "created",
            "integration_type": calendar.get("integration_type"),
        })

        return BookingCreateResponse(
            booking=BookingSummary(
                id=booking["id"],
                date=booking["booking_date"],
                time=booking["booking_time"],
                timezone=booking.get("timezone"),
                duration=booking.get("duration_minutes"),
                status=booking["status"],
                external_url=external_url,
            ),
            message="Please complete your booking using the provided link" if external_url
            else "Booking confirmed! You will receive a confirmation email shortly.",
        )

    def _send_confirmation(self, booking: Dict[str, Any], calendar: Dict[str, Any]) -> None:
        try:
            email = booking_confirmation_email(booking, calendar)
            self.email_service.send(booking["customer_email"], email["subject"], email["text"])
            self.supabase.table("bookings")\
                .update({"confirmation_sent_at": datetime.now(timezone.utc).isoformat()})\
                .eq("id", booking["id"])\
                .execute()
        except Exception as e:
            logger.warning(f"Confirmation email failed for booking {booking['id']}: {e}")

    def list_bookings(self, agent_id: str, status: Optional[str] = None, email: Optional[str] = None,
                      date_from: Optional[str] = None, date_to: Optional[str] = None,
                      limit: int = 50) -> BookingListResponse:
        try:
            query = self.supabase.table("bookings").select("*").eq("agent_id", agent_id)
            if status:
                query = query.eq("status", status)
            if email:
                query = query.eq("customer_email", email)
            if date_from:
                query = query.gte("booking_date", date_from)
            if date_to:
                query = query.lte("booking_date", date_to)
            result = query.order("booking_date")\
                .order("booking_time")\
                .limit(min(limit, MAX_LIST_LIMIT))\
                .execute()
            bookings = result.data or []
            return BookingListResponse(bookings=bookings, count=len(bookings))
        except Exception as e:
            logger.error(f"Error fetching bookings for agent {agent_id}: {e}")
            raise HTTPException(status_code=500, detail="Failed to fetch bookings")

    def update_booking(self, agent_id: str, data: BookingUpdate) -> BookingUpdateResponse:
        """Cancel or reschedule an existing booking"""
        if not data.booking_id or not data.action:
            raise HTTPException(status_code=400, detail="booking_id and action are required")

        booking = fetch_single(
            self.supabase.table("bookings")
            .select("*")
            .eq("id", data.booking_id)
            .eq("agent_id", agent_id)
        )
        if not booking:
            raise HTTPException(status_code=404, detail="Booking not found")

        calendar = None
        if data.action == "cancel":
            updates = {
                "status": "cancelled",
                "cancelled_at": datetime.now(timezone.utc).isoformat(),
                "cancellation_reason": data.cancellation_reason,
            }
        else:
            if not data.new_date or not data.new_time:
                raise HTTPException(status_code=400, detail="new_date and new_time required for rescheduling")
            calendar = fetch_single(
                self.supabase.table("agent_calendars").select("*").eq("id", booking["agent_calendar_id"])
            ) or {}
            try:
                availability = AvailabilityChecker.is_slot_available(
                    calendar, data.new_date, data.new_time, booking.get("duration_minutes")
                )
            except ValueError:
                raise HTTPException(status_code=400, detail="Invalid date or time format")
            if not availability["available"]:
                raise HTTPException(
                    status_code=409,
                    detail={"error": "New time slot not available", "reason": availability.get("reason")}
                )
            updates = {
                "booking_date": data.new_date,
                "booking_time": data.new_time,
                "status": "rescheduled",
            }

        updates["updated_at"] = datetime.now(timezone.utc).isoformat()
        try:
            result = self.supabase.table("bookings")\
                .update(updates)\
                .eq("id", data.booking_id)\
                .execute()
        except Exception as e:
            logger.error(f"Error updating booking {data.booking_id}: {e}")
            raise HTTPException(status_code=500, detail="Failed to update booking")
        if not result.data:
            raise HTTPException(status_code=500, detail="Failed to update booking")
        updated = result.data[0]

        if data.action == "cancel":
            self._send_cancellation(updated, data.cancellation_reason)

        log_event(self.supabase, agent_id, "booking_interaction", {
            "booking_id": data.booking_id,
            "action": data.action,
        })
        return BookingUpdateResponse(
            booking=updated,
            message="Booking cancelled successfully" if data.action == "cancel"
            else "Booking rescheduled successfully",
        )

    def _send_cancellation(self, booking: Dict[str, Any], reason: Optional[str]) -> None:
        calendar = fetch_single(
            self.supabase.table("agent_calendars")
            .select("send_confirmations")
            .eq("id", booking.get("agent_calendar_id"))
        )
        if not calendar or not calendar.get("send_confirmations") or not booking.get("customer_email"):
            return
        try:
            email = booking_cancellation_email(booking, reason)
            self.email_service.send(booking["customer_email"], email["subject"], email["text"])
        except Exception as e:
            logger.warning(f"Cancellation email failed for booking {booking.get('id')}: {e}")

    def get_stats(self, agent_id: str, date_from: Optional[str] = None, date_to: Optional[str] = None) -> BookingStats:
        query = self.supabase.table("bookings").select("status").eq("agent_id", agent_id)
        if date_from:
            query = query.gte("booking_date", date_from)
        if date_to:
            query = query.lte("booking_date", date_to)
        bookings = query.execute().data or []
        counts = {status: 0 for status in BOOKING_STATUSES}
        for booking in bookings:
            if booking.get("status") in counts:
                counts[booking["status"]] += 1
        return BookingStats(total=len(bookings), **counts)

    def get_available_slots(self, agent_id: str, date_from: Optional[str] = None,
                            date_to: Optional[str] = None) -> AvailableSlotsResponse:
        """Free slots between date_from and date_to (defaults: today .. today + advance_booking_days)"""
        calendar = self.calendars.get_active_calendar(agent_id)
        if not calendar:
            raise HTTPException(status_code=404, detail="Calendar booking not available for this agent")
        start = date_from or date.today().isoformat()
        end = date_to or (date.fromisoformat(start) + timedelta(days=calendar.get("advance_booking_days") or 30)).isoformat()
        try:
            booked = self.supabase.table("bookings")\
                .select("booking_date, booking_time")\
                .eq("agent_id", agent_id)\
                .in_("status", ["confirmed", "pending"])\
                .gte("booking_date", start)\
                .lte("booking_date", end)\
                .execute().data or []
            slots = AvailabilityChecker.get_available_slots(calendar, start, end, booked)
        except ValueError:
            raise HTTPException(status_code=400, detail="Dates must be YYYY-MM-DD")
        return AvailableSlotsResponse(slots=slots, count=len(slots), timezone=calendar.get("timezone") or "UTC")

    def link_conversation(self, booking_id: str, conversation_id: str, extracted_data: Dict[str, Any],
                          confidence: float) -> None:
        try:
            self.supabase.table("booking_conversations").insert({
                "booking_id": booking_id,
                "conversation_id": conversation_id,
                "extracted_data": extracted_data,
                "confidence_score": confidence,
            }).execute()
        except Exception as e:
            logger.warning(f"Failed to link booking {booking_id} to conversation {conversation_id}: {e}")

    def get_upcoming_unreminded(self, until: date) -> List[Dict[str, Any]]:
        result = self.supabase.table("bookings")\
            .select("*")\
            .eq("status", "confirmed")\
            .gte("booking_date", date.today().isoformat())\
            .lte("booking_date", until.isoformat())\
            .is_("reminder_sent_at", "null")\
            .execute()
        return result.data or []
