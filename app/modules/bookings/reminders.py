import asyncio
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.config import settings
from app.core.email import EmailService, booking_reminder_email
from app.database.supabase_client import SupabaseClient
from app.modules.bookings.service import BookingService

logger = logging.getLogger(__name__)

# Largest reminder window looked ahead on each pass
MAX_REMINDER_DAYS = 7


def booking_start(booking: Dict[str, Any]) -> Optional[datetime]:
    try:
        tz = ZoneInfo(booking.get("timezone") or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        tz = timezone.utc
    try:
        naive = datetime.strptime(f"{booking['booking_date']} {str(booking['booking_time'])[:5]}", "%Y-%m-%d %H:%M")
    except (KeyError, ValueError):
        return None
    return naive.replace(tzinfo=tz)


def is_due(booking: Dict[str, Any], hours_before: int, now: Optional[datetime] = None) -> bool:
    start = booking_start(booking)
    if start is None:
        return False
    now = now or datetime.now(timezone.utc)
    return now < start <= now + timedelta(hours=hours_before)


def send_due_reminders(supabase, email_service: EmailService = None, now: Optional[datetime] = None) -> int:
    """Send reminder emails for confirmed bookings inside their calendar's reminder window"""
    email_service = email_service or EmailService()
    service = BookingService(supabase, email_service)
    now = now or datetime.now(timezone.utc)
    calendars: Dict[str, Optional[Dict[str, Any]]] = {}
    sent = 0
    for booking in service.get_upcoming_unreminded(date.today() + timedelta(days=MAX_REMINDER_DAYS)):
        calendar_id = booking.get("agent_calendar_id")
        if calendar_id not in calendars:
            result = supabase.table("agent_calendars")\
                .select("id, send_reminders, reminder_hours_before")\
                .eq("id", calendar_id)\
                .execute()
            calendars[calendar_id] = result.data[0] if result.data else None
        calendar = calendars[calendar_id]
        if not calendar or not calendar.get("send_reminders") or not booking.get("customer_email"):
            continue
        if not is_due(booking, calendar.get("reminder_hours_before") or 24, now):
            continue
        try:
            email = booking_reminder_email(booking)
            email_service.send(booking["customer_email"], email["subject"], email["text"])
            supabase.table("bookings")\
                .update({"reminder_sent_at": now.isoformat()})\
                .eq("id", booking["id"])\
                .execute()
            sent += 1
        except Exception as e:
            logger.error(f"Error sending reminder for booking {booking['id']}: {str(e)}")
    return sent


async def check_and_send_reminders():
    try:
        sent = send_due_reminders(SupabaseClient.get_service_client())
        if sent:
            logger.info(f"Sent {sent} booking reminder(s)")
        else:
            logger.debug("No booking reminders due")
    except Exception as e:
        logger.error(f"Error in reminder scheduler: {str(e)}")


async def reminder_scheduler_loop():
    """Background task that periodically sends booking reminders"""
    while True:
        await check_and_send_reminders()
        await asyncio.sleep(settings.reminder_interval_seconds)
