"""
ai-spot-backend - Booking Tests
===============================

Parser, availability, reminders and the /agents/{id}/bookings routes.
"""

from datetime import date, datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from app.modules.bookings.parser import (
    AvailabilityChecker, BookingParser, TimezoneConverter, WEEKDAYS, days_until_weekday
)
from app.modules.bookings.reminders import is_due, send_due_reminders

# 2024-05-01 is a Wednesday
TODAY = date(2024, 5, 1)
ALL_WEEK = {day: [{"start": "09:00", "end": "17:00"}] for day in WEEKDAYS}


@pytest.fixture
def calendar(fake_supabase, agent):
    return fake_supabase.seed("agent_calendars", {
        "id": "cal-1",
        "agent_id": agent["id"],
        "integration_type": "built_in",
        "is_active": True,
        "booking_duration": 30,
        "buffer_time": 0,
        "advance_booking_days": 30,
        "timezone": "UTC",
        "availability_rules": ALL_WEEK,
        "send_confirmations": True,
        "send_reminders": True,
        "reminder_hours_before": 24,
    })[0]


def booking_row(agent, calendar, **overrides):
    row = {
        "agent_id": agent["id"],
        "agent_calendar_id": calendar["id"],
        "session_id": "direct",
        "booking_date": "2030-05-06",
        "booking_time": "10:00",
        "duration_minutes": 30,
        "timezone": "UTC",
        "customer_name": "Jane Doe",
        "customer_email": "jane@example.com",
        "status": "confirmed",
        "reminder_sent_at": None,
    }
    row.update(overrides)
    return row


# =============================================================================
# Parser
# =============================================================================

class TestBookingParser:
    """Field extraction from free-form messages."""

    def test_full_request(self):
        parser = BookingParser(today=TODAY)

        result = parser.parse_booking_request(
            "Can I book a meeting next friday at 3pm? My name is Jane Doe, email Jane@Example.com"
        )

        assert result["date"] == "2024-05-03"
        assert result["time"] == "15:00"
        assert result["name"] == "Jane Doe"
        assert result["email"] == "jane@example.com"
        assert result["timezone"] == "UTC"
        assert result["isComplete"] is True
        assert result["confidence"] == pytest.approx(0.9)

    def test_explicit_timezone_counts_towards_confidence(self):
        result = BookingParser(today=TODAY).parse_booking_request("tomorrow at 10:30 am EST")

        assert result["date"] == "2024-05-02"
        assert result["time"] == "10:30"
        assert result["timezone"] == "America/New_York"
        assert result["isComplete"] is False
        assert result["confidence"] == pytest.approx(0.55)

    @pytest.mark.parametrize("message,expected", [
        ("on 2024-06-15 please", "2024-06-15"),
        ("06/15/2024 works", "2024-06-15"),
        ("June 15th is fine", "2024-06-15"),
        ("15 june works", "2024-06-15"),
        ("2024-02-30", None),
    ])
    def test_dates(self, message, expected):
        assert BookingParser(today=TODAY).extract_date(message) == expected

    @pytest.mark.parametrize("message,expected", [
        ("at 14:00", "14:00"),
        ("around 12am", "00:00"),
        ("12pm", "12:00"),
        ("4:30 pm", "16:30"),
        ("in the afternoon", "14:00"),
        ("whenever", None),
    ])
    def test_times(self, message, expected):
        assert BookingParser(today=TODAY).extract_time(message) == expected

    def test_phone_and_notes(self):
        parser = BookingParser(today=TODAY)

        assert parser.extract_phone("phone: 555-123-4567") == "5551234567"
        assert parser.extract_notes("Notes: bring the contract") == "bring the contract"

    def test_weekday_is_never_today(self):
        assert days_until_weekday(2, TODAY) == 7
        assert days_until_weekday(4, TODAY) == 2

    @pytest.mark.parametrize("message,expected", [
        ("I want to book a demo", True),
        ("tomorrow at 3pm", True),
        ("hello there", False),
    ])
    def test_booking_intent(self, message, expected):
        assert BookingParser.is_booking_intent(message) is expected

    @pytest.mark.parametrize("message,expected", [
        ("yes", True),
        ("Looks good, go ahead", True),
        ("what are your prices", False),
    ])
    def test_confirmation_intent(self, message, expected):
        assert BookingParser.is_confirmation_intent(message) is expected


class TestAvailability:
    """Slot checks against weekday windows."""

    CALENDAR = {
        "availability_rules": {"monday": [{"start": "09:00", "end": "11:00"}]},
        "booking_duration": 30,
        "buffer_time": 0,
    }

    def test_slot_inside_window(self):
        assert AvailabilityChecker.is_slot_available(self.CALENDAR, "2024-05-06", "09:30") == {"available": True}

    def test_window_end_is_exclusive(self):
        result = AvailabilityChecker.is_slot_available(self.CALENDAR, "2024-05-06", "11:00")
        assert result == {"available": False, "reason": "Outside available hours"}

    def test_day_without_windows(self):
        result = AvailabilityChecker.is_slot_available(self.CALENDAR, "2024-05-07", "10:00")
        assert result["reason"] == "No availability on this day"

    def test_slots_skip_booked_times(self):
        slots = AvailabilityChecker.get_available_slots(
            self.CALENDAR, "2024-05-06", "2024-05-07",
            booked=[{"booking_date": "2024-05-06", "booking_time": "09:30:00"}],
        )
        assert [s["time"] for s in slots] == ["09:00", "10:00", "10:30"]

    def test_buffer_spaces_slots(self):
        calendar = dict(self.CALENDAR, buffer_time=15)
        slots = AvailabilityChecker.get_available_slots(calendar, "2024-05-06", "2024-05-06")
        assert [s["time"] for s in slots] == ["09:00", "09:45", "10:30"]

    def test_timezone_conversion(self):
        converted = TimezoneConverter.convert(datetime(2024, 5, 6, 9, 0), "America/New_York", "UTC")
        assert converted.hour == 13


# =============================================================================
# Reminders
# =============================================================================

class TestReminders:
    """Reminder window and the sweep over upcoming bookings."""

    def test_due_window(self):
        booking = {"booking_date": "2024-05-06", "booking_time": "10:00", "timezone": "UTC"}

        assert is_due(booking, 24, datetime(2024, 5, 5, 12, 0, tzinfo=timezone.utc)) is True
        assert is_due(booking, 24, datetime(2024, 5, 4, 12, 0, tzinfo=timezone.utc)) is False
        assert is_due(booking, 24, datetime(2024, 5, 6, 10, 0, tzinfo=timezone.utc)) is False

    def test_sends_only_due_bookings(self, fake_supabase, agent, calendar):
        tomorrow = (date.today() + timedelta(days=1)).isoformat()
        quiet = fake_supabase.seed("agent_calendars", dict(calendar, id="cal-2", send_reminders=False))[0]
        due, already_sent, silent = fake_supabase.seed(
            "bookings",
            booking_row(agent, calendar, booking_date=tomorrow),
            booking_row(agent, calendar, booking_date=tomorrow, reminder_sent_at="2024-01-01T00:00:00+00:00"),
            booking_row(agent, quiet, booking_date=tomorrow),
        )
        email = MagicMock()
        now = datetime.combine(date.today() + timedelta(days=1), datetime.min.time(), tzinfo=timezone.utc)

        sent = send_due_reminders(fake_supabase, email_service=email, now=now)

        assert sent == 1
        email.send.assert_called_once()
        assert email.send.call_args.args[0] == "jane@example.com"
        assert due["reminder_sent_at"] == now.isoformat()
        assert silent["reminder_sent_at"] is None


# =============================================================================
# Routes
# =============================================================================

class TestCreateBooking:
    """POST /agents/{id}/bookings"""

    def test_confirmed_booking(self, anon_client, fake_supabase, calendar):
        response = anon_client.post("/api/v1/agents/agent-1/bookings", json={
            "date": "2030-05-06",
            "time": "10:00",
            "customer_name": "Jane Doe",
            "customer_email": "jane@example.com",
        })

        assert response.status_code == 201
        data = response.json()
        assert data["booking"]["status"] == "confirmed"
        assert data["booking"]["duration"] == 30
        assert data["message"].startswith("Booking confirmed!")
        row = fake_supabase.rows("bookings")[0]
        assert row["session_id"] == "direct"
        assert row["confirmation_sent_at"] is not None
        events = fake_supabase.rows("analytics")
        assert events[0]["event_type"] == "booking_interaction"
        assert events[0]["event_data"]["action"] == "created"

    def test_calendly_booking_is_pending(self, anon_client, fake_supabase, calendar):
        calendar.update(integration_type="calendly", calendly_url="https://calendly.com/acme/30min")

        response = anon_client.post("/api/v1/agents/agent-1/bookings", json={
            "date": "2030-05-06", "time": "10:00", "customer_name": "Jane", "customer_email": "j@example.com",
        })

        assert response.status_code == 201
        booking = response.json()["booking"]
        assert booking["status"] == "pending"
        assert booking["external_url"] == "https://calendly.com/acme/30min"

    def test_missing_fields(self, anon_client, calendar):
        response = anon_client.post("/api/v1/agents/agent-1/bookings", json={"date": "2030-05-06"})

        assert response.status_code == 400
        assert response.json()["error"] == "Missing required booking information"

    def test_no_calendar(self, anon_client, agent):
        response = anon_client.post("/api/v1/agents/agent-1/bookings", json={
            "date": "2030-05-06", "time": "10:00", "customer_name": "Jane", "customer_email": "j@example.com",
        })

        assert response.status_code == 404

    def test_outside_hours(self, anon_client, calendar):
        response = anon_client.post("/api/v1/agents/agent-1/bookings", json={
            "date": "2030-05-06", "time": "20:00", "customer_name": "Jane", "customer_email": "j@example.com",
        })

        assert response.status_code == 409
        assert response.json()["reason"] == "Outside available hours"

    def test_slot_taken(self, anon_client, fake_supabase, agent, calendar):
        fake_supabase.seed("bookings", booking_row(agent, calendar))

        response = anon_client.post("/api/v1/agents/agent-1/bookings", json={
            "date": "2030-05-06", "time": "10:00", "customer_name": "Jane", "customer_email": "j@example.com",
        })

        assert response.status_code == 409
        assert response.json()["error"] == "Time slot already booked"


class TestManageBookings:
    """Owner-only listing, updates and stats."""

    def test_list_with_filters(self, client, fake_supabase, agent, calendar):
        fake_supabase.seed(
            "bookings",
            booking_row(agent, calendar, booking_time="11:00"),
            booking_row(agent, calendar, booking_time="09:00"),
            booking_row(agent, calendar, status="cancelled"),
        )

        response = client.get("/api/v1/agents/agent-1/bookings", params={"status": "confirmed"})

        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 2
        assert [b["booking_time"] for b in data["bookings"]] == ["09:00", "11:00"]

    def test_list_foreign_agent(self, client, fake_supabase, agent):
        agent["user_id"] = "someone-else"

        response = client.get("/api/v1/agents/agent-1/bookings")

        assert response.status_code == 404

    def test_cancel(self, client, fake_supabase, agent, calendar):
        booking = fake_supabase.seed("bookings", booking_row(agent, calendar))[0]

        response = client.patch("/api/v1/agents/agent-1/bookings", json={
            "booking_id": booking["id"], "action": "cancel", "cancellation_reason": "Sick",
        })

        assert response.status_code == 200
        assert response.json()["message"] == "Booking cancelled successfully"
        assert booking["status"] == "cancelled"
        assert booking["cancellation_reason"] == "Sick"

    def test_reschedule(self, client, fake_supabase, agent, calendar):
        booking = fake_supabase.seed("bookings", booking_row(agent, calendar))[0]

        response = client.patch("/api/v1/agents/agent-1/bookings", json={
            "booking_id": booking["id"], "action": "reschedule", "new_date": "2030-05-07", "new_time": "11:00",
        })

        assert response.status_code == 200
        assert booking["status"] == "rescheduled"
        assert booking["booking_date"] == "2030-05-07"

    def test_reschedule_requires_new_slot(self, client, fake_supabase, agent, calendar):
        booking = fake_supabase.seed("bookings", booking_row(agent, calendar))[0]

        response = client.patch("/api/v1/agents/agent-1/bookings", json={
            "booking_id": booking["id"], "action": "reschedule",
        })

        assert response.status_code == 400

    def test_unknown_booking(self, client, agent, calendar):
        response = client.patch("/api/v1/agents/agent-1/bookings", json={
            "booking_id": "missing", "action": "cancel",
        })

        assert response.status_code == 404

    def test_stats(self, client, fake_supabase, agent, calendar):
        fake_supabase.seed(
            "bookings",
            booking_row(agent, calendar),
            booking_row(agent, calendar, status="cancelled"),
            booking_row(agent, calendar, status="no_show"),
        )

        response = client.get("/api/v1/agents/agent-1/bookings/stats")

        assert response.status_code == 200
        stats = response.json()
        assert stats["total"] == 3
        assert stats["confirmed"] == 1
        assert stats["no_show"] == 1
        assert stats["rescheduled"] == 0


class TestAvailabilityRoute:
    """GET /agents/{id}/bookings/availability"""

    def test_free_slots(self, anon_client, fake_supabase, agent, calendar):
        calendar.update(booking_duration=60, availability_rules={
            day: [{"start": "09:00", "end": "12:00"}] for day in WEEKDAYS
        })
        fake_supabase.seed("bookings", booking_row(agent, calendar, booking_time="10:00:00"))

        response = anon_client.get("/api/v1/agents/agent-1/bookings/availability",
                                   params={"from": "2030-05-06", "to": "2030-05-06"})

        assert response.status_code == 200
        data = response.json()
        assert [s["time"] for s in data["slots"]] == ["09:00", "11:00"]
        assert data["timezone"] == "UTC"

    def test_bad_dates(self, anon_client, calendar):
        response = anon_client.get("/api/v1/agents/agent-1/bookings/availability",
                                   params={"from": "soon", "to": "later"})

        assert response.status_code == 400
