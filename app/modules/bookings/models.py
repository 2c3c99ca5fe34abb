# Supabase tables: bookings, booking_conversations, booking_slots
# This file documents the expected database schema
# Actual operations are handled via Supabase SDK in service.py

"""
bookings:
- id: uuid (primary key)
- agent_id: uuid (foreign key to agents.id)
- agent_calendar_id: uuid (foreign key to agent_calendars.id)
- session_id: text (chat session that produced the booking, "direct" for API calls)
- booking_date: date (YYYY-MM-DD)
- booking_time: time (HH:MM)
- duration_minutes: integer
- timezone: text (default: UTC)
- customer_name, customer_email, customer_phone, customer_notes: text
- custom_fields: jsonb (default: {})
- status: text (pending | confirmed | cancelled | rescheduled | completed | no_show)
- external_booking_id, external_booking_url: text (nullable, Calendly)
- confirmation_sent_at, reminder_sent_at, cancelled_at: timestamp (nullable)
- cancellation_reason: text (nullable)
- created_at, updated_at: timestamp

booking_conversations:
- id: uuid, booking_id: uuid, conversation_id: uuid
- extracted_data: jsonb, confidence_score: numeric

booking_slots:
- id: uuid, agent_id: uuid, agent_calendar_id: uuid
- slot_date: date, slot_time: time, is_available: boolean
"""
