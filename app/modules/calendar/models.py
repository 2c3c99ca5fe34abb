# Supabase table: agent_calendars
# This file documents the expected database schema
# Actual operations are handled via Supabase SDK in service.py

"""
Expected Supabase table structure:
- id: uuid (primary key)
- agent_id: uuid (foreign key to agents.id, unique) - one calendar per agent
- is_active: boolean (default: true)
- booking_duration: integer minutes (default: 30)
- buffer_time: integer minutes between slots (default: 0)
- advance_booking_days: integer (default: 30)
- min_notice_hours: integer (default: 2)
- timezone: text IANA name (default: UTC)
- availability_rules: jsonb, weekday -> list of windows, e.g.
    {"monday": [{"start": "09:00", "end": "17:00"}], "tuesday": []}
- integration_type: text (manual | calendly, default: manual)
- calendly_url: text (nullable)
- send_confirmations: boolean (default: true)
- send_reminders: boolean (default: true)
- reminder_hours_before: integer (default: 24)
- required_fields: jsonb (default: ["name", "email", "phone"])
- created_at: timestamp (default: now())
- updated_at: timestamp (nullable)
"""
