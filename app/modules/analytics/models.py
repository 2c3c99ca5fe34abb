# Supabase table: analytics
# This file documents the expected database schema
# Actual operations are handled via Supabase SDK in service.py

"""
Expected Supabase table structure:
- id: uuid (primary key)
- agent_id: uuid (foreign key to agents.id)
- event_type: text (conversation | booking_interaction | webhook_invocation | agent_created | ...)
- event_data: jsonb (default: {})
- tokens_used: integer (default: 0)
- response_time_ms: integer (nullable)
- success: boolean (default: true)
- error_message: text (nullable)
- created_at: timestamp (default: now())
- deleted_at: timestamp (nullable) - soft delete marker used by retention cleanup
"""
