# Supabase table: conversations
# This file documents the expected database schema
# Actual operations are handled via Supabase SDK in history.py

"""
conversations:
- id: uuid (primary key)
- agent_id: uuid (foreign key to agents.id)
- session_id: text (widget, webhook or test session id)
- user_message: text
- agent_response: text
- metadata: jsonb (model, tokens_used, response_time_ms, api_key_source,
  knowledge_sources, booking_context, ...)
- created_at: timestamp
"""
