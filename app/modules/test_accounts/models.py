# Supabase tables: test_accounts, test_sessions, test_invitations, test_analytics
# This file documents the expected database schema
# Actual operations are handled via Supabase SDK in service.py and sessions.py

"""
test_accounts:
- id: uuid (primary key)
- agent_id: uuid (foreign key to agents.id)
- user_id: uuid (owner of the agent)
- name, email: text (email stored lower-case, unique per agent)
- access_token: text ("test_" + 20 chars)
- status: text (invited | active | suspended | expired)
- is_active: boolean
- expires_at: timestamp
- max_sessions: integer (1..1000, default: 100)
- max_messages_per_session: integer (default: 50)
- sessions_count, messages_count: integer
- permissions: jsonb ({can_view_history, can_export_data, can_reset_session})
- notes: text, metadata: jsonb
- first_accessed_at, last_active_at, created_at, updated_at: timestamp

test_sessions:
- id: uuid, test_account_id: uuid, agent_id: uuid
- session_id: text ("test-{ms}-{9 chars}")
- status: text (active | completed)
- user_agent, ip_address, device_type, browser: text
- messages_count: integer
- rating: integer (nullable), feedback_text: text (nullable)
- started_at, completed_at: timestamp, duration_seconds: integer

test_invitations:
- id: uuid, test_account_id: uuid, agent_id: uuid
- email, invitation_token ("inv_" + 20 chars), email_subject: text
- status: text (pending | sent | accepted | failed)
- error_message: text, sent_at, accepted_at, expires_at: timestamp

test_analytics:
- id: uuid, test_account_id: uuid, test_session_id: uuid (nullable), agent_id: uuid
- event_type: text (session_started | message_sent | session_ended)
- event_data: jsonb, tokens_used: integer, response_time_ms: integer
"""
