# Supabase tables: agent_webhooks, webhook_invocations
# This file documents the expected database schema
# Actual operations are handled via Supabase SDK in service.py and invoker.py

"""
agent_webhooks:
- id: uuid (primary key)
- agent_id: uuid (foreign key to agents.id)
- name: text (1..100 chars)
- description: text
- webhook_key: text (unique, "wh_" + 32 chars)
- webhook_url: text ({API_URL}/api/v1/webhooks/{webhook_key})
- requires_auth: boolean
- auth_token: text (nullable, "sk_" + 48 chars)
- rate_limit: integer (requests per minute per client IP, 1..10000, default: 100)
- allowed_origins: text[]
- is_active: boolean (default: true)
- created_at, updated_at: timestamp

webhook_invocations:
- id: uuid (primary key)
- agent_webhook_id: uuid (foreign key to agent_webhooks.id)
- agent_id: uuid
- request_method: text
- request_headers: jsonb (authorization redacted)
- request_body: jsonb
- response_status: integer
- response_body: jsonb (nullable)
- response_time_ms: integer
- ip_address, user_agent: text
- success: boolean
- error_message: text (nullable)
- created_at: timestamp
"""
