# Supabase table: agents
# This file documents the expected database schema
# Actual operations are handled via Supabase SDK in service.py

"""
Expected Supabase table structure:
- id: uuid (primary key)
- user_id: uuid (foreign key to auth.users.id, not null) - owner
- name: text (not null, max 100 chars)
- description: text (nullable)
- purpose: text (nullable) - website | instagram | messenger | calendar | general
- domain: text (nullable) - supportservice | sales | creator | business | developer
- tone: text (default: friendly)
- persona: text (nullable)
- interface: text (nullable) - channel the agent is deployed on
- model: text (default: gpt-4o-mini)
- temperature: numeric (default: 0.7)
- max_tokens: integer (default: 1000)
- system_prompt: text (nullable)
- response_format: text (default: text)
- tools: jsonb (default: [])
- services: jsonb (default: [])
- service_config: jsonb (default: {})
- settings: jsonb (default: {})
- metadata: jsonb (default: {})
- sandbox_url: text (nullable)
- is_active: boolean (default: true)
- is_public: boolean (default: false) - public agents allow anonymous knowledge search
- use_platform_key: boolean (default: true)
- api_key_id: uuid (nullable, foreign key to user_api_keys.id)
- api_key_provider: text (default: openai)
- created_at: timestamp (default: now())
- updated_at: timestamp (nullable)

Dependent tables removed by the delete cascade (children first):
sms_conversations, nlp_feedback, nlp_agent_requests, analytics, conversations,
webhook_invocations, agent_webhooks, knowledge_vectors, knowledge_sources,
test_sessions/test_analytics/test_invitations -> test_accounts,
booking_conversations -> bookings, booking_slots, agent_calendars,
agent_sms_config. workflows.agent_id is set to null.
"""
