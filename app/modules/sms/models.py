# Supabase tables: agent_sms_config, sms_conversations
# This file documents the expected database schema
# Actual operations are handled via Supabase SDK in service.py

"""
agent_sms_config:
- id: uuid (primary key)
- agent_id: uuid (foreign key to agents.id, one config per agent)
- user_id: uuid (owner; the agent's API key is resolved for this user)
- provider: text (twilio | msg91 | textlocal | gupshup)
- webhook_secret: text (unique, 64 hex chars)
- webhook_url: text ({API_URL}/api/v1/sms/webhook/{webhook_secret})
- is_active: boolean (default: false until the connection is tested)
- twilio_account_sid, twilio_auth_token, twilio_phone_number: text
- msg91_auth_key, msg91_sender_id: text; msg91_route: text (default: transactional)
- textlocal_api_key, textlocal_sender: text
- gupshup_api_key, gupshup_app_id: text
- auto_reply_enabled: boolean (default: true)
- greeting_message, fallback_message: text
- max_response_length: integer (default: 1600)
- rate_limit_per_number: integer (incoming messages per phone number per hour, default: 10)
- total_messages_received, total_messages_sent: integer
- created_at, updated_at: timestamp

sms_conversations:
- id: uuid (primary key)
- agent_id: uuid
- sms_config_id: uuid (foreign key to agent_sms_config.id)
- phone_number: text
- country_code: text
- message_type: text (incoming | outgoing)
- message_body: text
- message_sid: text (provider message id, nullable)
- status: text (received | rate_limited | sent | failed)
- error_message: text (nullable)
- tokens_used, response_time_ms: integer (outgoing only)
- session_id: text ("sms_" + digits of the phone number)
- conversation_context: jsonb (knowledge_used, incoming_message_id, api_key_source)
- created_at: timestamp
"""
