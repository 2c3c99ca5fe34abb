# Supabase tables: nlp_agent_requests, nlp_parsing_history, agent_templates
# This file documents the expected database schema
# Actual operations are handled via Supabase SDK in service.py

"""
nlp_agent_requests:
- id: uuid (primary key)
- user_id: uuid
- agent_id: uuid (nullable, set once an agent is created from the request)
- raw_input: text
- status: text (pending | processing | completed | failed)
- parsed_intent: jsonb ({agentType, category, confidence})
- extracted_config: jsonb (validated configuration)
- model_used: text, error_message: text
- processed_at, created_at: timestamp

nlp_parsing_history:
- id: uuid, request_id: uuid
- stage: text (intent_extraction)
- input_text: text, output_data: jsonb
- model_used: text, tokens_used: integer, confidence_score: float

agent_templates:
- id: uuid, name: text, category: text
- keywords: text[]
- is_active: boolean
"""
