# Supabase tables: knowledge_sources, knowledge_vectors
# This file documents the expected database schema
# Actual operations are handled via Supabase SDK in service.py

"""
knowledge_sources:
- id: uuid (primary key)
- agent_id: uuid (foreign key to agents.id)
- source_type: text (pdf | text | url | instruction)
- source_url: text (nullable, url sources)
- file_name: text (nullable, file and instruction sources)
- content: text (extracted, cleaned text)
- summary: text (JSON-encoded extraction metadata)
- status: text (processing | completed | failed)
- vector_count: integer
- error_message: text (nullable)
- processed_at: timestamp (nullable)
- created_at: timestamp

knowledge_vectors:
- id: uuid (primary key)
- agent_id: uuid (foreign key to agents.id)
- knowledge_source_id: uuid (foreign key to knowledge_sources.id)
- content: text (one chunk)
- embedding: vector(1536)
- metadata: jsonb (source metadata + chunk_index, total_chunks)

rpc search_knowledge_vectors(p_agent_id, p_query_embedding, p_match_threshold, p_match_count)
returns rows of (id, knowledge_source_id, content, metadata, similarity)
"""
