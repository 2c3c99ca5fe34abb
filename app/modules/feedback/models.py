# Supabase table: feedback; storage bucket: feedback-attachments
# This file documents the expected database schema
# Actual operations are handled via Supabase SDK in service.py

"""
feedback:
- id: uuid (primary key)
- user_id: uuid (nullable, anonymous feedback allowed)
- name: text (default: "Anonymous")
- email: text (nullable)
- type: text (default: "general")
- subject: text (default: "No Subject")
- message: text
- rating: integer (nullable)
- attachments: jsonb ([{name, type, size, url}])
- created_at: timestamp

feedback-attachments (storage):
- feedback/{epoch ms}-{file name}
"""
