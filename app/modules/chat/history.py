import logging
from typing import Any, Dict, List, Optional

from supabase import Client

logger = logging.getLogger(__name__)


class ConversationHistory:
    """Stored exchanges (one user message + one agent response per row)."""

    def __init__(self, supabase: Client):
        self.supabase = supabase

    def save(self, agent_id: str, session_id: str, user_message: str, agent_response: str,
             metadata: Dict[str, Any] = None) -> Optional[Dict[str, Any]]:
        result = self.supabase.table("conversations").insert({
            "agent_id": agent_id,
            "session_id": session_id,
            "user_message": user_message,
            "agent_response": agent_response,
            "metadata": metadata or {},
        }).execute()
        return result.data[0] if result.data else None

    def recent(self, agent_id: str, session_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        """Newest first"""
        result = self.supabase.table("conversations")\
            .select("*")\
            .eq("agent_id", agent_id)\
            .eq("session_id", session_id)\
            .order("created_at", desc=True)\
            .limit(limit)\
            .execute()
        return result.data or []

    def clear(self, agent_id: str, session_id: str) -> int:
        result = self.supabase.table("conversations")\
            .delete()\
            .eq("agent_id", agent_id)\
            .eq("session_id", session_id)\
            .execute()
        return len(result.data or [])

    @staticmethod
    def to_messages(conversations: List[Dict[str, Any]], max_messages: int = 10) -> List[Dict[str, str]]:
        """Chronological user/assistant messages, keeping the last max_messages."""
        ordered = sorted(conversations, key=lambda c: c.get("created_at") or "")
        messages = []
        for conv in ordered:
            messages.append({"role": "user", "content": conv.get("user_message") or ""})
            messages.append({"role": "assistant", "content": conv.get("agent_response") or ""})
        return messages[-max_messages:] if max_messages else messages
