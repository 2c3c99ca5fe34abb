import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import HTTPException
from supabase import Client

from app.config import settings
from app.core.cache import MemoryCache
from app.database.supabase_client import fetch_single
from app.modules.agents.schemas import AgentCreate, AgentUpdate, AgentUpdateResponse, AgentDependencies
from app.modules.analytics.service import log_event

logger = logging.getLogger(__name__)

AGENT_CACHE_TTL_SEC = 300
agent_cache = MemoryCache(ttl=AGENT_CACHE_TTL_SEC)

UPDATABLE_FIELDS = ("name", "description", "purpose", "is_active", "settings")

# Tables keyed by agent_id, deleted in this order before the agent itself
_AGENT_CHILD_TABLES = (
    "sms_conversations",
    "nlp_feedback",
    "nlp_agent_requests",
    "analytics",
    "conversations",
    "webhook_invocations",
    "agent_webhooks",
    "knowledge_vectors",
    "knowledge_sources",
)
_TEST_ACCOUNT_CHILD_TABLES = ("test_sessions", "test_analytics", "test_invitations")
_TRAILING_TABLES = ("booking_slots", "agent_calendars", "agent_sms_config")


def get_cached_agent(supabase: Client, agent_id: str) -> Optional[Dict[str, Any]]:
    """Agent row by id with a 5 minute in-process cache. Not owner-scoped."""
    key = f"agent:{agent_id}"
    agent = agent_cache.get(key)
    if agent is None:
        agent = fetch_single(supabase.table("agents").select("*").eq("id", agent_id))
        if agent:
            agent_cache.set(key, agent)
    return agent


def invalidate_agent_cache(agent_id: str) -> None:
    agent_cache.delete(f"agent:{agent_id}")


def sandbox_url(agent_id: str) -> str:
    return f"{settings.app_url.rstrip('/')}/sandbox/{agent_id}"


def _iso(value: Any) -> Optional[str]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).isoformat()
    except ValueError:
        return str(value)


class AgentService:
    def __init__(self, supabase: Client):
        self.supabase = supabase

    def create_agent(self, agent_data: AgentCreate, user_id: str, extra: Dict[str, Any] = None) -> Dict[str, Any]:
        """Create an agent owned by user_id and point its sandbox_url at the new id"""
        try:
            row = agent_data.model_dump()
            row["name"] = row["name"].strip()
            row.update(extra or {})
            row["user_id"] = user_id
            row.setdefault("is_active", True)
            result = self.supabase.table("agents").insert(row).execute()
            if not result.data:
                raise HTTPException(status_code=500, detail="Failed to create agent")
            agent = result.data[0]

            url = sandbox_url(agent["id"])
            self.supabase.table("agents")\
                .update({"sandbox_url": url})\
                .eq("id", agent["id"])\
                .execute()
            agent["sandbox_url"] = url
            log_event(self.supabase, agent["id"], "agent_created", {"createdVia": row.get("metadata", {}).get("createdVia", "api")})
            return agent
        except HTTPException:
            raise
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    def list_user_agents(self, user_id: str) -> List[Dict[str, Any]]:
        try:
            result = self.supabase.table("agents")\
                .select("*")\
                .eq("user_id", user_id)\
                .order("created_at", desc=True)\
                .execute()
            return result.data or []
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    def get_agent(self, agent_id: str, user_id: str) -> Dict[str, Any]:
        """Owner-scoped agent with derived display fields"""
        try:
            agent = fetch_single(
                self.supabase.table("agents")
                .select("*")
                .eq("id", agent_id)
                .eq("user_id", user_id)
            )
            if not agent:
                raise HTTPException(status_code=404, detail="Agent not found or unauthorized")
            webhooks = self.supabase.table("agent_webhooks")\
                .select("id", count="exact")\
                .eq("agent_id", agent_id)\
                .execute()
            return {
                **agent,
                "createdDate": _iso(agent.get("created_at")),
                "updatedDate": _iso(agent.get("updated_at") or agent.get("created_at")),
                "isActive": bool(agent.get("is_active")),
                "hasWebhooks": (webhooks.count or 0) > 0,
            }
        except HTTPException:
            raise
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    def update_agent(self, agent_id: str, user_id: str, agent_data: AgentUpdate) -> AgentUpdateResponse:
        self.get_agent(agent_id, user_id)
        updates = {
            field: value
            for field, value in agent_data.model_dump(exclude_unset=True).items()
            if field in UPDATABLE_FIELDS and value is not None
        }
        if not updates:
            raise HTTPException(status_code=400, detail="No valid fields to update")
        if "name" in updates:
            if not updates["name"].strip():
                raise HTTPException(status_code=400, detail="Agent name cannot be empty")
            if len(updates["name"]) > 100:
                raise HTTPException(status_code=400, detail="Agent name must be less than 100 characters")
        try:
            updates["updated_at"] = datetime.now(timezone.utc).isoformat()
            result = self.supabase.table("agents")\
                .update(updates)\
                .eq("id", agent_id)\
                .execute()
            if not result.data:
                raise HTTPException(status_code=404, detail="Agent not found or unauthorized")
            invalidate_agent_cache(agent_id)
            return AgentUpdateResponse(agent=result.data[0], message="Agent updated successfully")
        except HTTPException:
            raise
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    def get_dependencies(self, agent_id: str, user_id: str) -> AgentDependencies:
        self.get_agent(agent_id, user_id)
        try:
            def rows(table: str, columns: str, **filters) -> List[Dict[str, Any]]:
                query = self.supabase.table(table).select(columns).eq("agent_id", agent_id)
                for column, values in filters.items():
                    query = query.in_(column, values)
                return query.execute().data or []

            def count(table: str) -> int:
                return self.supabase.table(table)\
                    .select("id", count="exact")\
                    .eq("agent_id", agent_id)\
                    .execute().count or 0

            webhooks = rows("agent_webhooks", "id, name")
            workflows = rows("workflows", "id, name, is_active")
            test_accounts = rows("test_accounts", "id, name, email, status")
            bookings = rows("bookings", "id, status, booking_date", status=["pending", "confirmed"])
            calendar_rows = rows("agent_calendars", "id, booking_duration")
            sms_rows = rows("agent_sms_config", "id, provider, is_active")

            return AgentDependencies(
                webhooks=webhooks,
                workflows=workflows,
                knowledgeSources=rows("knowledge_sources", "id, source_type, file_name"),
                testAccounts=test_accounts,
                bookings=bookings,
                conversationsCount=count("conversations"),
                analyticsCount=count("analytics"),
                calendar=calendar_rows[0] if calendar_rows else None,
                smsConfig=sms_rows[0] if sms_rows else None,
                hasActiveDependencies=bool(webhooks)
                or any(w.get("is_active") for w in workflows)
                or bool(bookings)
                or bool(test_accounts),
            )
        except HTTPException:
            raise
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    def delete_agent(self, agent_id: str, user_id: str) -> None:
        """Delete the agent and every row that references it"""
        self.get_agent(agent_id, user_id)
        try:
            for table in _AGENT_CHILD_TABLES:
                self._delete_where(table, "agent_id", agent_id)

            test_account_ids = self._ids("test_accounts", agent_id)
            if test_account_ids:
                for table in _TEST_ACCOUNT_CHILD_TABLES:
                    self.supabase.table(table).delete().in_("test_account_id", test_account_ids).execute()
            self._delete_where("test_accounts", "agent_id", agent_id)

            booking_ids = self._ids("bookings", agent_id)
            if booking_ids:
                self.supabase.table("booking_conversations").delete().in_("booking_id", booking_ids).execute()
            self._delete_where("bookings", "agent_id", agent_id)

            for table in _TRAILING_TABLES:
                self._delete_where(table, "agent_id", agent_id)

            self.supabase.table("workflows")\
                .update({"agent_id": None})\
                .eq("agent_id", agent_id)\
                .execute()
            self.supabase.table("agents").delete().eq("id", agent_id).execute()
            invalidate_agent_cache(agent_id)
            logger.info(f"Deleted agent {agent_id} and its dependent rows")
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Error deleting agent {agent_id}: {e}")
            raise HTTPException(status_code=500, detail=f"Failed to delete agent: {e}")

    def _ids(self, table: str, agent_id: str) -> List[str]:
        result = self.supabase.table(table).select("id").eq("agent_id", agent_id).execute()
        return [r["id"] for r in result.data or []]

    def _delete_where(self, table: str, column: str, value: str) -> None:
        self.supabase.table(table).delete().eq(column, value).execute()
