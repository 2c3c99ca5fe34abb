import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import HTTPException
from supabase import Client

from app.modules.analytics.schemas import (
    AnalyticsEventCreate, AnalyticsListResponse, AnalyticsMetrics, AnalyticsEventResponse,
    AnalyticsCleanupResponse
)

logger = logging.getLogger(__name__)


def log_event(
    supabase: Client,
    agent_id: str,
    event_type: str,
    event_data: Optional[Dict[str, Any]] = None,
    tokens_used: int = 0,
    success: bool = True,
    response_time_ms: Optional[int] = None,
    error_message: Optional[str] = None,
) -> None:
    """Best-effort analytics insert; failures are logged and never raised."""
    row = {
        "agent_id": agent_id,
        "event_type": event_type,
        "event_data": event_data or {},
        "tokens_used": tokens_used,
        "success": success,
    }
    if response_time_ms is not None:
        row["response_time_ms"] = response_time_ms
    if error_message:
        row["error_message"] = error_message
    try:
        supabase.table("analytics").insert(row).execute()
    except Exception as e:
        logger.warning(f"Failed to log analytics event {event_type} for agent {agent_id}: {e}")


class AnalyticsService:
    def __init__(self, supabase: Client):
        self.supabase = supabase

    def list_events(self, agent_id: str, start: Optional[str] = None, end: Optional[str] = None,
                    limit: int = 1000) -> AnalyticsListResponse:
        try:
            query = self.supabase.table("analytics")\
                .select("*")\
                .eq("agent_id", agent_id)\
                .is_("deleted_at", "null")
            if start:
                query = query.gte("created_at", start)
            if end:
                query = query.lte("created_at", end)
            result = query.order("created_at", desc=True).limit(limit).execute()
            events = result.data or []

            total_tokens = sum(e.get("tokens_used") or 0 for e in events)
            event_types: Dict[str, int] = {}
            for e in events:
                key = e.get("event_type") or "unknown"
                event_types[key] = event_types.get(key, 0) + 1
            metrics = AnalyticsMetrics(
                total_events=len(events),
                successful_events=sum(1 for e in events if e.get("success")),
                total_tokens=total_tokens,
                event_types=event_types,
                avg_tokens=round(total_tokens / len(events)) if events else 0,
            )
            return AnalyticsListResponse(analytics=events, metrics=metrics, count=len(events))
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Error fetching analytics for agent {agent_id}: {e}")
            raise HTTPException(status_code=500, detail="Failed to fetch analytics")

    def create_event(self, agent_id: str, event: AnalyticsEventCreate) -> AnalyticsEventResponse:
        try:
            result = self.supabase.table("analytics").insert({
                "agent_id": agent_id,
                "event_type": event.event_type,
                "event_data": event.event_data,
                "tokens_used": event.tokens_used,
                "success": event.success,
                "created_at": datetime.now(timezone.utc).isoformat(),
            }).execute()
            if not result.data:
                raise HTTPException(status_code=500, detail="Failed to log analytics")
            return AnalyticsEventResponse(analytics=result.data[0])
        except HTTPException:
            raise
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    def cleanup(self, agent_id: str, days_to_keep: int = 90) -> AnalyticsCleanupResponse:
        """Soft-delete events older than days_to_keep."""
        try:
            now = datetime.now(timezone.utc)
            cutoff = now - timedelta(days=days_to_keep)
            self.supabase.table("analytics")\
                .update({"deleted_at": now.isoformat()})\
                .eq("agent_id", agent_id)\
                .lt("created_at", cutoff.isoformat())\
                .is_("deleted_at", "null")\
                .execute()
            return AnalyticsCleanupResponse(
                message=f"Analytics older than {days_to_keep} days marked for deletion"
            )
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))
