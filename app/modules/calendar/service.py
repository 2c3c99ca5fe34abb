import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import HTTPException
from supabase import Client

from app.database.supabase_client import fetch_single
from app.modules.analytics.service import log_event
from app.modules.calendar.schemas import (
    CalendarConfigRequest, CalendarConfigResponse, CalendarSaveResponse, AgentSummary
)

logger = logging.getLogger(__name__)

DEFAULT_REQUIRED_FIELDS = ["name", "email", "phone"]


def build_calendar_row(agent_id: str, config: CalendarConfigRequest) -> Dict[str, Any]:
    """Apply defaults: booleans default only when missing, other fields when missing or falsy."""
    rules = None
    if config.availability_rules:
        rules = {
            day: [w.model_dump() for w in windows]
            for day, windows in config.availability_rules.items()
        }
    return {
        "agent_id": agent_id,
        "is_active": True if config.is_active is None else config.is_active,
        "booking_duration": config.booking_duration or 30,
        "buffer_time": config.buffer_time or 0,
        "advance_booking_days": config.advance_booking_days or 30,
        "min_notice_hours": config.min_notice_hours or 2,
        "timezone": config.timezone or "UTC",
        "availability_rules": rules or {},
        "integration_type": config.integration_type or "manual",
        "calendly_url": config.calendly_url or None,
        "send_confirmations": True if config.send_confirmations is None else config.send_confirmations,
        "send_reminders": True if config.send_reminders is None else config.send_reminders,
        "reminder_hours_before": config.reminder_hours_before or 24,
        "required_fields": config.required_fields or list(DEFAULT_REQUIRED_FIELDS),
        "updated_at": datetime.now(timezone.utc).isoformat(),
    }


class CalendarService:
    def __init__(self, supabase: Client):
        self.supabase = supabase

    def get_active_calendar(self, agent_id: str) -> Optional[Dict[str, Any]]:
        return fetch_single(
            self.supabase.table("agent_calendars")
            .select("*")
            .eq("agent_id", agent_id)
            .eq("is_active", True)
        )

    def get_calendar_config(self, agent_id: str) -> CalendarConfigResponse:
        """Calendar for an agent; a missing calendar is returned as null"""
        try:
            agent = fetch_single(self.supabase.table("agents").select("id, name").eq("id", agent_id))
            if not agent:
                raise HTTPException(status_code=404, detail="Agent not found")
            calendar = fetch_single(
                self.supabase.table("agent_calendars").select("*").eq("agent_id", agent_id)
            )
            return CalendarConfigResponse(
                calendar=calendar,
                agent=AgentSummary(id=agent["id"], name=agent.get("name")),
            )
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Error fetching calendar for agent {agent_id}: {e}")
            raise HTTPException(status_code=500, detail="Failed to fetch calendar configuration")

    def save_calendar_config(self, agent_id: str, config: CalendarConfigRequest) -> CalendarSaveResponse:
        """Update the agent's calendar if one exists, otherwise create it"""
        existing = fetch_single(
            self.supabase.table("agent_calendars").select("id").eq("agent_id", agent_id)
        )
        row = build_calendar_row(agent_id, config)
        try:
            if existing:
                result = self.supabase.table("agent_calendars")\
                    .update(row)\
                    .eq("id", existing["id"])\
                    .execute()
            else:
                result = self.supabase.table("agent_calendars").insert(row).execute()
        except Exception as e:
            action = "update" if existing else "create"
            logger.error(f"Error saving calendar for agent {agent_id}: {e}")
            raise HTTPException(status_code=500, detail=f"Failed to {action} calendar configuration")
        if not result.data:
            action = "update" if existing else "create"
            raise HTTPException(status_code=500, detail=f"Failed to {action} calendar configuration")
        calendar = result.data[0]

        log_event(self.supabase, agent_id, "agent_created", {
            "action": "calendar_updated" if existing else "calendar_created",
            "integration_type": calendar.get("integration_type"),
        })
        return CalendarSaveResponse(
            calendar=calendar,
            message="Calendar configuration updated successfully" if existing
            else "Calendar configuration created successfully",
        )

    def delete_calendar_config(self, agent_id: str) -> Dict[str, Any]:
        try:
            self.supabase.table("agent_calendars").delete().eq("agent_id", agent_id).execute()
        except Exception as e:
            logger.error(f"Error deleting calendar for agent {agent_id}: {e}")
            raise HTTPException(status_code=500, detail="Failed to delete calendar configuration")
        return {"success": True, "message": "Calendar configuration deleted successfully"}
