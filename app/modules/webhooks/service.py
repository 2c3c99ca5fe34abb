import logging
import math
from datetime import timedelta
from typing import Any, Dict, List, Optional

from fastapi import HTTPException
from postgrest.exceptions import APIError
from supabase import Client

from app.config import settings
from app.core.dates import parse_timestamp, utc_now
from app.core.tokens import generate_auth_token, generate_webhook_key
from app.database.supabase_client import fetch_single
from app.modules.webhooks.schemas import (
    WebhookCreate, WebhookUpdate, WebhookListResponse, WebhookResponse, InvocationListResponse, Pagination,
    WebhookStats, OverallWebhookStats, WebhookStatsResponse
)

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION_CODE = "23505"
UPDATABLE_FIELDS = ("name", "description", "is_active", "rate_limit", "allowed_origins", "requires_auth")
MAX_INVOCATIONS_PAGE = 500
STATS_SAMPLE_SIZE = 1000


def webhook_url(webhook_key: str) -> str:
    return f"{settings.api_url.rstrip('/')}/api/v1/webhooks/{webhook_key}"


def validate_webhook(data: WebhookCreate) -> List[str]:
    errors = []
    if not data.name or not data.name.strip():
        errors.append("Webhook name is required")
    if data.name and len(data.name) > 100:
        errors.append("Webhook name must be less than 100 characters")
    if data.rate_limit is not None and not 1 <= data.rate_limit <= 10000:
        errors.append("Rate limit must be between 1 and 10000")
    if data.allowed_origins is not None and not isinstance(data.allowed_origins, list):
        errors.append("Allowed origins must be an array")
    return errors


class WebhookService:
    def __init__(self, supabase: Client):
        self.supabase = supabase

    def list_webhooks(self, agent: Dict[str, Any]) -> WebhookListResponse:
        webhooks = self._agent_webhooks(agent["id"])
        enriched = [
            {
                **w,
                "url": w.get("webhook_url"),
                "hasAuth": bool(w.get("requires_auth")),
                "createdDate": w.get("created_at"),
                "updatedDate": w.get("updated_at"),
            }
            for w in webhooks
        ]
        return WebhookListResponse(webhooks=enriched, count=len(enriched), agentId=agent["id"],
                                   agentName=agent.get("name"))

    def create_webhook(self, agent_id: str, data: WebhookCreate) -> WebhookResponse:
        errors = validate_webhook(data)
        if errors:
            raise HTTPException(status_code=400, detail={"error": "Validation failed", "details": errors})

        key = generate_webhook_key()
        row = {
            "agent_id": agent_id,
            "name": data.name.strip(),
            "description": (data.description or "").strip(),
            "webhook_key": key,
            "webhook_url": webhook_url(key),
            "requires_auth": bool(data.requires_auth),
            "auth_token": generate_auth_token() if data.requires_auth else None,
            "rate_limit": data.rate_limit or 100,
            "allowed_origins": data.allowed_origins or [],
            "is_active": True if data.is_active is None else data.is_active,
        }
        try:
            result = self.supabase.table("agent_webhooks").insert(row).execute()
        except APIError as e:
            if e.code == UNIQUE_VIOLATION_CODE:
                raise HTTPException(status_code=409, detail="A webhook with this name already exists")
            logger.error(f"Error creating webhook for agent {agent_id}: {e}")
            raise HTTPException(status_code=500, detail="Failed to create webhook")
        if not result.data:
            raise HTTPException(status_code=500, detail="Failed to create webhook")
        logger.info(f"Created webhook {result.data[0]['id']} for agent {agent_id}")
        return WebhookResponse(webhook=result.data[0], message="Webhook created successfully")

    def bulk_update(self, agent_id: str, action: Optional[str]) -> Dict[str, str]:
        if not action:
            raise HTTPException(status_code=400, detail='Action is required (e.g., "activate", "deactivate")')
        webhooks = self._agent_webhooks(agent_id)
        active = action == "activate"
        self.supabase.table("agent_webhooks")\
            .update({"is_active": active, "updated_at": utc_now().isoformat()})\
            .eq("agent_id", agent_id)\
            .execute()
        verb = "Activated" if active else "Deactivated"
        return {"message": f"{verb} {len(webhooks)} webhooks"}

    def get_owned_webhook(self, webhook_id: str, user_id: str) -> Dict[str, Any]:
        """404 when the webhook does not exist, 403 when its agent is not the user's."""
        webhook = fetch_single(self.supabase.table("agent_webhooks").select("*").eq("id", webhook_id))
        if not webhook:
            raise HTTPException(status_code=404, detail="Webhook not found")
        agent = fetch_single(
            self.supabase.table("agents")
            .select("id")
            .eq("id", webhook["agent_id"])
            .eq("user_id", user_id)
        )
        if not agent:
            raise HTTPException(status_code=403, detail="Unauthorized")
        return webhook

    def update_webhook(self, webhook: Dict[str, Any], data: WebhookUpdate) -> WebhookResponse:
        updates = data.model_dump(include=set(UPDATABLE_FIELDS), exclude_unset=True)
        if not updates:
            raise HTTPException(status_code=400, detail="No valid fields to update")
        if "name" in updates and (not updates["name"] or not updates["name"].strip()):
            raise HTTPException(status_code=400, detail="Webhook name is required")
        if updates.get("rate_limit") is not None and not 1 <= updates["rate_limit"] <= 10000:
            raise HTTPException(status_code=400, detail="Rate limit must be between 1 and 10000")
        if updates.get("requires_auth") and not webhook.get("auth_token"):
            updates["auth_token"] = generate_auth_token()
        elif updates.get("requires_auth") is False:
            updates["auth_token"] = None
        updates["updated_at"] = utc_now().isoformat()

        result = self.supabase.table("agent_webhooks").update(updates).eq("id", webhook["id"]).execute()
        if not result.data:
            raise HTTPException(status_code=500, detail="Failed to update webhook")
        return WebhookResponse(webhook=result.data[0])

    def delete_webhook(self, webhook_id: str) -> Dict[str, Any]:
        self.supabase.table("webhook_invocations").delete().eq("agent_webhook_id", webhook_id).execute()
        self.supabase.table("agent_webhooks").delete().eq("id", webhook_id).execute()
        return {"success": True, "message": "Webhook deleted successfully"}

    def regenerate_keys(self, webhook: Dict[str, Any]) -> WebhookResponse:
        """New key, URL and (when auth is on) token; the old ones stop working immediately"""
        key = generate_webhook_key()
        result = self.supabase.table("agent_webhooks").update({
            "webhook_key": key,
            "webhook_url": webhook_url(key),
            "auth_token": generate_auth_token() if webhook.get("requires_auth") else None,
            "updated_at": utc_now().isoformat(),
        }).eq("id", webhook["id"]).execute()
        if not result.data:
            raise HTTPException(status_code=500, detail="Failed to regenerate webhook")
        logger.info(f"Regenerated keys for webhook {webhook['id']}")
        return WebhookResponse(
            webhook=result.data[0],
            message="Webhook keys regenerated successfully",
            warning="Previous webhook URL and auth token are now invalid",
        )

    def list_invocations(self, webhook_id: str, path: str, limit: int = 50, offset: int = 0,
                         sort: str = "desc", status: Optional[str] = None) -> InvocationListResponse:
        limit = min(max(limit, 1), MAX_INVOCATIONS_PAGE)
        offset = max(offset, 0)
        sort = sort if sort in ("asc", "desc") else "desc"
        status = status if status in ("success", "error") else None

        query = self.supabase.table("webhook_invocations")\
            .select("*", count="exact")\
            .eq("agent_webhook_id", webhook_id)
        if status:
            query = query.eq("success", status == "success")
        result = query.order("created_at", desc=sort == "desc")\
            .range(offset, offset + limit - 1)\
            .execute()
        total = result.count if result.count is not None else len(result.data or [])

        def page_url(new_offset: int) -> str:
            url = f"{path}?limit={limit}&offset={new_offset}&sort={sort}"
            return f"{url}&status={status}" if status else url

        has_next = offset + limit < total
        has_prev = offset > 0
        return InvocationListResponse(
            invocations=result.data or [],
            pagination=Pagination(
                total=total,
                limit=limit,
                offset=offset,
                currentPage=offset // limit + 1,
                totalPages=math.ceil(total / limit),
                hasNextPage=has_next,
                hasPrevPage=has_prev,
                nextUrl=page_url(offset + limit) if has_next else None,
                prevUrl=page_url(max(0, offset - limit)) if has_prev else None,
            ),
            filters={"sort": sort, "status": status},
        )

    def get_stats(self, agent_id: str) -> WebhookStatsResponse:
        webhooks = self._agent_webhooks(agent_id)
        stats = [self._webhook_stats(w) for w in webhooks]
        overall = OverallWebhookStats()
        if stats:
            overall = OverallWebhookStats(
                totalWebhooks=len(webhooks),
                activeWebhooks=sum(1 for w in webhooks if w.get("is_active")),
                inactiveWebhooks=sum(1 for w in webhooks if not w.get("is_active")),
                totalInvocations=sum(s.totalInvocations for s in stats),
                totalSuccessful=sum(s.successful for s in stats),
                totalFailed=sum(s.failed for s in stats),
                avgSuccessRate=round(sum(s.successRate for s in stats) / len(stats), 1),
                avgResponseTime=round(sum(s.avgResponseTime for s in stats) / len(stats)),
                last24hTotal=sum(s.last24h for s in stats),
                last7dTotal=sum(s.last7d for s in stats),
                last30dTotal=sum(s.last30d for s in stats),
            )
        return WebhookStatsResponse(overall=overall, webhooks=stats, generatedAt=utc_now().isoformat())

    def _webhook_stats(self, webhook: Dict[str, Any]) -> WebhookStats:
        invocations = self.supabase.table("webhook_invocations")\
            .select("success, response_time_ms, created_at")\
            .eq("agent_webhook_id", webhook["id"])\
            .order("created_at", desc=True)\
            .limit(STATS_SAMPLE_SIZE)\
            .execute().data or []
        stats = WebhookStats(webhookId=webhook["id"], webhookName=webhook.get("name"),
                             isActive=bool(webhook.get("is_active")))
        if not invocations:
            return stats

        total = len(invocations)
        successful = sum(1 for i in invocations if i.get("success"))
        times = [i["response_time_ms"] for i in invocations if i.get("response_time_ms")]
        now = utc_now()
        created = [parse_timestamp(i.get("created_at")) for i in invocations]

        def since(days: int) -> int:
            cutoff = now - timedelta(days=days)
            return sum(1 for c in created if c and c >= cutoff)

        stats.totalInvocations = total
        stats.successful = successful
        stats.failed = total - successful
        stats.successRate = round(successful / total * 100, 1)
        stats.errorRate = round((total - successful) / total * 100, 1)
        stats.avgResponseTime = round(sum(times) / len(times)) if times else 0
        stats.last24h = since(1)
        stats.last7d = since(7)
        stats.last30d = since(30)
        return stats

    def _agent_webhooks(self, agent_id: str) -> List[Dict[str, Any]]:
        result = self.supabase.table("agent_webhooks")\
            .select("*")\
            .eq("agent_id", agent_id)\
            .order("created_at", desc=True)\
            .execute()
        return result.data or []
