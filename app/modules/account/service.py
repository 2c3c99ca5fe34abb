import calendar
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Tuple

from fastapi import HTTPException
from supabase import Client

from app.database.supabase_client import fetch_single
from app.modules.account.schemas import (
    NotificationPreferences, NotificationPreferencesResponse, BillingResponse, UsageResponse,
    UsageMetric, UsagePeriod, SubscriptionCancelResponse
)

DEFAULT_TIER = "free"

# -1 means unlimited
TIER_LIMITS: Dict[str, Dict[str, int]] = {
    "free": {"agents": 1, "conversations": 100, "apiCredits": 1000},
    "pro": {"agents": -1, "conversations": 10000, "apiCredits": 50000},
    "enterprise": {"agents": -1, "conversations": -1, "apiCredits": -1},
}

PLAN_CREDITS: Dict[str, int] = {"free": 1000, "pro": 50000, "enterprise": 1000000}


def current_period(now: datetime = None) -> Tuple[datetime, datetime]:
    """First and last day of the calendar month containing now."""
    now = now or datetime.now(timezone.utc)
    start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    last_day = calendar.monthrange(now.year, now.month)[1]
    end = start.replace(day=last_day, hour=23, minute=59, second=59, microsecond=999999)
    return start, end


class AccountSettingsService:
    def __init__(self, supabase: Client):
        self.supabase = supabase

    def _get_profile(self, user_id: str, columns: str = "metadata") -> Dict[str, Any]:
        try:
            profile = fetch_single(self.supabase.table("profiles").select(columns).eq("id", user_id))
        except Exception as e:
            raise HTTPException(status_code=500, detail=f"Failed to fetch profile: {e}")
        if not profile:
            raise HTTPException(status_code=404, detail="User not found")
        return profile

    def _save_metadata(self, user_id: str, metadata: Dict[str, Any], extra: Dict[str, Any] = None) -> Dict[str, Any]:
        update = {"metadata": metadata, "updated_at": datetime.now(timezone.utc).isoformat()}
        if extra:
            update.update(extra)
        result = self.supabase.table("profiles").update(update).eq("id", user_id).execute()
        if not result.data:
            raise HTTPException(status_code=500, detail="Failed to update profile")
        return result.data[0]

    def get_notification_preferences(self, user_id: str) -> NotificationPreferencesResponse:
        metadata = self._get_profile(user_id).get("metadata") or {}
        stored = metadata.get("notification_preferences")
        preferences = NotificationPreferences(**stored) if stored else NotificationPreferences()
        return NotificationPreferencesResponse(preferences=preferences)

    def update_notification_preferences(self, user_id: str, preferences: NotificationPreferences) -> NotificationPreferencesResponse:
        try:
            metadata = dict(self._get_profile(user_id).get("metadata") or {})
            saved = preferences.model_copy(update={"updated_at": datetime.now(timezone.utc).isoformat()})
            metadata["notification_preferences"] = saved.model_dump()
            self._save_metadata(user_id, metadata)
            return NotificationPreferencesResponse(preferences=saved)
        except HTTPException:
            raise
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    def get_billing(self, user_id: str) -> BillingResponse:
        billing = (self._get_profile(user_id).get("metadata") or {}).get("billing") or {}
        return BillingResponse(
            paymentMethods=billing.get("paymentMethods") or [],
            billingHistory=billing.get("billingHistory") or [],
        )

    def add_payment_method(self, user_id: str, card_data: Dict[str, Any]) -> Dict[str, Any]:
        try:
            metadata = dict(self._get_profile(user_id).get("metadata") or {})
            billing = dict(metadata.get("billing") or {})
            payment_methods = list(billing.get("paymentMethods") or [])
            now = datetime.now(timezone.utc)
            card = {
                **card_data,
                "id": f"card_{int(now.timestamp() * 1000)}",
                "createdAt": now.isoformat(),
            }
            payment_methods.append(card)
            billing["paymentMethods"] = payment_methods
            metadata["billing"] = billing
            self._save_metadata(user_id, metadata)
            return {"success": True, "card": card}
        except HTTPException:
            raise
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    def remove_payment_method(self, user_id: str, card_id: str) -> Dict[str, Any]:
        try:
            metadata = dict(self._get_profile(user_id).get("metadata") or {})
            billing = dict(metadata.get("billing") or {})
            billing["paymentMethods"] = [
                c for c in (billing.get("paymentMethods") or []) if c.get("id") != card_id
            ]
            metadata["billing"] = billing
            self._save_metadata(user_id, metadata)
            return {"success": True, "message": "Payment method removed successfully"}
        except HTTPException:
            raise
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    def get_usage(self, user_id: str) -> UsageResponse:
        profile = self._get_profile(user_id, "subscription_tier, api_credits")
        tier = profile.get("subscription_tier") or DEFAULT_TIER
        limits = TIER_LIMITS.get(tier, TIER_LIMITS[DEFAULT_TIER])
        start, end = current_period()
        try:
            agents_result = self.supabase.table("agents")\
                .select("id, is_active")\
                .eq("user_id", user_id)\
                .execute()
            agents = agents_result.data or []
            agent_ids = [a["id"] for a in agents]
            active_agents = sum(1 for a in agents if a.get("is_active"))

            conversation_count = 0
            tokens_used = 0
            if agent_ids:
                conversations = self.supabase.table("conversations")\
                    .select("id", count="exact")\
                    .in_("agent_id", agent_ids)\
                    .gte("created_at", start.isoformat())\
                    .lte("created_at", end.isoformat())\
                    .execute()
                conversation_count = conversations.count or 0
                analytics = self.supabase.table("analytics")\
                    .select("tokens_used")\
                    .in_("agent_id", agent_ids)\
                    .gte("created_at", start.isoformat())\
                    .lte("created_at", end.isoformat())\
                    .execute()
                tokens_used = sum(a.get("tokens_used") or 0 for a in analytics.data or [])
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

        return UsageResponse(
            tier=tier,
            agents=UsageMetric(used=active_agents, limit=limits["agents"]),
            conversations=UsageMetric(used=conversation_count, limit=limits["conversations"]),
            apiCredits=UsageMetric(used=tokens_used, limit=limits["apiCredits"]),
            creditsRemaining=profile.get("api_credits") or 0,
            period=UsagePeriod(start=start.isoformat(), end=end.isoformat()),
        )

    def cancel_subscription(self, user_id: str) -> SubscriptionCancelResponse:
        profile = self._get_profile(user_id, "subscription_tier, metadata")
        if (profile.get("subscription_tier") or DEFAULT_TIER) == DEFAULT_TIER:
            raise HTTPException(status_code=400, detail="Cannot cancel free subscription")
        try:
            cancelled_at = datetime.now(timezone.utc)
            effective = cancelled_at + timedelta(days=30)
            metadata = dict(profile.get("metadata") or {})
            metadata["subscription"] = {
                **(metadata.get("subscription") or {}),
                "status": "cancelled",
                "cancelledAt": cancelled_at.isoformat(),
                "effectiveDate": effective.isoformat(),
                "previousPlan": profile["subscription_tier"],
            }
            self._save_metadata(user_id, metadata)
            return SubscriptionCancelResponse(
                message="Subscription cancelled successfully",
                effectiveDate=effective.isoformat(),
            )
        except HTTPException:
            raise
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    def upgrade_subscription(self, user_id: str, plan_id: str) -> Dict[str, Any]:
        """Switch tier and reset the credit balance to the plan's allowance."""
        profile = self._get_profile(user_id, "subscription_tier, metadata")
        try:
            metadata = dict(profile.get("metadata") or {})
            metadata["subscription"] = {
                "planId": plan_id,
                "previousPlan": profile.get("subscription_tier"),
                "upgradedAt": datetime.now(timezone.utc).isoformat(),
                "status": "active",
            }
            updated = self._save_metadata(user_id, metadata, {
                "subscription_tier": plan_id,
                "api_credits": PLAN_CREDITS[plan_id],
            })
            return {
                "success": True,
                "subscription": {"tier": updated["subscription_tier"], "credits": updated["api_credits"]},
            }
        except HTTPException:
            raise
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))
