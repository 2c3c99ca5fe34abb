import logging
from supabase import Client
from app.database.supabase_client import fetch_single

logger = logging.getLogger(__name__)


class CreditService:
    """Prepaid credit balance on profiles.api_credits."""

    def __init__(self, supabase: Client):
        self.supabase = supabase

    def get_balance(self, user_id: str) -> int:
        profile = fetch_single(
            self.supabase.table("profiles").select("api_credits").eq("id", user_id)
        )
        return (profile or {}).get("api_credits") or 0

    def has_credits(self, user_id: str, required: int = 1) -> bool:
        try:
            return self.get_balance(user_id) >= required
        except Exception as e:
            logger.error(f"Error checking credits for {user_id}: {e}")
            return False

    def deduct_credits(self, user_id: str, amount: int = 1) -> bool:
        """Subtract amount from the balance. Returns False (and logs) on failure."""
        if amount <= 0:
            return True
        try:
            balance = self.get_balance(user_id)
            self.supabase.table("profiles")\
                .update({"api_credits": balance - amount})\
                .eq("id", user_id)\
                .execute()
            return True
        except Exception as e:
            logger.error(f"Error deducting {amount} credits from {user_id}: {e}")
            return False
