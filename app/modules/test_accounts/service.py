import logging
from typing import Any, Dict, List, Optional

from fastapi import HTTPException
from supabase import Client

from app.core.dates import utc_now
from app.core.email import EmailService, invitation_email
from app.core.tokens import generate_invitation_token, generate_test_token
from app.database.supabase_client import fetch_single
from app.modules.test_accounts.schemas import (
    TestAccountCreate, TestAccountUpdate, TestAccountListResponse, TestAccountCreateResponse,
    TestAccountResponse, AgentTestStats, TestAccountStats, TestAccountPermissions
)
from app.modules.test_accounts.utils import expiration_date, expiry_fields, is_valid_email, test_link

logger = logging.getLogger(__name__)

DEFAULT_EXPIRES_IN_DAYS = 30
DEFAULT_MAX_SESSIONS = 100
DEFAULT_MAX_MESSAGES_PER_SESSION = 50
VALID_STATUSES = ("invited", "active", "suspended", "expired")
UPDATABLE_FIELDS = (
    "name", "status", "is_active", "expires_at", "max_sessions",
    "max_messages_per_session", "permissions", "notes", "metadata",
)


def validate_test_account(data: TestAccountCreate) -> List[str]:
    errors = []
    if not data.name or not data.name.strip():
        errors.append("Name is required")
    if not is_valid_email(data.email):
        errors.append("Valid email is required")
    if data.maxSessions is not None and not 1 <= data.maxSessions <= 1000:
        errors.append("Max sessions must be between 1 and 1000")
    if data.expiresInDays is not None and not 1 <= data.expiresInDays <= 365:
        errors.append("Expiration must be between 1 and 365 days")
    return errors


def _average(values: List[float]) -> float:
    return round(sum(values) / len(values), 1) if values else 0


class TestAccountService:
    def __init__(self, supabase: Client, email_service: Optional[EmailService] = None):
        self.supabase = supabase
        self.email = email_service or EmailService()

    def list_accounts(self, agent_id: str) -> TestAccountListResponse:
        try:
            result = self.supabase.table("test_accounts")\
                .select("*")\
                .eq("agent_id", agent_id)\
                .order("created_at", desc=True)\
                .execute()
            accounts = [{**a, **expiry_fields(a)} for a in (result.data or [])]
            return TestAccountListResponse(
                testAccounts=accounts,
                stats=self._agent_stats(agent_id, accounts),
                count=len(accounts),
            )
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Error listing test accounts for agent {agent_id}: {e}")
            raise HTTPException(status_code=500, detail="Failed to fetch test accounts")

    def _agent_stats(self, agent_id: str, accounts: List[Dict[str, Any]]) -> AgentTestStats:
        sessions = self.supabase.table("test_sessions")\
            .select("id, messages_count, rating")\
            .eq("agent_id", agent_id)\
            .execute().data or []
        events = self.supabase.table("test_analytics")\
            .select("tokens_used")\
            .eq("agent_id", agent_id)\
            .execute().data or []
        return AgentTestStats(
            totalTestAccounts=len(accounts),
            activeAccounts=sum(1 for a in accounts if a.get("status") == "active" and a.get("is_active")),
            totalSessions=len(sessions),
            totalMessages=sum(s.get("messages_count") or 0 for s in sessions),
            totalTokens=sum(e.get("tokens_used") or 0 for e in events),
            avgRating=_average([s["rating"] for s in sessions if s.get("rating")]),
        )

    def create_account(self, agent: Dict[str, Any], user: Dict[str, Any],
                       data: TestAccountCreate) -> TestAccountCreateResponse:
        errors = validate_test_account(data)
        if errors:
            raise HTTPException(status_code=400, detail={"error": "Validation failed", "details": errors})

        email = data.email.strip().lower()
        existing = self.supabase.table("test_accounts")\
            .select("id, status")\
            .eq("agent_id", agent["id"])\
            .eq("email", email)\
            .execute()
        if existing.data:
            raise HTTPException(status_code=409, detail={
                "error": "Test account already exists",
                "message": f"A test account for {email} already exists for this agent",
                "existingAccount": {"id": existing.data[0]["id"], "status": existing.data[0].get("status")},
            })

        days = data.expiresInDays or DEFAULT_EXPIRES_IN_DAYS
        expires_at = expiration_date(days)
        try:
            result = self.supabase.table("test_accounts").insert({
                "agent_id": agent["id"],
                "user_id": user["id"],
                "name": data.name.strip(),
                "email": email,
                "access_token": generate_test_token(),
                "status": "invited",
                "is_active": True,
                "expires_at": expires_at,
                "max_sessions": data.maxSessions or DEFAULT_MAX_SESSIONS,
                "max_messages_per_session": data.maxMessagesPerSession or DEFAULT_MAX_MESSAGES_PER_SESSION,
                "permissions": (data.permissions or TestAccountPermissions()).model_dump(),
                "notes": data.notes,
                "metadata": data.metadata,
            }).execute()
        except Exception as e:
            logger.error(f"Error creating test account for agent {agent['id']}: {e}")
            raise HTTPException(status_code=500, detail="Failed to create test account")
        if not result.data:
            raise HTTPException(status_code=500, detail="Failed to create test account")
        account = result.data[0]
        link = test_link(account["access_token"])

        invitation = self._create_invitation(account, agent, expires_at)
        email_sent, email_error = False, None
        if data.sendEmail:
            email_sent, email_error = self._send_invitation(account, agent, user, invitation, link, days)

        return TestAccountCreateResponse(
            testAccount={**account, "testLink": link},
            invitation=invitation,
            emailSent=email_sent,
            emailError=email_error,
            message="Test account created and invitation sent" if email_sent else "Test account created",
        )

    def _create_invitation(self, account: Dict[str, Any], agent: Dict[str, Any],
                           expires_at: str) -> Optional[Dict[str, Any]]:
        try:
            result = self.supabase.table("test_invitations").insert({
                "test_account_id": account["id"],
                "agent_id": agent["id"],
                "email": account["email"],
                "invitation_token": generate_invitation_token(),
                "email_subject": f"You're invited to test {agent.get('name')}",
                "status": "pending",
                "expires_at": expires_at,
            }).execute()
            return result.data[0] if result.data else None
        except Exception as e:
            logger.error(f"Error creating invitation for test account {account['id']}: {e}")
            return None

    def _send_invitation(self, account, agent, user, invitation, link, days):
        message = invitation_email(
            account["name"], agent.get("name") or "AI Agent", link, days,
            inviter_name=user.get("name") or user.get("email") or "Someone",
        )
        try:
            self.email.send(account["email"], message["subject"], message["text"])
        except Exception as e:
            logger.error(f"Failed to send invitation to {account['email']}: {e}")
            if invitation:
                self.supabase.table("test_invitations")\
                    .update({"status": "failed", "error_message": str(e)})\
                    .eq("id", invitation["id"])\
                    .execute()
            return False, str(e)
        if invitation:
            self.supabase.table("test_invitations")\
                .update({"status": "sent", "sent_at": utc_now().isoformat()})\
                .eq("id", invitation["id"])\
                .execute()
        return True, None

    def get_owned_account(self, agent_id: str, account_id: str, user_id: str) -> Dict[str, Any]:
        account = fetch_single(
            self.supabase.table("test_accounts")
            .select("*")
            .eq("id", account_id)
            .eq("agent_id", agent_id)
        )
        if not account:
            raise HTTPException(status_code=404, detail="Test account not found")
        if account.get("user_id") != user_id:
            raise HTTPException(status_code=403, detail="Unauthorized")
        return account

    def get_account(self, agent_id: str, account_id: str, user_id: str) -> TestAccountResponse:
        account = self.get_owned_account(agent_id, account_id, user_id)
        sessions = self.supabase.table("test_sessions")\
            .select("*")\
            .eq("test_account_id", account_id)\
            .order("started_at", desc=True)\
            .execute().data or []
        events = self.supabase.table("test_analytics")\
            .select("tokens_used, response_time_ms")\
            .eq("test_account_id", account_id)\
            .execute().data or []
        ratings = [s["rating"] for s in sessions if s.get("rating")]
        times = [e["response_time_ms"] for e in events if e.get("response_time_ms")]
        stats = TestAccountStats(
            totalSessions=len(sessions),
            activeSessions=sum(1 for s in sessions if s.get("status") == "active"),
            completedSessions=sum(1 for s in sessions if s.get("status") == "completed"),
            totalMessages=sum(s.get("messages_count") or 0 for s in sessions),
            totalTokens=sum(e.get("tokens_used") or 0 for e in events),
            avgResponseTime=round(sum(times) / len(times)) if times else 0,
            avgRating=_average(ratings),
            totalRatings=len(ratings),
        )
        return TestAccountResponse(testAccount={
            **account,
            **expiry_fields(account),
            "stats": stats.model_dump(),
            "recentSessions": sessions[:10],
        })

    def update_account(self, agent_id: str, account_id: str, user_id: str,
                       data: TestAccountUpdate) -> TestAccountResponse:
        self.get_owned_account(agent_id, account_id, user_id)
        updates = {k: v for k, v in data.model_dump(exclude_unset=True).items() if k in UPDATABLE_FIELDS}
        if not updates:
            raise HTTPException(status_code=400, detail="No valid updates provided")
        if "status" in updates and updates["status"] not in VALID_STATUSES:
            raise HTTPException(
                status_code=400,
                detail=f"Invalid status. Must be one of: {', '.join(VALID_STATUSES)}"
            )
        if "max_sessions" in updates and not 1 <= (updates["max_sessions"] or 0) <= 1000:
            raise HTTPException(status_code=400, detail="Max sessions must be between 1 and 1000")
        updates["updated_at"] = utc_now().isoformat()
        result = self.supabase.table("test_accounts")\
            .update(updates)\
            .eq("id", account_id)\
            .execute()
        if not result.data:
            raise HTTPException(status_code=500, detail="Failed to update test account")
        account = result.data[0]
        return TestAccountResponse(
            testAccount={**account, **expiry_fields(account)},
            message="Test account updated successfully",
        )

    def delete_account(self, agent_id: str, account_id: str, user_id: str) -> Dict[str, Any]:
        self.get_owned_account(agent_id, account_id, user_id)
        try:
            for table in ("test_analytics", "test_sessions", "test_invitations"):
                self.supabase.table(table).delete().eq("test_account_id", account_id).execute()
            self.supabase.table("test_accounts").delete().eq("id", account_id).execute()
        except Exception as e:
            logger.error(f"Error deleting test account {account_id}: {e}")
            raise HTTPException(status_code=500, detail="Failed to delete test account")
        return {"message": "Test account deleted successfully", "deletedAccountId": account_id}
