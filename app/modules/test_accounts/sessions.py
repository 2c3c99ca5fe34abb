"""Public side of test links: validate the token, run sessions and relay messages to the agent."""
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

from fastapi import HTTPException
from supabase import Client

from app.config import settings
from app.core.ai import get_openai_client, resolve_api_key
from app.core.dates import parse_timestamp, utc_now
from app.core.tokens import generate_session_id
from app.database.supabase_client import fetch_single
from app.modules.chat.history import ConversationHistory
from app.modules.chat.prompts import generate_system_prompt
from app.modules.test_accounts.schemas import PublicTestAccount, PublicTestAccountResponse, TestAction
from app.modules.test_accounts.utils import parse_device_info

logger = logging.getLogger(__name__)

AI_FALLBACK_RESPONSE = "Sorry, I encountered an error. Please try again."
ACCOUNT_COLUMNS = "*, agents(id, user_id, name, description, persona, tone, purpose, instructions, " \
                  "model, temperature, max_tokens, api_key_id, use_platform_key)"


@dataclass
class ClientInfo:
    ip_address: str
    user_agent: Optional[str]


class TestSessionService:
    def __init__(self, supabase: Client):
        self.supabase = supabase
        self.history = ConversationHistory(supabase)

    def get_account_by_token(self, access_token: str) -> Dict[str, Any]:
        account = fetch_single(
            self.supabase.table("test_accounts")
            .select(ACCOUNT_COLUMNS)
            .eq("access_token", access_token)
            .eq("is_active", True)
        )
        if not account:
            raise HTTPException(status_code=404, detail={
                "error": "Invalid or expired test link",
                "message": "This test link is no longer valid. Please contact the sender for a new invitation.",
            })
        expires = parse_timestamp(account.get("expires_at"))
        if expires and expires < utc_now():
            self.supabase.table("test_accounts")\
                .update({"status": "expired", "is_active": False})\
                .eq("id", account["id"])\
                .execute()
            raise HTTPException(status_code=404, detail={
                "error": "Invalid or expired test link",
                "message": "This test link has expired.",
            })
        return account

    @staticmethod
    def remaining_sessions(account: Dict[str, Any]) -> int:
        return max(0, (account.get("max_sessions") or 0) - (account.get("sessions_count") or 0))

    def _ensure_active(self, account: Dict[str, Any]) -> None:
        if account.get("status") not in ("invited", "active") or not account.get("is_active"):
            raise HTTPException(status_code=403, detail={
                "error": "Test account is not active",
                "message": "This test account has been deactivated.",
            })

    def validate(self, access_token: str) -> PublicTestAccountResponse:
        account = self.get_account_by_token(access_token)
        self._ensure_active(account)
        if self.remaining_sessions(account) <= 0:
            raise HTTPException(status_code=403, detail={
                "error": "Session limit reached",
                "message": f"You have reached the maximum number of test sessions ({account.get('max_sessions')}).",
            })
        if account.get("status") == "invited":
            self._activate(account)

        agent = account.get("agents") or {}
        return PublicTestAccountResponse(testAccount=PublicTestAccount(
            id=account["id"],
            name=account["name"],
            agentName=agent.get("name"),
            agentDescription=agent.get("description"),
            agentPersona=agent.get("persona"),
            agentTone=agent.get("tone"),
            maxMessagesPerSession=account.get("max_messages_per_session"),
            permissions=account.get("permissions"),
            remainingSessions=self.remaining_sessions(account),
        ))

    def _activate(self, account: Dict[str, Any]) -> None:
        now = utc_now().isoformat()
        self.supabase.table("test_accounts")\
            .update({"status": "active", "first_accessed_at": now, "last_active_at": now})\
            .eq("id", account["id"])\
            .execute()
        self.supabase.table("test_invitations")\
            .update({"status": "accepted", "accepted_at": now})\
            .eq("test_account_id", account["id"])\
            .execute()
        account["status"] = "active"
        logger.info(f"Test account {account['id']} activated")

    def handle_action(self, access_token: str, action: TestAction, client: ClientInfo) -> Dict[str, Any]:
        account = self.get_account_by_token(access_token)
        self._ensure_active(account)
        if action.action == "start_session":
            return self.start_session(account, client)
        if action.action == "send_message":
            return self.send_message(account, action.sessionId, action.message)
        if action.action == "end_session":
            return self.end_session(account, action.sessionId, action.rating, action.feedback)
        raise HTTPException(status_code=400, detail="Invalid action")

    def start_session(self, account: Dict[str, Any], client: ClientInfo) -> Dict[str, Any]:
        if self.remaining_sessions(account) <= 0:
            raise HTTPException(status_code=403, detail="Session limit reached")
        if account.get("status") == "invited":
            self._activate(account)
        device = parse_device_info(client.user_agent)
        session_id = generate_session_id("test")
        result = self.supabase.table("test_sessions").insert({
            "test_account_id": account["id"],
            "agent_id": account["agent_id"],
            "session_id": session_id,
            "status": "active",
            "user_agent": client.user_agent,
            "ip_address": client.ip_address,
            "device_type": device["device_type"],
            "browser": device["browser"],
            "messages_count": 0,
            "started_at": utc_now().isoformat(),
        }).execute()
        session = result.data[0] if result.data else {}
        self.supabase.table("test_accounts")\
            .update({
                "sessions_count": (account.get("sessions_count") or 0) + 1,
                "last_active_at": utc_now().isoformat(),
            })\
            .eq("id", account["id"])\
            .execute()
        self._log(account, "session_started", {"session_id": session_id, **device}, session.get("id"))
        return {"sessionId": session_id, "message": "Session started successfully"}

    def _find_session(self, account: Dict[str, Any], session_id: str) -> Optional[Dict[str, Any]]:
        result = self.supabase.table("test_sessions")\
            .select("*")\
            .eq("test_account_id", account["id"])\
            .eq("session_id", session_id)\
            .execute()
        return result.data[0] if result.data else None

    def send_message(self, account: Dict[str, Any], session_id: Optional[str],
                     message: Optional[str]) -> Dict[str, Any]:
        if not session_id or not message:
            raise HTTPException(status_code=400, detail="Session ID and message are required")
        session = self._find_session(account, session_id)
        used = (session or {}).get("messages_count") or 0
        limit = account.get("max_messages_per_session")
        if limit and used >= limit:
            raise HTTPException(status_code=403, detail="Message limit reached for this session")

        started = time.monotonic()
        content, tokens_used = self._ask_agent(account.get("agents") or {}, message)
        response_time = int((time.monotonic() - started) * 1000)

        self.history.save(account["agent_id"], session_id, message, content,
                          {"source": "test", "test_account_id": account["id"]})
        if session:
            self.supabase.table("test_sessions")\
                .update({"messages_count": used + 1})\
                .eq("id", session["id"])\
                .execute()
        self.supabase.table("test_accounts")\
            .update({
                "messages_count": (account.get("messages_count") or 0) + 1,
                "last_active_at": utc_now().isoformat(),
            })\
            .eq("id", account["id"])\
            .execute()
        self._log(account, "message_sent", {"session_id": session_id, "message_length": len(message)},
                  (session or {}).get("id"), tokens_used=tokens_used, response_time_ms=response_time)
        return {"response": content, "tokensUsed": tokens_used, "responseTime": response_time}

    def _ask_agent(self, agent: Dict[str, Any], message: str):
        try:
            key = resolve_api_key(self.supabase, agent)
            completion = get_openai_client(key.api_key).chat.completions.create(
                model=agent.get("model") or settings.default_chat_model,
                messages=[
                    {"role": "system", "content": generate_system_prompt(agent)},
                    {"role": "user", "content": message},
                ],
                temperature=agent.get("temperature") or 0.7,
                max_tokens=agent.get("max_tokens") or 1024,
            )
            tokens = completion.usage.total_tokens if completion.usage else 0
            return completion.choices[0].message.content or "", tokens
        except Exception as e:
            logger.error(f"Error calling AI for test agent {agent.get('id')}: {e}")
            return AI_FALLBACK_RESPONSE, 0

    def end_session(self, account: Dict[str, Any], session_id: Optional[str], rating: Optional[int] = None,
                    feedback: Optional[str] = None) -> Dict[str, Any]:
        if not session_id:
            raise HTTPException(status_code=400, detail="Session ID is required")
        session = self._find_session(account, session_id)
        if session:
            now = utc_now()
            updates = {
                "status": "completed",
                "completed_at": now.isoformat(),
                "rating": rating,
                "feedback_text": feedback,
            }
            started = parse_timestamp(session.get("started_at"))
            if started:
                updates["duration_seconds"] = int((now - started).total_seconds())
            self.supabase.table("test_sessions").update(updates).eq("id", session["id"]).execute()
        self._log(account, "session_ended",
                  {"session_id": session_id, "rating": rating, "had_feedback": bool(feedback)},
                  (session or {}).get("id"))
        return {"message": "Session ended successfully"}

    def _log(self, account: Dict[str, Any], event_type: str, event_data: Dict[str, Any],
             test_session_id: Optional[str] = None, tokens_used: int = 0,
             response_time_ms: Optional[int] = None) -> None:
        try:
            self.supabase.table("test_analytics").insert({
                "test_account_id": account["id"],
                "test_session_id": test_session_id,
                "agent_id": account["agent_id"],
                "event_type": event_type,
                "event_data": event_data,
                "tokens_used": tokens_used,
                "response_time_ms": response_time_ms,
            }).execute()
        except Exception as e:
            logger.warning(f"Failed to log test analytics {event_type} for account {account['id']}: {e}")
