"""Public webhook execution: one message in, one agent reply out, every attempt logged."""
import hmac
import logging
import math
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from fastapi import HTTPException
from supabase import Client

from app.config import settings
from app.core.ai import get_openai_client, resolve_api_key
from app.core.dates import utc_now
from app.core.rate_limit import check_rate_limit
from app.database.supabase_client import fetch_single
from app.modules.account.credits import CreditService
from app.modules.agents.service import get_cached_agent
from app.modules.analytics.service import log_event
from app.modules.chat.history import ConversationHistory
from app.modules.chat.prompts import generate_system_prompt
from app.modules.webhooks.schemas import WebhookInvokeResponse

logger = logging.getLogger(__name__)

DEFAULT_SESSION_ID = "webhook-default"
REDACTED_HEADERS = ("authorization", "cookie")


@dataclass
class InvocationRequest:
    method: str
    headers: Dict[str, str]
    ip_address: str
    user_agent: str
    body: Optional[Dict[str, Any]] = None
    started: float = field(default_factory=time.monotonic)

    @property
    def bearer_token(self) -> Optional[str]:
        auth = self.headers.get("authorization") or ""
        return auth[7:] if auth.startswith("Bearer ") else (auth or None)


class WebhookInvoker:
    def __init__(self, supabase: Client):
        self.supabase = supabase
        self.history = ConversationHistory(supabase)
        self.credits = CreditService(supabase)

    def get_webhook(self, key: str) -> Dict[str, Any]:
        webhook = fetch_single(self.supabase.table("agent_webhooks").select("*").eq("webhook_key", key))
        if not webhook:
            raise HTTPException(status_code=404, detail="Webhook not found")
        return webhook

    @staticmethod
    def token_matches(webhook: Dict[str, Any], token: Optional[str]) -> bool:
        """A webhook that requires auth but has no stored token accepts nothing."""
        expected = webhook.get("auth_token") or ""
        return bool(token) and bool(expected) and hmac.compare_digest(token, expected)

    def invoke(self, key: str, request: InvocationRequest) -> WebhookInvokeResponse:
        webhook = self.get_webhook(key)
        if not webhook.get("is_active"):
            raise HTTPException(status_code=403, detail="Webhook is disabled")

        limit = check_rate_limit(f"webhook:{webhook['id']}:{request.ip_address}", webhook.get("rate_limit") or 100, 60)
        if not limit.allowed:
            self.log_invocation(webhook, request, 429, success=False, error="Rate limit exceeded")
            raise HTTPException(
                status_code=429,
                detail={"error": "Rate limit exceeded", "retryAfter": 60},
                headers={"Retry-After": "60"}
            )

        if webhook.get("requires_auth") and not self.token_matches(webhook, request.bearer_token):
            self.log_invocation(webhook, request, 401, success=False, error="Invalid authentication token")
            raise HTTPException(status_code=401, detail="Unauthorized")

        if request.body is None:
            raise HTTPException(status_code=400, detail="Invalid JSON in request body")
        body = dict(request.body)
        message = body.pop("message", None)
        session_id = body.pop("sessionId", None) or DEFAULT_SESSION_ID
        if not message:
            self.log_invocation(webhook, request, 400, success=False, error="Message is required")
            raise HTTPException(status_code=400, detail="Message is required in request body")

        try:
            return self._execute(webhook, request, str(message), session_id, body)
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Webhook {webhook['id']} execution error: {e}")
            self.log_invocation(webhook, request, 500, success=False, error=str(e))
            raise HTTPException(status_code=500, detail={"error": "Internal server error", "message": str(e)})

    def _execute(self, webhook: Dict[str, Any], request: InvocationRequest, message: str, session_id: str,
                 metadata: Dict[str, Any]) -> WebhookInvokeResponse:
        agent = get_cached_agent(self.supabase, webhook["agent_id"])
        if not agent:
            raise HTTPException(status_code=404, detail="Agent not found")
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
        content = completion.choices[0].message.content or ""
        tokens_used = completion.usage.total_tokens if completion.usage else 0
        response_time = int((time.monotonic() - request.started) * 1000)

        self.history.save(agent["id"], session_id, message, content, {"source": "webhook", **metadata})
        log_event(self.supabase, agent["id"], "webhook_invocation",
                  {"sessionId": session_id, "metadata": metadata, "webhook_id": webhook["id"]},
                  tokens_used=tokens_used, response_time_ms=response_time)
        if key.is_platform and agent.get("user_id"):
            self.credits.deduct_credits(agent["user_id"], math.ceil(tokens_used / 1000))
        self.log_invocation(webhook, request, 200, success=True,
                            response_body={"content": content, "tokensUsed": tokens_used})

        return WebhookInvokeResponse(
            response=content,
            sessionId=session_id,
            tokensUsed=tokens_used,
            responseTimeMs=response_time,
            timestamp=utc_now().isoformat(),
        )

    def log_invocation(self, webhook: Dict[str, Any], request: InvocationRequest, status: int, success: bool,
                       error: Optional[str] = None, response_body: Optional[Dict[str, Any]] = None) -> None:
        headers = {k: ("[redacted]" if k.lower() in REDACTED_HEADERS else v) for k, v in request.headers.items()}
        try:
            self.supabase.table("webhook_invocations").insert({
                "agent_webhook_id": webhook["id"],
                "agent_id": webhook["agent_id"],
                "request_method": request.method,
                "request_headers": headers,
                "request_body": request.body or {},
                "response_status": status,
                "response_body": response_body,
                "response_time_ms": int((time.monotonic() - request.started) * 1000),
                "ip_address": request.ip_address,
                "user_agent": request.user_agent,
                "success": success,
                "error_message": error,
            }).execute()
        except Exception as e:
            logger.error(f"Error logging invocation for webhook {webhook['id']}: {e}")
