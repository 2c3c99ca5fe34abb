import logging
import math
import time
from typing import Any, Dict, Optional

import openai
from fastapi import HTTPException
from supabase import Client

from app.config import settings
from app.core.ai import MissingAPIKeyError, get_openai_client, resolve_api_key
from app.core.rate_limit import check_rate_limit
from app.core.tokens import generate_sms_webhook_secret
from app.database.supabase_client import fetch_single
from app.modules.account.credits import CreditService
from app.modules.agents.service import get_cached_agent
from app.modules.chat.prompts import knowledge_context_from_matches
from app.modules.knowledge.vector_store import VectorStore
from app.modules.sms.providers import SMS_PROVIDERS, check_provider_connection, format_phone_number, send_sms
from app.modules.sms.schemas import (
    IncomingSms, SmsConfigCreate, SmsConfigCreated, SmsConfigResponse, SmsConfigSummary, SmsConfigUpdate,
    SmsSettings, SmsTestRequest, SmsTestResponse, SmsWebhookResponse
)

logger = logging.getLogger(__name__)

# Dashboard field name -> agent_sms_config column, per provider
PROVIDER_FIELDS = {
    "twilio": {"accountSid": "twilio_account_sid", "authToken": "twilio_auth_token",
               "phoneNumber": "twilio_phone_number"},
    "msg91": {"authKey": "msg91_auth_key", "senderId": "msg91_sender_id", "route": "msg91_route"},
    "textlocal": {"apiKey": "textlocal_api_key", "sender": "textlocal_sender"},
    "gupshup": {"apiKey": "gupshup_api_key", "appId": "gupshup_app_id"},
}
SETTINGS_FIELDS = {
    "autoReply": "auto_reply_enabled",
    "greetingMessage": "greeting_message",
    "fallbackMessage": "fallback_message",
    "maxResponseLength": "max_response_length",
    "rateLimit": "rate_limit_per_number",
}
DEFAULT_SETTINGS = {
    "auto_reply_enabled": True,
    "greeting_message": "Hello! I'm your AI assistant. How can I help you today?",
    "fallback_message": "I'm sorry, I didn't understand that. Can you please rephrase?",
    "max_response_length": 1600,
    "rate_limit_per_number": 10,
}

RATE_LIMIT_WINDOW_SECONDS = 3600
RATE_LIMITED_REPLY = "You have reached the message limit. Please try again later."
UNAVAILABLE_REPLY = "Sorry, the service is temporarily unavailable. Please try again later."
TRUNCATION_SUFFIX = "... (truncated)"
SMS_MAX_TOKENS = 300
KNOWLEDGE_RESULTS = 3


def parse_incoming_sms(provider: str, data: Dict[str, Any]) -> Optional[IncomingSms]:
    """Normalise a provider's inbound payload (Twilio form fields, JSON for the others)."""
    if provider == "twilio":
        fields = (data.get("From"), data.get("Body"), data.get("MessageSid"), data.get("FromCountry"))
    elif provider == "msg91":
        fields = (data.get("from") or data.get("mobile"), data.get("text") or data.get("message"),
                  data.get("requestId"), "IN")
    elif provider == "textlocal":
        fields = (data.get("sender"), data.get("message"), data.get("inNumber"), "IN")
    elif provider == "gupshup":
        fields = (data.get("mobile"), data.get("text"), data.get("messageId"), "IN")
    else:
        return None
    phone_number, body, message_sid, country_code = fields
    if not phone_number or not body:
        return None
    return IncomingSms(
        phone_number=str(phone_number),
        body=str(body),
        message_sid=str(message_sid) if message_sid is not None else None,
        country_code=country_code,
    )


def sms_session_id(phone_number: str) -> str:
    return "sms_" + "".join(ch for ch in phone_number if ch.isdigit())


def truncate_reply(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[:max(max_length - 20, 0)] + TRUNCATION_SUFFIX


def generate_sms_system_prompt(agent: Dict[str, Any], config: Dict[str, Any]) -> str:
    max_length = config.get("max_response_length") or DEFAULT_SETTINGS["max_response_length"]
    return (
        f"You are {agent.get('name')}, an AI assistant responding via SMS.\n\n"
        f"{agent.get('persona') or 'Be helpful, concise, and friendly.'}\n\n"
        "IMPORTANT SMS GUIDELINES:\n"
        f"- Keep responses VERY SHORT and concise (under {max_length} characters)\n"
        "- Use simple language without formatting (no markdown, no special characters)\n"
        "- Get straight to the point\n"
        "- If a response would be too long, provide a summary and offer to provide more details\n"
        "- Use line breaks sparingly\n"
        "- No emojis unless specifically asked\n\n"
        f"{agent.get('system_prompt') or ''}\n\n"
        f"Current greeting message: {config.get('greeting_message') or 'Hello! How can I help you?'}\n"
    )


class SmsService:
    def __init__(self, supabase: Client, vector_store: VectorStore = None):
        self.supabase = supabase
        self.vectors = vector_store or VectorStore(supabase)
        self.credits = CreditService(supabase)

    # -- configuration ------------------------------------------------------

    def get_config(self, agent_id: str) -> Optional[Dict[str, Any]]:
        return fetch_single(self.supabase.table("agent_sms_config").select("*").eq("agent_id", agent_id))

    def _require_config(self, agent_id: str) -> Dict[str, Any]:
        config = self.get_config(agent_id)
        if not config:
            raise HTTPException(status_code=404, detail="SMS configuration not found")
        return config

    def get_safe_config(self, agent_id: str) -> SmsConfigResponse:
        config = self.get_config(agent_id)
        if not config:
            raise HTTPException(status_code=404, detail={"error": "No SMS configuration found", "exists": False})
        return SmsConfigResponse(**{
            field: config.get(field) for field in SmsConfigResponse.model_fields if field in config
        })

    def create_config(self, agent: Dict[str, Any], body: SmsConfigCreate) -> SmsConfigCreated:
        if self.get_config(agent["id"]):
            raise HTTPException(status_code=409, detail="SMS configuration already exists. Use PUT to update.")
        if body.provider not in SMS_PROVIDERS:
            raise HTTPException(status_code=400, detail="Invalid provider")

        secret = generate_sms_webhook_secret()
        webhook_url = f"{settings.api_url}/api/v1/sms/webhook/{secret}"
        row = {
            "agent_id": agent["id"],
            "user_id": agent.get("user_id"),
            "provider": body.provider,
            "webhook_secret": secret,
            "webhook_url": webhook_url,
            # inactive until the owner has tested the connection
            "is_active": False,
            **{column: body.config.get(field) for field, column in PROVIDER_FIELDS[body.provider].items()},
            **DEFAULT_SETTINGS,
            **self._settings_columns(body.settings),
        }
        if body.provider == "msg91":
            row["msg91_route"] = row["msg91_route"] or "transactional"
        try:
            result = self.supabase.table("agent_sms_config").insert(row).execute()
        except Exception as e:
            logger.error(f"Error creating SMS config for agent {agent['id']}: {e}")
            raise HTTPException(status_code=500, detail="Failed to create SMS configuration")
        created = result.data[0]
        logger.info(f"SMS configuration {created['id']} ({body.provider}) created for agent {agent['id']}")
        return SmsConfigCreated(
            config=SmsConfigSummary(id=created["id"], webhook_url=webhook_url, provider=body.provider),
            message="SMS configuration created successfully. Please test the connection before activating.",
        )

    def update_config(self, agent_id: str, body: SmsConfigUpdate) -> Dict[str, Any]:
        existing = self._require_config(agent_id)
        updates: Dict[str, Any] = {}
        if body.config:
            for field, column in PROVIDER_FIELDS.get(existing["provider"], {}).items():
                if body.config.get(field):
                    updates[column] = body.config[field]
        updates.update(self._settings_columns(body.settings))
        if body.isActive is not None:
            updates["is_active"] = body.isActive
        if updates:
            try:
                self.supabase.table("agent_sms_config").update(updates).eq("id", existing["id"]).execute()
            except Exception as e:
                logger.error(f"Error updating SMS config {existing['id']}: {e}")
                raise HTTPException(status_code=500, detail="Failed to update SMS configuration")
        return {"success": True, "message": "SMS configuration updated successfully"}

    def delete_config(self, agent_id: str) -> Dict[str, Any]:
        existing = self._require_config(agent_id)
        try:
            self.supabase.table("agent_sms_config").delete().eq("id", existing["id"]).execute()
        except Exception as e:
            logger.error(f"Error deleting SMS config {existing['id']}: {e}")
            raise HTTPException(status_code=500, detail="Failed to delete SMS configuration")
        return {"success": True, "message": "SMS configuration deleted successfully"}

    @staticmethod
    def _settings_columns(sms_settings: Optional[SmsSettings]) -> Dict[str, Any]:
        """Only supplied values; autoReply may be False, the rest must be truthy."""
        if sms_settings is None:
            return {}
        columns = {}
        for field, column in SETTINGS_FIELDS.items():
            value = getattr(sms_settings, field)
            if (value is not None) if field == "autoReply" else bool(value):
                columns[column] = value
        return columns

    def run_test(self, agent: Dict[str, Any], body: SmsTestRequest) -> SmsTestResponse:
        config = self._require_config(agent["id"])
        if body.testType == "connection":
            result = check_provider_connection(config)
            if not result.get("success"):
                raise HTTPException(status_code=400, detail={
                    "success": False, "error": result.get("error"), "details": result.get("details"),
                })
            return SmsTestResponse(
                message="Connection test successful",
                provider=config["provider"],
                details=result.get("details"),
            )
        if body.testType == "message":
            if not body.testPhoneNumber:
                raise HTTPException(status_code=400, detail="Test phone number is required")
            phone_number = format_phone_number(body.testPhoneNumber, config["provider"])
            result = send_sms(
                config, phone_number,
                f"Test message from {agent.get('name')}! Your SMS bot is working correctly.",
            )
            if not result.get("success"):
                raise HTTPException(status_code=400, detail={"success": False, "error": result.get("error")})
            return SmsTestResponse(
                message="Test SMS sent successfully",
                messageSid=result.get("messageSid"),
                phoneNumber=phone_number,
            )
        raise HTTPException(status_code=400, detail="Invalid test type")

    # -- inbound messages ---------------------------------------------------

    def get_active_config_by_secret(self, webhook_secret: str) -> Dict[str, Any]:
        config = fetch_single(
            self.supabase.table("agent_sms_config").select("*").eq("webhook_secret", webhook_secret)
        )
        if not config or not config.get("is_active"):
            raise HTTPException(status_code=404, detail="Invalid webhook")
        return config

    def handle_incoming(self, config: Dict[str, Any], incoming: Optional[IncomingSms]) -> SmsWebhookResponse:
        """Answer one inbound SMS with the agent and text the reply back to the sender."""
        started = time.monotonic()
        if incoming is None:
            raise HTTPException(status_code=400, detail="Invalid SMS data")
        phone_number = incoming.phone_number
        base = {
            "agent_id": config["agent_id"],
            "sms_config_id": config["id"],
            "phone_number": phone_number,
            "country_code": incoming.country_code,
        }

        limit = config.get("rate_limit_per_number") or DEFAULT_SETTINGS["rate_limit_per_number"]
        if not check_rate_limit(f"sms:{config['id']}:{phone_number}", limit, RATE_LIMIT_WINDOW_SECONDS).allowed:
            logger.info(f"SMS rate limit exceeded for {phone_number} on config {config['id']}")
            self.save_message({
                **base, "message_type": "incoming", "message_body": incoming.body,
                "message_sid": incoming.message_sid, "status": "rate_limited", "error_message": "Rate limit exceeded",
            })
            send_sms(config, phone_number, RATE_LIMITED_REPLY)
            return SmsWebhookResponse(message="Rate limited")

        incoming_row = self.save_message({
            **base, "message_type": "incoming", "message_body": incoming.body,
            "message_sid": incoming.message_sid, "status": "received",
        })

        try:
            return self._reply(config, incoming, base, incoming_row, started)
        except HTTPException:
            raise
        except openai.AuthenticationError:
            raise HTTPException(status_code=401, detail="Invalid API key configuration")
        except Exception as e:
            logger.error(f"SMS webhook error for config {config['id']}: {e}")
            raise HTTPException(status_code=500, detail="Failed to process SMS")

    def _reply(self, config: Dict[str, Any], incoming: IncomingSms, base: Dict[str, Any],
               incoming_row: Dict[str, Any], started: float) -> SmsWebhookResponse:
        agent = get_cached_agent(self.supabase, config["agent_id"])
        if not agent or not agent.get("is_active", True):
            raise RuntimeError("Agent not found or inactive")

        try:
            key = resolve_api_key(self.supabase, agent)
        except MissingAPIKeyError as e:
            logger.error(f"No API key for SMS agent {agent['id']}: {e}")
            send_sms(config, incoming.phone_number, UNAVAILABLE_REPLY)
            self.save_message({
                **base, "message_type": "outgoing", "message_body": "Service error",
                "status": "failed", "error_message": str(e),
            })
            raise HTTPException(status_code=500, detail={"success": False, "error": "API key error"})

        knowledge_context = self._knowledge_context(agent["id"], incoming.body)
        completion = get_openai_client(key.api_key).chat.completions.create(
            model=agent.get("model") or settings.default_chat_model,
            messages=[
                {"role": "system", "content": generate_sms_system_prompt(agent, config) + knowledge_context},
                {"role": "user", "content": incoming.body},
            ],
            max_tokens=SMS_MAX_TOKENS,
            temperature=agent.get("temperature") or 0.7,
        )
        content = completion.choices[0].message.content if completion.choices else None
        reply = content or config.get("fallback_message") or DEFAULT_SETTINGS["fallback_message"]
        reply = truncate_reply(reply, config.get("max_response_length") or DEFAULT_SETTINGS["max_response_length"])
        tokens_used = completion.usage.total_tokens if completion.usage else 0

        sent = send_sms(config, incoming.phone_number, reply)
        response_time = int((time.monotonic() - started) * 1000)
        self.save_message({
            **base,
            "message_type": "outgoing",
            "message_body": reply,
            "message_sid": sent.get("messageSid"),
            "tokens_used": tokens_used,
            "response_time_ms": response_time,
            "status": "sent" if sent.get("success") else "failed",
            "error_message": sent.get("error"),
            "session_id": sms_session_id(incoming.phone_number),
            "conversation_context": {
                "knowledge_used": bool(knowledge_context),
                "incoming_message_id": (incoming_row or {}).get("id"),
                "api_key_source": key.source,
            },
        })
        if key.is_platform and agent.get("user_id"):
            self.credits.deduct_credits(agent["user_id"], max(1, math.ceil(tokens_used / 1000)))
        logger.info(f"SMS reply to {incoming.phone_number} using {key.source} key")
        return SmsWebhookResponse(
            message="SMS processed successfully",
            responseTime=response_time,
            apiKeySource=key.source,
        )

    def _knowledge_context(self, agent_id: str, query: str) -> str:
        has_sources = self.supabase.table("knowledge_sources")\
            .select("id")\
            .eq("agent_id", agent_id)\
            .limit(1)\
            .execute().data
        if not has_sources:
            return ""
        try:
            matches = self.vectors.search(agent_id, query, KNOWLEDGE_RESULTS, 0.7)
        except Exception as e:
            logger.warning(f"Vector search failed for SMS agent {agent_id}: {e}")
            return ""
        return knowledge_context_from_matches(matches) if matches else ""

    def save_message(self, row: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        try:
            result = self.supabase.table("sms_conversations").insert(row).execute()
        except Exception as e:
            logger.error(f"Error saving SMS message for agent {row.get('agent_id')}: {e}")
            return None
        return result.data[0] if result.data else None
