import logging
from typing import Any, Dict, List, Optional

from fastapi import HTTPException
from supabase import Client

from app.config import settings
from app.core.ai import get_openai_client
from app.core.dates import utc_now
from app.database.supabase_client import fetch_single
from app.modules.agents.schemas import AgentCreate
from app.modules.agents.service import AgentService
from app.modules.analytics.service import log_event
from app.modules.nlp.ai_parser import AIAgentParser, AIParseError, validate_agent_config
from app.modules.nlp.parser import parse_agent_description
from app.modules.nlp.schemas import (
    NlpParseRequest, NlpParseResponse, NlpCreateAgentRequest, NlpCreateAgentResponse, NlpCreatedAgent
)
from app.modules.webhooks.schemas import WebhookCreate
from app.modules.webhooks.service import WebhookService

logger = logging.getLogger(__name__)

AGENT_TYPE_TO_DOMAIN = {
    "customer_support": "supportservice",
    "sales": "sales",
    "content_writer": "creator",
    "data_analyst": "business",
    "code_assistant": "developer",
    "general_assistant": "business",
}


def template_keywords(description: str) -> List[str]:
    return [w for w in description.lower().split() if len(w) > 3]


class NlpService:
    def __init__(self, supabase: Client, ai_parser: Optional[AIAgentParser] = None):
        self.supabase = supabase
        self._ai_parser = ai_parser

    @property
    def ai_parser(self) -> Optional[AIAgentParser]:
        if self._ai_parser is None and settings.openai_api_key:
            self._ai_parser = AIAgentParser(get_openai_client())
        return self._ai_parser

    def _update_request(self, request_id: str, updates: Dict[str, Any]) -> None:
        self.supabase.table("nlp_agent_requests").update(updates).eq("id", request_id).execute()

    def parse(self, body: NlpParseRequest, user_id: str) -> NlpParseResponse:
        description = (body.description or "").strip()
        if len(description) < 10:
            raise HTTPException(status_code=400, detail="Description must be at least 10 characters")

        try:
            result = self.supabase.table("nlp_agent_requests").insert({
                "user_id": user_id,
                "raw_input": description,
                "status": "pending",
            }).execute()
            request_id = result.data[0]["id"]

            config, method, tokens_used = self._parse_config(request_id, description, body.useAI)
            matched_template = self.find_template(template_keywords(description))

            validation = validate_agent_config(config)
            if not validation["valid"]:
                self._update_request(request_id, {
                    "status": "failed",
                    "error_message": "; ".join(validation["errors"]),
                })
                raise HTTPException(status_code=400, detail={
                    "error": "Configuration validation failed",
                    "details": validation["errors"],
                })

            sanitized = validation["sanitizedConfig"]
            metadata = config.get("metadata") or {}
            self._update_request(request_id, {
                "status": "completed",
                "parsed_intent": {
                    "agentType": sanitized.get("agentType"),
                    "category": metadata.get("category"),
                    "confidence": metadata.get("confidence"),
                },
                "extracted_config": sanitized,
                "processed_at": utc_now().isoformat(),
                "model_used": sanitized["model"] if method == "ai" else "rule-based",
            })
            return NlpParseResponse(
                requestId=request_id,
                config=sanitized,
                matchedTemplate=matched_template,
                parsingMethod=method,
                tokensUsed=tokens_used,
                confidence=metadata.get("confidence") or 0.75,
            )
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"NLP parsing error: {e}")
            raise HTTPException(status_code=500, detail={
                "error": "Failed to parse agent description",
                "details": str(e),
            })

    def _parse_config(self, request_id: str, description: str, use_ai: bool):
        """AI parsing when enabled and configured, falling back to the rule-based parser."""
        parser = self.ai_parser if use_ai else None
        if parser is None:
            return parse_agent_description(description), "rule-based", 0

        self._update_request(request_id, {"status": "processing"})
        try:
            result = parser.parse(description)
        except AIParseError:
            return parse_agent_description(description), "rule-based-fallback", 0

        config = result["config"]
        self.supabase.table("nlp_parsing_history").insert({
            "request_id": request_id,
            "stage": "intent_extraction",
            "input_text": description,
            "output_data": config,
            "model_used": result["model"],
            "tokens_used": result["tokensUsed"],
            "confidence_score": (config.get("metadata") or {}).get("confidence") or 0.85,
        }).execute()
        return config, "ai", result["tokensUsed"]

    def find_template(self, keywords: List[str]) -> Optional[Dict[str, Any]]:
        """Active template sharing the most keywords (substring match either way), if any."""
        result = self.supabase.table("agent_templates")\
            .select("*")\
            .eq("is_active", True)\
            .execute()
        best, best_score = None, 0
        for template in result.data or []:
            template_words = [t.lower() for t in template.get("keywords") or []]
            score = sum(1 for kw in keywords if any(kw in t or t in kw for t in template_words))
            if score > best_score:
                best, best_score = {**template, "matchScore": score}, score
        return best

    def create_agent(self, body: NlpCreateAgentRequest, user_id: str) -> NlpCreateAgentResponse:
        if not body.requestId:
            raise HTTPException(status_code=400, detail="Request ID is required")
        nlp_request = fetch_single(
            self.supabase.table("nlp_agent_requests")
            .select("*")
            .eq("id", body.requestId)
            .eq("user_id", user_id)
        )
        if not nlp_request or not nlp_request.get("extracted_config"):
            raise HTTPException(status_code=400, detail="Invalid or incomplete NLP request")

        custom = body.customizations
        config = {**nlp_request["extracted_config"], **custom.model_dump(exclude_unset=True)}
        try:
            agent_data = AgentCreate(
                name=config.get("name") or "AI Assistant",
                description=config.get("purpose"),
                purpose=config.get("purpose"),
                domain=custom.domain or AGENT_TYPE_TO_DOMAIN.get(config.get("agentType"), "business"),
                tone=custom.tone or config.get("tone") or "professional",
                interface=custom.interface,
                model=config.get("model") or "gpt-4o",
                temperature=config.get("temperature") or 0.7,
                max_tokens=config.get("maxTokens") or 4096,
                system_prompt=config.get("systemPrompt"),
                tools=config.get("tools") or [],
                services=custom.services,
            )
            agent = AgentService(self.supabase).create_agent(agent_data, user_id, extra={
                "response_format": config.get("responseFormat") or "text",
                "service_config": {},
                "metadata": {
                    "createdVia": "nlp",
                    "nlpRequestId": body.requestId,
                    "agentType": config.get("agentType"),
                    "features": config.get("features"),
                    "integrations": config.get("integrations"),
                    "constraints": config.get("constraints"),
                    "examples": config.get("examples"),
                },
            })

            self._add_knowledge_sources(agent["id"], config.get("knowledgeSources") or [])
            if "webhook" in (config.get("features") or []) or custom.createWebhook:
                self._create_webhook(agent["id"])

            self._update_request(body.requestId, {
                "agent_id": agent["id"],
                "status": "completed",
                "processed_at": utc_now().isoformat(),
            })
            log_event(self.supabase, agent["id"], "agent_created", {
                "createdVia": "nlp",
                "parsingMethod": nlp_request.get("model_used"),
                "interface": custom.interface,
                "services": custom.services,
                "hasKnowledgeSources": bool(config.get("knowledgeSources")),
            })
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Agent creation error for NLP request {body.requestId}: {e}")
            raise HTTPException(status_code=500, detail={"error": "Failed to create agent", "details": str(e)})

        return NlpCreateAgentResponse(agent=NlpCreatedAgent(
            id=agent["id"],
            name=agent["name"],
            description=agent.get("description"),
            domain=agent.get("domain"),
            interface=agent.get("interface"),
            services=agent.get("services") or [],
            sandbox_url=agent.get("sandbox_url"),
            config={
                "model": agent.get("model"),
                "temperature": agent.get("temperature"),
                "max_tokens": agent.get("max_tokens"),
                "tone": agent.get("tone"),
            },
        ))

    def _add_knowledge_sources(self, agent_id: str, sources: List[Dict[str, Any]]) -> None:
        for source in sources:
            source_type = source.get("type")
            try:
                self.supabase.table("knowledge_sources").insert({
                    "agent_id": agent_id,
                    "source_type": source_type,
                    "source_url": source.get("content") if source_type == "url" else None,
                    "file_name": source.get("name"),
                    "content": source.get("content") if source_type == "text" else None,
                    "status": "pending",
                    "metadata": {},
                }).execute()
            except Exception as e:
                logger.error(f"Failed to add knowledge source for agent {agent_id}: {e}")

    def _create_webhook(self, agent_id: str) -> None:
        try:
            WebhookService(self.supabase).create_webhook(
                agent_id, WebhookCreate(name="Default webhook", rate_limit=100, allowed_origins=["*"])
            )
        except HTTPException as e:
            logger.error(f"Failed to create webhook for agent {agent_id}: {e.detail}")
