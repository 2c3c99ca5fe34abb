"""OpenAI JSON-mode extraction of agent configurations, plus validation of any parsed config."""
import json
import logging
from typing import Any, Dict, List, Optional

from openai import OpenAI

from app.config import settings

logger = logging.getLogger(__name__)

VALID_AGENT_TYPES = (
    "customer_support", "sales", "content_writer", "data_analyst", "code_assistant", "general_assistant",
)
VALID_MODELS = ("gpt-4o", "gpt-4o-mini", "gpt-4-turbo", "gpt-3.5-turbo")
LIST_FIELDS = ("features", "tools", "knowledgeSources", "integrations", "constraints", "examples")

SYSTEM_MESSAGE = "You are an expert at extracting structured data from natural language. " \
                 "Always respond with valid JSON only."

EXTRACTION_PROMPT = """You are an expert at extracting structured agent configurations from natural language descriptions.

Given the following user description, extract a complete agent configuration:

USER DESCRIPTION:
"{description}"

Respond ONLY with a JSON object with these keys:
- name: agent name (extract from the description or generate an appropriate one)
- purpose: clear one-sentence purpose
- agentType: one of {agent_types}
- model: one of {models}
- temperature: 0.5-0.9
- tone: professional | friendly | technical | concise | balanced
- systemPrompt: detailed system prompt capturing the agent's personality and purpose
- maxTokens: 1000-3000
- features, tools, integrations: arrays of strings
- knowledgeSources: array of {{"type": "url|document|text", "name": ..., "content": ...}}
- responseFormat: text | json | markdown
- constraints: array of limitations or rules mentioned
- examples: array of {{"input": ..., "output": ...}}
- metadata: {{"category": "support|sales|content|analytics|development|general", "targetAudience": ..., "useCases": [...], "confidence": 0.0-1.0}}

Fill in reasonable defaults for any missing information. Make the configuration production-ready."""


class AIParseError(Exception):
    pass


class AIAgentParser:
    def __init__(self, client: OpenAI, model: Optional[str] = None):
        self.client = client
        self.model = model or settings.nlp_model

    def parse(self, description: str) -> Dict[str, Any]:
        """Returns {config, tokensUsed, model}; raises AIParseError when the call or the JSON fails."""
        prompt = EXTRACTION_PROMPT.format(
            description=description,
            agent_types=" | ".join(VALID_AGENT_TYPES),
            models=" | ".join(VALID_MODELS),
        )
        try:
            completion = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_MESSAGE},
                    {"role": "user", "content": prompt},
                ],
                temperature=0.3,
                max_tokens=2000,
                response_format={"type": "json_object"},
            )
            config = json.loads(completion.choices[0].message.content or "")
        except Exception as e:
            logger.error(f"AI parsing error: {e}")
            raise AIParseError(str(e)) from e
        if not isinstance(config, dict):
            raise AIParseError("AI response was not a JSON object")
        return {
            "config": config,
            "tokensUsed": completion.usage.total_tokens if completion.usage else 0,
            "model": completion.model,
        }


def validate_agent_config(config: Dict[str, Any]) -> Dict[str, Any]:
    """Returns {valid, errors, sanitizedConfig}; out-of-range optional values fall back to defaults."""
    errors: List[str] = []
    sanitized = dict(config)

    if len((sanitized.get("name") or "").strip()) < 2:
        errors.append("Agent name is required and must be at least 2 characters")
    if len((sanitized.get("purpose") or "").strip()) < 10:
        errors.append("Agent purpose must be at least 10 characters")
    if sanitized.get("agentType") not in VALID_AGENT_TYPES:
        errors.append(f"Invalid agent type. Must be one of: {', '.join(VALID_AGENT_TYPES)}")

    if sanitized.get("model") not in VALID_MODELS:
        sanitized["model"] = "gpt-4o"
    temperature = sanitized.get("temperature")
    if not isinstance(temperature, (int, float)) or not 0 <= temperature <= 1:
        sanitized["temperature"] = 0.7
    max_tokens = sanitized.get("maxTokens")
    if not isinstance(max_tokens, int) or not 100 <= max_tokens <= 5000:
        sanitized["maxTokens"] = 1500
    for field in LIST_FIELDS:
        if not isinstance(sanitized.get(field), list):
            sanitized[field] = []

    return {"valid": not errors, "errors": errors, "sanitizedConfig": sanitized}
