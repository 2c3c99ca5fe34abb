"""Rule-based extraction of an agent configuration from a plain-language description."""
import re
from typing import Any, Dict, List
from urllib.parse import urlparse

from app.core.dates import utc_now

AGENT_TYPE_PATTERNS = (
    ("customer_support", re.compile(r"customer support|help desk|support bot|customer service|ticket", re.I)),
    ("sales", re.compile(r"sales|lead qualification|crm|prospect|deal|revenue", re.I)),
    ("content_writer", re.compile(r"content writer|blog|article|copywriting|content creation", re.I)),
    ("data_analyst", re.compile(r"data analyst|analytics|insights|metrics|dashboard|reporting", re.I)),
    ("code_assistant", re.compile(r"code|programming|developer|debug|engineer|software", re.I)),
)

SEARCH = re.compile(r"search|find|lookup|query", re.I)
EMAIL = re.compile(r"email|send email|notify via email", re.I)
SCHEDULING = re.compile(r"schedule|calendar|appointment|booking", re.I)
CRM = re.compile(r"crm|salesforce|hubspot", re.I)
DATABASE = re.compile(r"database|sql|query database", re.I)
API = re.compile(r"\bapi\b|integrate|webhook|third-party", re.I)

TONE_PATTERNS = (
    ("professional", re.compile(r"professional|formal|business", re.I)),
    ("friendly", re.compile(r"friendly|casual|warm|approachable", re.I)),
    ("technical", re.compile(r"technical|expert|detailed", re.I)),
    ("concise", re.compile(r"concise|brief|short|quick", re.I)),
)

FAST = re.compile(r"fast|quick|speed|real-time", re.I)
SMART = re.compile(r"smart|intelligent|advanced|complex", re.I)
COST_EFFECTIVE = re.compile(r"cheap|affordable|cost-effective|budget", re.I)

TYPE_NAMES = {
    "customer_support": "Support Assistant",
    "sales": "Sales Agent",
    "content_writer": "Content Writer",
    "data_analyst": "Data Analyst",
    "code_assistant": "Code Assistant",
    "general_assistant": "AI Assistant",
}

TONE_TEMPERATURES = {"professional": 0.6, "friendly": 0.8, "technical": 0.5, "concise": 0.5, "balanced": 0.7}

TONE_DESCRIPTIONS = {
    "professional": "professional and courteous",
    "friendly": "friendly and approachable",
    "technical": "technical and precise",
    "concise": "concise and to-the-point",
    "balanced": "helpful and balanced",
}

INTEGRATION_PATTERNS = (
    ("salesforce", re.compile(r"salesforce", re.I)),
    ("hubspot", re.compile(r"hubspot", re.I)),
    ("slack", re.compile(r"slack", re.I)),
    ("gmail", re.compile(r"gmail|google mail", re.I)),
    ("calendar", re.compile(r"google calendar|calendar", re.I)),
    ("sheets", re.compile(r"google sheets|spreadsheet", re.I)),
    ("notion", re.compile(r"notion", re.I)),
    ("airtable", re.compile(r"airtable", re.I)),
    ("zapier", re.compile(r"zapier", re.I)),
)

PURPOSE_PATTERNS = (
    re.compile(r"\b(?:that|to|for)\s+([^.]+)", re.I),
    re.compile(r"\b(?:helps?|assists?|handles?)\s+(?:with\s+)?([^.]+)", re.I),
    re.compile(r"\b(?:purpose|goal|objective)(?:\s+is)?:\s*([^.]+)", re.I),
)
DOCUMENT_PATTERNS = (
    re.compile(r"documents?\s+(?:from|in|at)\s+([^,.]+)", re.I),
    re.compile(r"knowledge\s+(?:from|in)\s+([^,.]+)", re.I),
    re.compile(r"trained\s+on\s+([^,.]+)", re.I),
)
URL_PATTERN = re.compile(r"https?://\S+", re.I)
NAMED_PATTERN = re.compile(r"(?:called|named|name it|call it)\s+[\"']?([^\"'\n,]+)[\"']?", re.I)
TYPE_NAME_PATTERN = re.compile(r"\b(?:a|an)\s+([^,.]+?)\s+(?:agent|bot|assistant)", re.I)

DEFAULT_PURPOSE = "Assist users with their requests"


class AgentParser:
    def parse(self, description: str) -> Dict[str, Any]:
        text = description.strip()
        config = {
            "agentType": self.detect_agent_type(text),
            "name": self.extract_name(text),
            "purpose": self.extract_purpose(text),
            "features": self.detect_features(text),
            "tone": self.detect_tone(text),
            "model": self.select_model(text),
            "temperature": self.select_temperature(text),
            "systemPrompt": self.generate_system_prompt(text),
            "tools": self.detect_tools(text),
            "knowledgeSources": self.extract_knowledge_sources(text),
            "integrations": self.detect_integrations(text),
        }
        config["metadata"] = {
            "confidence": self.calculate_confidence(config),
            "rawInput": description,
            "parsedAt": utc_now().isoformat(),
        }
        return config

    @staticmethod
    def detect_agent_type(text: str) -> str:
        return next((name for name, pattern in AGENT_TYPE_PATTERNS if pattern.search(text)), "general_assistant")

    def extract_name(self, text: str) -> str:
        match = NAMED_PATTERN.search(text)
        if match:
            return match.group(1).strip()
        match = TYPE_NAME_PATTERN.search(text)
        if match:
            return match.group(1).strip().title()
        return TYPE_NAMES.get(self.detect_agent_type(text), "My Agent")

    @staticmethod
    def extract_purpose(text: str) -> str:
        for pattern in PURPOSE_PATTERNS:
            match = pattern.search(text)
            if match:
                return match.group(1).strip()
        return DEFAULT_PURPOSE

    @staticmethod
    def detect_features(text: str) -> List[str]:
        checks = (
            (SEARCH, "web_search"),
            (EMAIL, "email_notifications"),
            (SCHEDULING, "scheduling"),
            (CRM, "crm_integration"),
            (DATABASE, "database_access"),
            (API, "api_integrations"),
        )
        return [feature for pattern, feature in checks if pattern.search(text)]

    @staticmethod
    def detect_tone(text: str) -> str:
        return next((tone for tone, pattern in TONE_PATTERNS if pattern.search(text)), "balanced")

    @staticmethod
    def select_model(text: str) -> str:
        if COST_EFFECTIVE.search(text) or FAST.search(text):
            return "gpt-4o-mini"
        return "gpt-4o"

    def select_temperature(self, text: str) -> float:
        return TONE_TEMPERATURES.get(self.detect_tone(text), 0.7)

    def generate_system_prompt(self, text: str) -> str:
        tone = TONE_DESCRIPTIONS.get(self.detect_tone(text), "helpful")
        return (
            f"You are a {tone} AI assistant. Your purpose is to {self.extract_purpose(text)}. "
            "Provide accurate, helpful responses while maintaining this tone and focusing on your core purpose."
        )

    @staticmethod
    def detect_tools(text: str) -> List[str]:
        checks = (
            (SEARCH, "web_search"),
            (EMAIL, "email"),
            (SCHEDULING, "calendar"),
            (DATABASE, "database"),
            (AGENT_TYPE_PATTERNS[-1][1], "code_execution"),
        )
        return [tool for pattern, tool in checks if pattern.search(text)]

    @staticmethod
    def extract_knowledge_sources(text: str) -> List[Dict[str, str]]:
        sources = [
            {"type": "url", "content": url, "name": urlparse(url).hostname or url}
            for url in URL_PATTERN.findall(text)
        ]
        for pattern in DOCUMENT_PATTERNS:
            match = pattern.search(text)
            if match:
                ref = match.group(1).strip()
                sources.append({"type": "document", "content": ref, "name": ref})
        return sources

    @staticmethod
    def detect_integrations(text: str) -> List[str]:
        return [name for name, pattern in INTEGRATION_PATTERNS if pattern.search(text)]

    @staticmethod
    def calculate_confidence(config: Dict[str, Any]) -> float:
        score = 0
        if config.get("name") and config["name"] != "My Agent":
            score += 20
        if len(config.get("purpose") or "") > 10 and config["purpose"] != DEFAULT_PURPOSE:
            score += 30
        if config.get("features"):
            score += 20
        if config.get("tools"):
            score += 15
        if config.get("knowledgeSources"):
            score += 15
        return min(score, 100) / 100


def parse_agent_description(description: str) -> Dict[str, Any]:
    return AgentParser().parse(description)
