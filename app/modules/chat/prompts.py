import json
from typing import Any, Dict, List, Optional

PURPOSE_INSTRUCTIONS = {
    "instagram": "You are an Instagram DM assistant. Respond professionally and help users with their inquiries.",
    "messenger": "You are a Messenger chatbot. Provide helpful responses and guide users.",
    "calendar": "You are a calendar booking assistant. Help users schedule appointments efficiently.",
    "website": "You are a website customer support agent. Answer questions and provide assistance.",
    "general": "You are a helpful AI assistant. Provide accurate and useful information.",
}

TONE_ADJUSTMENTS = {
    "friendly": "Use a warm, approachable, and friendly tone.",
    "professional": "Maintain a formal and business-like tone.",
    "casual": "Use a relaxed and conversational tone.",
    "enthusiastic": "Be energetic, excited, and positive.",
    "helpful": "Focus on being solution-oriented and supportive.",
}

FULL_DOCUMENT_LIMIT = 3000


def generate_system_prompt(agent: Dict[str, Any], calendar: Optional[Dict[str, Any]] = None) -> str:
    purpose = PURPOSE_INSTRUCTIONS.get(agent.get("purpose"), PURPOSE_INSTRUCTIONS["general"])
    tone = TONE_ADJUSTMENTS.get(agent.get("tone"), TONE_ADJUSTMENTS["friendly"])
    prompt = f"You are {agent.get('name')}, an AI assistant. {purpose}\n\n{tone}\n\n"
    if agent.get("persona"):
        prompt += f"Your personality: {agent['persona']}\n"

    if calendar and calendar.get("is_active"):
        prompt += (
            "\n\n=== CALENDAR BOOKING CAPABILITIES ===\n"
            "You have access to a calendar booking system:\n"
            f"- Integration: {calendar.get('integration_type')}\n"
            f"- Default duration: {calendar.get('booking_duration')} minutes\n"
            f"- Timezone: {calendar.get('timezone')}\n"
        )
        if calendar.get("calendly_url"):
            prompt += f"- Calendly URL: {calendar['calendly_url']}\n"
        prompt += (
            "\nWhen users want to schedule appointments, collect: date, time, name, email.\n"
            "Be conversational and confirm all details before finalizing.\n"
        )

    if agent.get("system_prompt"):
        prompt += f"\n\nAdditional Instructions:\n{agent['system_prompt']}"
    return prompt


def knowledge_context_from_matches(matches: List[Dict[str, Any]]) -> str:
    context = (
        "\n\n=== KNOWLEDGE BASE CONTEXT ===\n"
        "The following information is from documents the user has provided. This is THE SOURCE OF TRUTH - "
        "prioritize this information over your general knowledge:\n\n"
    )
    for index, match in enumerate(matches, start=1):
        metadata = match.get("metadata") or {}
        relevance = (match.get("similarity") or 0) * 100
        context += f"[Document {index}] ({metadata.get('fileName') or 'Uploaded Document'}) - Relevance: {relevance:.1f}%\n"
        context += f"{match.get('content')}\n\n"
    return context + "=== END KNOWLEDGE BASE CONTEXT ===\n\n"


def knowledge_context_from_sources(sources: List[Dict[str, Any]]) -> str:
    """Whole documents (truncated) when the vector search finds nothing."""
    context = "\n\n=== KNOWLEDGE BASE CONTEXT (FULL DOCUMENTS) ===\n"
    for index, source in enumerate(sources, start=1):
        name = source.get("file_name") or source.get("source_url") or "Uploaded Document"
        content = source.get("content") or ""
        if len(content) > FULL_DOCUMENT_LIMIT:
            content = content[:FULL_DOCUMENT_LIMIT] + "\n\n[... content truncated ...]"
        context += f"[Document {index}] {name}\n{content}\n\n"
    return context + "=== END KNOWLEDGE BASE CONTEXT ===\n\n"


def booking_flow_prompt(booking_context: Dict[str, Any]) -> str:
    data = booking_context["extractedData"]
    prompt = (
        "\n\n=== BOOKING FLOW ACTIVE ===\n"
        f"Current booking data extracted:\n{json.dumps(data, indent=2)}\n\n"
        f"Completion status: {'COMPLETE' if booking_context['isComplete'] else 'INCOMPLETE'}\n"
        f"Confidence: {booking_context.get('confidence', 0) * 100:.0f}%\n\n"
    )
    if not booking_context["isComplete"]:
        missing = [label for field, label in (("date", "Date"), ("time", "Time"), ("name", "Name"),
                                              ("email", "Email")) if not data.get(field)]
        prompt += "MISSING INFORMATION:\n" + "".join(f"- {label}\n" for label in missing)
    elif not booking_context.get("bookingCreated"):
        prompt += "ALL INFORMATION COLLECTED! Please confirm.\n"
    if booking_context.get("bookingCreated"):
        prompt += f"BOOKING CONFIRMED!\nBooking ID: {booking_context.get('bookingId')}\n"
    if booking_context.get("bookingError"):
        prompt += f"BOOKING FAILED: {booking_context['bookingError']}. Ask the user for a different time.\n"
    return prompt


SANDBOX_KNOWLEDGE_LIMIT = 2000


def sandbox_system_prompt(agent: Dict[str, Any]) -> str:
    """The agent's own prompt, or a short grounded one built from its inline knowledge."""
    if agent.get("system_prompt"):
        return agent["system_prompt"]
    prompt = f"You are {agent.get('name')}, an AI assistant."
    knowledge = (agent.get("knowledge_base") or "")[:SANDBOX_KNOWLEDGE_LIMIT]
    if knowledge:
        prompt += f" Use the following knowledge to answer questions accurately:\n{knowledge}"
    return prompt + (
        "\n\nImportant guidelines:\n"
        "- Base answers on provided knowledge\n"
        "- If unsure, say so\n"
        "- Stay concise and helpful"
    )
