import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import openai
from fastapi import HTTPException
from supabase import Client

from app.config import settings
from app.core.ai import MissingAPIKeyError, get_openai_client, resolve_api_key
from app.core.rate_limit import check_rate_limit, rate_limit_headers
from app.modules.account.credits import CreditService
from app.modules.agents.service import get_cached_agent
from app.modules.analytics.service import log_event
from app.modules.bookings.parser import BookingParser, REQUIRED_BOOKING_FIELDS
from app.modules.bookings.schemas import BookingCreate
from app.modules.bookings.service import BookingService
from app.modules.calendar.service import CalendarService
from app.modules.chat.history import ConversationHistory
from app.modules.chat.prompts import (
    generate_system_prompt, knowledge_context_from_matches, knowledge_context_from_sources, booking_flow_prompt,
    sandbox_system_prompt
)
from app.modules.chat.schemas import (
    ChatRequest, ChatResponse, ChatHistoryResponse, ChatClearResponse, KnowledgeUsage, KnowledgeSourceUsed,
    BookingContextSummary, SandboxRequest, SandboxResponse
)
from app.modules.knowledge.vector_store import VectorStore

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 5000
MAX_HISTORY_LIMIT = 100
HISTORY_EXCHANGES = 10
FALLBACK_RESPONSE = "I apologize, but I could not generate a response at this time."
BOOKING_FIELDS = ("date", "time", "timezone", "name", "email", "phone", "notes")
SANDBOX_MAX_TOKENS = 800
SANDBOX_ATTEMPTS = 3


class ChatService:
    def __init__(self, supabase: Client, vector_store: VectorStore = None, booking_service: BookingService = None):
        self.supabase = supabase
        self.history = ConversationHistory(supabase)
        self.vectors = vector_store or VectorStore(supabase)
        self.bookings = booking_service or BookingService(supabase)
        self.credits = CreditService(supabase)

    def send_message(self, agent_id: str, request: ChatRequest,
                     user_id: Optional[str] = None) -> Tuple[ChatResponse, Dict[str, str]]:
        """Answer one chat message. Returns the response body and the headers to send with it."""
        started = time.monotonic()
        if not request.message or not request.sessionId:
            raise HTTPException(status_code=400, detail="Message and sessionId are required")
        if len(request.message) > MAX_MESSAGE_LENGTH:
            raise HTTPException(status_code=400, detail="Message too long. Maximum 5000 characters.")

        limit = check_rate_limit(f"chat:{user_id or request.sessionId}", settings.chat_rate_limit, 60)
        if not limit.allowed:
            raise HTTPException(
                status_code=429,
                detail="Rate limit exceeded. Please try again later.",
                headers=rate_limit_headers(limit)
            )

        agent = get_cached_agent(self.supabase, agent_id)
        if not agent:
            raise HTTPException(status_code=404, detail=f"Agent {agent_id} not found")
        if not agent.get("is_active", True):
            raise HTTPException(status_code=400, detail="Agent is currently inactive")

        try:
            key = resolve_api_key(self.supabase, agent)
        except MissingAPIKeyError as e:
            raise HTTPException(status_code=500, detail={"error": str(e), "errorCode": "API_KEY_ERROR"})

        owner_id = agent.get("user_id")
        if key.is_platform and owner_id and not self.credits.has_credits(owner_id, 1):
            raise HTTPException(
                status_code=402,
                detail="Insufficient credits. Please top up your account or configure your own API key."
            )

        try:
            return self._respond(agent, request, user_id, key, started)
        except HTTPException:
            raise
        except openai.RateLimitError:
            self._log_failure(agent_id, request, user_id, "RateLimitError", "rate limited", started)
            raise HTTPException(
                status_code=429,
                detail="Service temporarily busy. Please try again in a moment.",
                headers={"Retry-After": "60"}
            )
        except openai.AuthenticationError as e:
            self._log_failure(agent_id, request, user_id, type(e).__name__, str(e), started)
            raise HTTPException(
                status_code=401,
                detail={"error": "Invalid API key. Please check your API key configuration.",
                        "errorCode": "INVALID_API_KEY"}
            )
        except Exception as e:
            logger.error(f"Chat error for agent {agent_id}: {e}")
            self._log_failure(agent_id, request, user_id, type(e).__name__, str(e), started)
            raise HTTPException(status_code=500, detail="An unexpected error occurred.")

    def _respond(self, agent: Dict[str, Any], request: ChatRequest, user_id: Optional[str], key,
                 started: float) -> Tuple[ChatResponse, Dict[str, str]]:
        agent_id = agent["id"]
        recent = self.history.recent(agent_id, request.sessionId, HISTORY_EXCHANGES)
        calendar = CalendarService(self.supabase).get_active_calendar(agent_id)

        knowledge_context, used_sources = "", []
        if request.useKnowledgeBase:
            knowledge_context, used_sources = self._retrieve_knowledge(agent_id, request)

        booking_context = None
        if calendar:
            booking_context = self._handle_booking(agent_id, request, recent, calendar)

        system_prompt = generate_system_prompt(agent, calendar)
        if knowledge_context:
            system_prompt += f"\n{knowledge_context}"
        if booking_context:
            system_prompt += booking_flow_prompt(booking_context)

        model = agent.get("model") or settings.default_chat_model
        completion = get_openai_client(key.api_key).chat.completions.create(
            model=model,
            messages=[
                {"role": "system", "content": system_prompt},
                *ConversationHistory.to_messages(recent, HISTORY_EXCHANGES),
                {"role": "user", "content": request.message},
            ],
            temperature=agent.get("temperature") or 0.7,
            max_tokens=agent.get("max_tokens") or 1000,
            frequency_penalty=0.3,
            user=request.sessionId,
        )
        answer = (completion.choices[0].message.content if completion.choices else None) or FALLBACK_RESPONSE
        tokens_used = completion.usage.total_tokens if completion.usage else 0
        response_time = int((time.monotonic() - started) * 1000)

        metadata = {
            **request.metadata,
            "model": model,
            "tokens_used": tokens_used,
            "response_time_ms": response_time,
            "user_id": user_id,
            "api_key_source": key.source,
            "vector_search_performed": bool(knowledge_context),
            "knowledge_sources_used": len(used_sources),
            "knowledge_sources": used_sources,
        }
        if booking_context:
            metadata["booking_context"] = booking_context
        conversation = self.history.save(agent_id, request.sessionId, request.message, answer, metadata)
        if conversation and booking_context and booking_context.get("bookingCreated"):
            self.bookings.link_conversation(booking_context["bookingId"], conversation["id"],
                                            booking_context["extractedData"], booking_context["confidence"])

        log_event(self.supabase, agent_id, "booking_interaction" if booking_context else "conversation", {
            "session_id": request.sessionId,
            "user_id": user_id,
            "message_length": len(request.message),
            "response_length": len(answer),
            "response_time_ms": response_time,
            "api_key_source": key.source,
            "booking_flow": booking_context is not None,
            "booking_complete": bool(booking_context and booking_context["isComplete"]),
            "booking_created": bool(booking_context and booking_context.get("bookingCreated")),
            "vector_search_performed": bool(knowledge_context),
            "knowledge_sources_used": len(used_sources),
        }, tokens_used=tokens_used, response_time_ms=response_time)
        if key.is_platform and agent.get("user_id"):
            self.credits.deduct_credits(agent["user_id"], 1)

        body = ChatResponse(
            response=answer,
            conversationId=(conversation or {}).get("id"),
            tokensUsed=tokens_used,
            responseTimeMs=response_time,
            agentId=agent_id,
            timestamp=datetime.now(timezone.utc).isoformat(),
            apiKeySource=key.source,
            knowledge=KnowledgeUsage(
                searchPerformed=bool(knowledge_context),
                sourcesFound=len(used_sources),
                sources=[
                    KnowledgeSourceUsed(name=s["sourceName"], relevance=s["relevanceScore"], preview=s["content"])
                    for s in used_sources
                ],
            ),
            bookingContext=BookingContextSummary(
                isBookingFlow=True,
                isComplete=booking_context["isComplete"],
                confidence=booking_context["confidence"],
                bookingCreated=booking_context.get("bookingCreated"),
                bookingId=booking_context.get("bookingId"),
                externalUrl=booking_context.get("externalUrl"),
                bookingError=booking_context.get("bookingError"),
                extractedData=booking_context["extractedData"],
            ) if booking_context else None,
        )
        headers = {
            "Cache-Control": "no-store, max-age=0",
            "X-Response-Time": f"{response_time}ms",
            "X-Tokens-Used": str(tokens_used),
            "X-API-Key-Source": key.source,
            "X-Knowledge-Used": str(bool(knowledge_context)).lower(),
            "X-Knowledge-Sources": str(len(used_sources)),
        }
        return body, headers

    def _retrieve_knowledge(self, agent_id: str, request: ChatRequest) -> Tuple[str, List[Dict[str, Any]]]:
        """Vector matches first; whole documents when nothing clears the threshold."""
        try:
            sources = self.supabase.table("knowledge_sources")\
                .select("id, file_name, source_url, content")\
                .eq("agent_id", agent_id)\
                .execute().data or []
            if not sources:
                return "", []
            matches = self.vectors.search(agent_id, request.message, request.knowledgeResultLimit,
                                          request.knowledgeSearchThreshold)
        except Exception as e:
            logger.error(f"Knowledge base search error for agent {agent_id}: {e}")
            return "", []

        if matches:
            used = [
                {
                    "sourceId": m.get("knowledge_source_id"),
                    "sourceName": (m.get("metadata") or {}).get("fileName")
                    or (m.get("metadata") or {}).get("url") or "Uploaded Document",
                    "similarity": m.get("similarity"),
                    "relevanceScore": f"{(m.get('similarity') or 0) * 100:.1f}",
                    "content": (m.get("content") or "")[:200] + "...",
                }
                for m in matches
            ]
            return knowledge_context_from_matches(matches), used

        logger.info(f"Vector search found nothing for agent {agent_id}, using full documents")
        used = [
            {
                "sourceId": s["id"],
                "sourceName": s.get("file_name") or s.get("source_url") or "Uploaded Document",
                "similarity": 1.0,
                "relevanceScore": "100.0",
                "content": (s.get("content") or "")[:200] + "...",
            }
            for s in sources
        ]
        return knowledge_context_from_sources(sources), used

    def _handle_booking(self, agent_id: str, request: ChatRequest, recent: List[Dict[str, Any]],
                        calendar: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Accumulate booking fields across the session and book once they are complete."""
        message = request.message
        previous = [c["metadata"]["booking_context"] for c in recent
                    if (c.get("metadata") or {}).get("booking_context")][:3]
        last = previous[0] if previous else None
        in_flow = last is not None and not last.get("isComplete") and not last.get("bookingCreated")
        if not (BookingParser.is_booking_intent(message) or in_flow):
            return None

        data = dict.fromkeys(BOOKING_FIELDS)
        if last:
            data.update(last.get("extractedData") or {})
        parsed = BookingParser().parse_booking_request(message)
        new_data = False
        for field in BOOKING_FIELDS:
            if field == "timezone":
                if parsed["timezone"] and (parsed["timezone"] != "UTC" or not data["timezone"]):
                    data["timezone"] = parsed["timezone"]
                continue
            if parsed[field]:
                data[field] = parsed[field]
                new_data = True

        complete = all(data.get(field) for field in REQUIRED_BOOKING_FIELDS)
        context = {
            "isBookingFlow": True,
            "extractedData": data,
            "isComplete": complete,
            "confidence": parsed["confidence"],
            "calendarConfig": {
                "integration_type": calendar.get("integration_type"),
                "calendly_url": calendar.get("calendly_url"),
                "booking_duration": calendar.get("booking_duration"),
            },
        }

        already_booked = bool(last and last.get("bookingCreated"))
        if complete and (BookingParser.is_confirmation_intent(message) or (new_data and not already_booked)):
            try:
                result = self.bookings.create_booking(agent_id, BookingCreate(
                    date=data["date"],
                    time=data["time"],
                    timezone=data["timezone"] or "UTC",
                    customer_name=data["name"],
                    customer_email=data["email"],
                    customer_phone=data["phone"],
                    customer_notes=data["notes"],
                    session_id=request.sessionId,
                    duration_minutes=calendar.get("booking_duration"),
                ))
                context["bookingCreated"] = True
                context["bookingId"] = result.booking.id
                context["externalUrl"] = result.booking.external_url
                logger.info(f"Booking {result.booking.id} created from chat session {request.sessionId}")
            except HTTPException as e:
                detail = e.detail
                context["bookingError"] = detail.get("error") if isinstance(detail, dict) else detail
                logger.warning(f"Booking from chat failed for agent {agent_id}: {context['bookingError']}")
        return context

    def _log_failure(self, agent_id: str, request: ChatRequest, user_id: Optional[str], error_type: str,
                     error: str, started: float) -> None:
        log_event(self.supabase, agent_id, "conversation", {
            "error": error,
            "error_type": error_type,
            "session_id": request.sessionId,
            "user_id": user_id,
            "response_time_ms": int((time.monotonic() - started) * 1000),
        }, success=False, error_message=error)

    def get_history(self, agent_id: str, session_id: Optional[str], limit: int = 50) -> ChatHistoryResponse:
        if not session_id:
            raise HTTPException(status_code=400, detail="sessionId is required")
        try:
            conversations = self.history.recent(agent_id, session_id, min(limit, MAX_HISTORY_LIMIT))
        except Exception as e:
            logger.error(f"Error fetching conversations for agent {agent_id}: {e}")
            raise HTTPException(status_code=500, detail="Failed to fetch conversation history")
        return ChatHistoryResponse(conversations=conversations, count=len(conversations), sessionId=session_id)

    def clear_history(self, agent_id: str, session_id: Optional[str]) -> ChatClearResponse:
        if not session_id:
            raise HTTPException(status_code=400, detail="sessionId is required")
        try:
            deleted = self.history.clear(agent_id, session_id)
        except Exception as e:
            logger.error(f"Error clearing conversations for agent {agent_id}: {e}")
            raise HTTPException(status_code=500, detail="Failed to clear conversation history")
        return ChatClearResponse(deleted=deleted, sessionId=session_id)

    def sandbox_message(self, agent: Dict[str, Any], request: SandboxRequest) -> Tuple[SandboxResponse, Dict[str, str]]:
        """Owner-only trial chat: no history, knowledge search or credit charge."""
        started = time.monotonic()
        if not request.message or not request.message.strip():
            raise HTTPException(status_code=400, detail="Message is required")
        if not agent.get("is_active", True):
            raise HTTPException(status_code=400, detail="Agent is inactive")

        try:
            key = resolve_api_key(self.supabase, agent)
        except MissingAPIKeyError:
            raise HTTPException(status_code=500, detail={
                "error": "Failed to initialize AI service. Please configure your API key in settings.",
                "errorCode": "API_KEY_ERROR",
            })
        logger.info(f"Sandbox for agent {agent['id']} using {key.source} API key")

        try:
            completion = self._complete_with_retry(get_openai_client(key.api_key), {
                "model": agent.get("model") or settings.default_chat_model,
                "messages": [
                    {"role": "system", "content": sandbox_system_prompt(agent)},
                    {"role": "user", "content": request.message},
                ],
                "max_tokens": SANDBOX_MAX_TOKENS,
                "temperature": agent.get("temperature") or 0.7,
            })
        except openai.AuthenticationError:
            raise HTTPException(status_code=401, detail={
                "error": "Invalid API key. Please check your API key configuration.",
                "errorCode": "INVALID_API_KEY",
            })
        except Exception as e:
            logger.error(f"Sandbox chat error for agent {agent['id']}: {e}")
            raise HTTPException(status_code=500, detail="An unexpected error occurred")

        content = completion.choices[0].message.content if completion.choices else None
        answer = (content or "").strip() or "I could not generate a response."
        duration = int((time.monotonic() - started) * 1000)
        body = SandboxResponse(
            response=answer,
            agentId=agent["id"],
            tokensUsed=completion.usage.total_tokens if completion.usage else 0,
            responseTimeMs=duration,
            apiKeySource=key.source,
            metadata=request.metadata,
        )
        headers = {
            "Cache-Control": "no-store, max-age=0",
            "X-Response-Time": f"{duration}ms",
            "X-API-Key-Source": key.source,
        }
        return body, headers

    @staticmethod
    def _complete_with_retry(client, params: Dict[str, Any]):
        """Waits 1s then 2s between attempts; an invalid key is not retried."""
        for attempt in range(1, SANDBOX_ATTEMPTS + 1):
            try:
                return client.chat.completions.create(**params)
            except openai.AuthenticationError:
                raise
            except Exception as e:
                if attempt == SANDBOX_ATTEMPTS:
                    raise
                logger.warning(f"Retrying OpenAI request (attempt {attempt}): {e}")
                time.sleep(attempt)
