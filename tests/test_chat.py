"""
ai-spot-backend - Chat Tests
============================

The chat endpoint with the OpenAI client, key resolution and vector
search patched out.
"""

from unittest.mock import patch

import httpx
import openai
import pytest

from app.core.ai import ApiKeyResolution
from app.modules.bookings.parser import WEEKDAYS
from app.modules.chat import service as chat_service
from app.modules.chat.history import ConversationHistory
from tests.conftest import make_completion

CHAT_URL = "/api/v1/agents/agent-1/chat"


@pytest.fixture
def credits(fake_supabase, test_user):
    return fake_supabase.seed("profiles", {"id": test_user["id"], "api_credits": 5})[0]


@pytest.fixture
def platform_ai(openai_client):
    with patch.object(chat_service, "resolve_api_key", return_value=ApiKeyResolution("sk-platform", "platform")), \
            patch.object(chat_service, "get_openai_client", return_value=openai_client):
        yield openai_client


def send(client, message="Where is my order?", session="sess-1", **extra):
    return client.post(CHAT_URL, json={"message": message, "sessionId": session, **extra})


# =============================================================================
# Sending messages
# =============================================================================

class TestSendMessage:
    """POST /agents/{id}/chat"""

    def test_reply(self, anon_client, fake_supabase, agent, credits, platform_ai):
        response = send(anon_client)

        assert response.status_code == 200
        data = response.json()
        assert data["response"] == "Hello from the agent"
        assert data["tokensUsed"] == 42
        assert data["apiKeySource"] == "platform"
        assert data["agentId"] == "agent-1"
        assert data["knowledge"]["searchPerformed"] is False
        assert data["bookingContext"] is None
        assert response.headers["X-Tokens-Used"] == "42"
        assert response.headers["X-API-Key-Source"] == "platform"
        assert response.headers["X-Knowledge-Used"] == "false"
        assert response.headers["Cache-Control"] == "no-store, max-age=0"

        conversation = fake_supabase.rows("conversations")[0]
        assert data["conversationId"] == conversation["id"]
        assert conversation["agent_response"] == "Hello from the agent"
        assert conversation["metadata"]["api_key_source"] == "platform"
        assert fake_supabase.rows("analytics")[0]["event_type"] == "conversation"
        assert credits["api_credits"] == 4

    def test_prompt_includes_history(self, anon_client, fake_supabase, agent, credits, platform_ai):
        fake_supabase.seed("conversations", {
            "agent_id": "agent-1",
            "session_id": "sess-1",
            "user_message": "Hi",
            "agent_response": "Hello! How can I help?",
            "metadata": {},
            "created_at": "2024-01-01T00:00:00+00:00",
        })

        send(anon_client, "Track order 42")

        kwargs = platform_ai.chat.completions.create.call_args.kwargs
        messages = kwargs["messages"]
        assert messages[0]["role"] == "system"
        assert "Support Bot" in messages[0]["content"]
        assert messages[1:] == [
            {"role": "user", "content": "Hi"},
            {"role": "assistant", "content": "Hello! How can I help?"},
            {"role": "user", "content": "Track order 42"},
        ]
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["max_tokens"] == 500
        assert kwargs["user"] == "sess-1"

    def test_user_key_does_not_spend_credits(self, anon_client, agent, credits, openai_client):
        with patch.object(chat_service, "resolve_api_key", return_value=ApiKeyResolution("sk-user", "user")), \
                patch.object(chat_service, "get_openai_client", return_value=openai_client) as get_client:
            response = send(anon_client)

        assert response.status_code == 200
        assert response.json()["apiKeySource"] == "user"
        get_client.assert_called_with("sk-user")
        assert credits["api_credits"] == 5

    def test_empty_completion_falls_back(self, anon_client, agent, credits, platform_ai):
        platform_ai.chat.completions.create.return_value.choices = []

        response = send(anon_client)

        assert response.json()["response"] == chat_service.FALLBACK_RESPONSE

    @pytest.mark.parametrize("payload", [
        {"message": "hi"},
        {"sessionId": "sess-1"},
        {"message": "", "sessionId": "sess-1"},
    ])
    def test_message_and_session_required(self, anon_client, agent, payload):
        response = anon_client.post(CHAT_URL, json=payload)

        assert response.status_code == 400
        assert response.json()["error"] == "Message and sessionId are required"

    def test_message_too_long(self, anon_client, agent):
        response = send(anon_client, "x" * 5001)

        assert response.status_code == 400

    def test_unknown_agent(self, anon_client, fake_supabase):
        response = anon_client.post("/api/v1/agents/missing/chat", json={"message": "hi", "sessionId": "s"})

        assert response.status_code == 404

    def test_inactive_agent(self, anon_client, agent):
        agent["is_active"] = False

        response = send(anon_client)

        assert response.status_code == 400
        assert response.json()["error"] == "Agent is currently inactive"

    def test_insufficient_credits(self, anon_client, agent, credits, platform_ai):
        credits["api_credits"] = 0

        response = send(anon_client)

        assert response.status_code == 402
        platform_ai.chat.completions.create.assert_not_called()

    def test_missing_api_key(self, anon_client, agent):
        response = send(anon_client)

        assert response.status_code == 500
        assert response.json()["errorCode"] == "API_KEY_ERROR"

    def test_session_rate_limit(self, anon_client, agent, credits, platform_ai):
        with patch.object(chat_service.settings, "chat_rate_limit", 1):
            first = send(anon_client)
            second = send(anon_client)

        assert first.status_code == 200
        assert second.status_code == 429
        assert second.headers["X-RateLimit-Limit"] == "1"
        assert int(second.headers["Retry-After"]) >= 1


class TestProviderErrors:
    """OpenAI failures map to status codes and failed analytics events."""

    def _error(self, cls, status):
        request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
        return cls("provider error", response=httpx.Response(status, request=request), body=None)

    def test_rate_limited(self, anon_client, fake_supabase, agent, credits, platform_ai):
        platform_ai.chat.completions.create.side_effect = self._error(openai.RateLimitError, 429)

        response = send(anon_client)

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "60"
        event = fake_supabase.rows("analytics")[0]
        assert event["success"] is False
        assert event["event_data"]["error_type"] == "RateLimitError"
        assert credits["api_credits"] == 5

    def test_invalid_key(self, anon_client, agent, credits, platform_ai):
        platform_ai.chat.completions.create.side_effect = self._error(openai.AuthenticationError, 401)

        response = send(anon_client)

        assert response.status_code == 401
        assert response.json()["errorCode"] == "INVALID_API_KEY"

    def test_unexpected(self, anon_client, agent, credits, platform_ai):
        platform_ai.chat.completions.create.side_effect = RuntimeError("boom")

        response = send(anon_client)

        assert response.status_code == 500
        assert response.json()["error"] == "An unexpected error occurred."


# =============================================================================
# Knowledge and bookings inside chat
# =============================================================================

class TestKnowledgeContext:
    """Vector matches, with whole documents as the fallback."""

    @pytest.fixture
    def source(self, fake_supabase, agent):
        return fake_supabase.seed("knowledge_sources", {
            "id": "ks-1",
            "agent_id": "agent-1",
            "file_name": "faq.pdf",
            "content": "Refunds are processed within 5 business days.",
        })[0]

    def test_vector_matches(self, anon_client, agent, credits, platform_ai, source):
        matches = [{
            "knowledge_source_id": "ks-1",
            "content": "Refunds are processed within 5 business days.",
            "similarity": 0.91,
            "metadata": {"fileName": "faq.pdf"},
        }]
        with patch.object(chat_service.VectorStore, "search", return_value=matches) as search:
            response = send(anon_client, "How long do refunds take?")

        search.assert_called_once_with("agent-1", "How long do refunds take?", 3, 0.7)
        data = response.json()
        assert data["knowledge"]["searchPerformed"] is True
        assert data["knowledge"]["sources"][0]["name"] == "faq.pdf"
        assert data["knowledge"]["sources"][0]["relevance"] == "91.0"
        assert response.headers["X-Knowledge-Sources"] == "1"
        system = platform_ai.chat.completions.create.call_args.kwargs["messages"][0]["content"]
        assert "Refunds are processed" in system

    def test_full_documents_when_nothing_matches(self, anon_client, agent, credits, platform_ai, source):
        with patch.object(chat_service.VectorStore, "search", return_value=[]):
            response = send(anon_client, "How long do refunds take?")

        sources = response.json()["knowledge"]["sources"]
        assert sources[0]["relevance"] == "100.0"

    def test_search_failure_is_ignored(self, anon_client, agent, credits, platform_ai, source):
        with patch.object(chat_service.VectorStore, "search", side_effect=RuntimeError("pgvector down")):
            response = send(anon_client, "How long do refunds take?")

        assert response.status_code == 200
        assert response.json()["knowledge"]["searchPerformed"] is False

    def test_knowledge_can_be_disabled(self, anon_client, agent, credits, platform_ai, source):
        with patch.object(chat_service.VectorStore, "search") as search:
            send(anon_client, useKnowledgeBase=False)

        search.assert_not_called()


class TestBookingFlow:
    """Booking details collected in chat create a booking."""

    @pytest.fixture
    def calendar(self, fake_supabase, agent):
        return fake_supabase.seed("agent_calendars", {
            "id": "cal-1",
            "agent_id": "agent-1",
            "integration_type": "built_in",
            "is_active": True,
            "booking_duration": 30,
            "availability_rules": {day: [{"start": "09:00", "end": "17:00"}] for day in WEEKDAYS},
            "send_confirmations": False,
        })[0]

    def test_complete_request_books(self, anon_client, fake_supabase, agent, credits, platform_ai, calendar):
        response = send(
            anon_client,
            "Please book a meeting on 2030-05-06 at 10:00. My name is Jane Doe, email jane@example.com",
        )

        assert response.status_code == 200
        context = response.json()["bookingContext"]
        assert context["isComplete"] is True
        assert context["bookingCreated"] is True
        booking = fake_supabase.rows("bookings")[0]
        assert context["bookingId"] == booking["id"]
        assert booking["session_id"] == "sess-1"
        assert booking["customer_name"] == "Jane Doe"
        assert fake_supabase.rows("analytics")[-1]["event_type"] == "booking_interaction"

    def test_booking_is_linked_to_conversation(self, anon_client, fake_supabase, agent, credits, platform_ai,
                                               calendar):
        response = send(
            anon_client,
            "Please book a meeting on 2030-05-06 at 10:00. My name is Jane Doe, email jane@example.com",
        )

        link = fake_supabase.rows("booking_conversations")[0]
        assert link["booking_id"] == response.json()["bookingContext"]["bookingId"]
        assert link["conversation_id"] == response.json()["conversationId"]
        assert link["extracted_data"]["name"] == "Jane Doe"
        assert link["confidence_score"] > 0

    def test_details_accumulate_across_messages(self, anon_client, fake_supabase, agent, credits, platform_ai,
                                               calendar):
        first = send(anon_client, "I'd like to schedule a meeting on 2030-05-06 at 10:00")
        assert first.json()["bookingContext"]["isComplete"] is False

        second = send(anon_client, "My name is Jane Doe, email jane@example.com")

        context = second.json()["bookingContext"]
        assert context["isComplete"] is True
        assert context["extractedData"]["date"] == "2030-05-06"
        assert context["bookingCreated"] is True

    def test_unavailable_slot_is_reported(self, anon_client, fake_supabase, agent, credits, platform_ai, calendar):
        response = send(
            anon_client,
            "Please book a meeting on 2030-05-06 at 20:00. My name is Jane Doe, email jane@example.com",
        )

        context = response.json()["bookingContext"]
        assert context["bookingError"] == "Time slot not available"
        assert fake_supabase.rows("bookings") == []


# =============================================================================
# History
# =============================================================================

class TestHistory:
    """GET and DELETE /agents/{id}/chat"""

    @pytest.fixture
    def conversations(self, fake_supabase, agent):
        return fake_supabase.seed(
            "conversations",
            {"agent_id": "agent-1", "session_id": "sess-1", "user_message": "a", "agent_response": "b",
             "created_at": "2024-01-01T00:00:00+00:00"},
            {"agent_id": "agent-1", "session_id": "sess-1", "user_message": "c", "agent_response": "d",
             "created_at": "2024-01-02T00:00:00+00:00"},
            {"agent_id": "agent-1", "session_id": "other", "user_message": "e", "agent_response": "f"},
        )

    def test_newest_first(self, anon_client, conversations):
        response = anon_client.get(CHAT_URL, params={"sessionId": "sess-1"})

        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 2
        assert [c["user_message"] for c in data["conversations"]] == ["c", "a"]
        assert response.headers["X-Total-Count"] == "2"
        assert response.headers["Cache-Control"] == "private, max-age=10"

    def test_session_required(self, anon_client, conversations):
        assert anon_client.get(CHAT_URL).status_code == 400

    def test_clear(self, anon_client, fake_supabase, conversations):
        response = anon_client.delete(CHAT_URL, params={"sessionId": "sess-1"})

        assert response.status_code == 200
        assert response.json() == {"success": True, "deleted": 2, "sessionId": "sess-1"}
        assert [c["session_id"] for c in fake_supabase.rows("conversations")] == ["other"]

    def test_to_messages_keeps_latest(self):
        conversations = [
            {"user_message": f"q{i}", "agent_response": f"a{i}", "created_at": f"2024-01-0{i}"}
            for i in range(1, 4)
        ]

        messages = ConversationHistory.to_messages(conversations, max_messages=4)

        assert [m["content"] for m in messages] == ["q2", "a2", "q3", "a3"]


# =============================================================================
# Sandbox
# =============================================================================

class TestSandbox:
    """POST /agents/{id}/sandbox_testing"""

    URL = "/api/v1/agents/agent-1/sandbox_testing"

    def _auth_error(self):
        request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
        return openai.AuthenticationError("bad key", response=httpx.Response(401, request=request), body=None)

    def test_reply_is_not_stored(self, client, fake_supabase, agent, credits, platform_ai):
        agent["knowledge_base"] = "Refunds take five days."

        response = client.post(self.URL, json={"message": "How long do refunds take?", "metadata": {"ui": "panel"}})

        assert response.status_code == 200
        data = response.json()
        assert data["response"] == "Hello from the agent"
        assert data["agentId"] == "agent-1"
        assert data["apiKeySource"] == "platform"
        assert data["metadata"] == {"ui": "panel"}
        assert response.headers["Cache-Control"] == "no-store, max-age=0"
        assert response.headers["X-API-Key-Source"] == "platform"
        system = platform_ai.chat.completions.create.call_args.kwargs["messages"][0]["content"]
        assert "Refunds take five days." in system
        assert fake_supabase.rows("conversations") == []
        assert credits["api_credits"] == 5

    def test_agent_prompt_wins(self, client, agent, platform_ai):
        agent["system_prompt"] = "You only talk about shoes."

        client.post(self.URL, json={"message": "hi"})

        messages = platform_ai.chat.completions.create.call_args.kwargs["messages"]
        assert messages[0]["content"] == "You only talk about shoes."

    def test_message_required(self, client, agent, platform_ai):
        response = client.post(self.URL, json={"message": "   "})

        assert response.status_code == 400
        assert response.json()["error"] == "Message is required"

    def test_inactive_agent(self, client, agent, platform_ai):
        agent["is_active"] = False

        response = client.post(self.URL, json={"message": "hi"})

        assert response.status_code == 400
        assert response.json()["error"] == "Agent is inactive"

    def test_owner_only(self, client, agent, platform_ai):
        agent["user_id"] = "someone-else"

        assert client.post(self.URL, json={"message": "hi"}).status_code == 404

    def test_requires_login(self, anon_client, agent):
        assert anon_client.post(self.URL, json={"message": "hi"}).status_code in (401, 403)

    def test_transient_failures_are_retried(self, client, agent, platform_ai, monkeypatch):
        waits = []
        monkeypatch.setattr(chat_service.time, "sleep", waits.append)
        platform_ai.chat.completions.create.side_effect = [
            httpx.ReadTimeout("timed out"),
            make_completion("Second time lucky"),
        ]

        response = client.post(self.URL, json={"message": "hi"})

        assert response.status_code == 200
        assert response.json()["response"] == "Second time lucky"
        assert waits == [1]

    def test_gives_up_after_three_attempts(self, client, agent, platform_ai, monkeypatch):
        waits = []
        monkeypatch.setattr(chat_service.time, "sleep", waits.append)
        platform_ai.chat.completions.create.side_effect = RuntimeError("upstream down")

        response = client.post(self.URL, json={"message": "hi"})

        assert response.status_code == 500
        assert platform_ai.chat.completions.create.call_count == 3
        assert waits == [1, 2]

    def test_invalid_key(self, client, agent, platform_ai):
        platform_ai.chat.completions.create.side_effect = self._auth_error()

        response = client.post(self.URL, json={"message": "hi"})

        assert response.status_code == 401
        assert response.json()["errorCode"] == "INVALID_API_KEY"
        assert platform_ai.chat.completions.create.call_count == 1

    def test_missing_key(self, client, agent):
        with patch.object(chat_service, "resolve_api_key", side_effect=chat_service.MissingAPIKeyError("none")):
            response = client.post(self.URL, json={"message": "hi"})

        assert response.status_code == 500
        assert response.json()["errorCode"] == "API_KEY_ERROR"
