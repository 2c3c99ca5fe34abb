"""
ai-spot-backend - Webhook Tests
===============================

Management routes under /agents/{id}/webhook and /agent-webhooks/{id},
and the public /webhooks/{key} endpoint.
"""

from unittest.mock import patch

import pytest
from postgrest.exceptions import APIError

from app.core.ai import ApiKeyResolution
from app.modules.webhooks import invoker as webhook_invoker
from app.modules.webhooks.schemas import WebhookCreate
from app.modules.webhooks.service import validate_webhook


@pytest.fixture
def webhook(fake_supabase, agent):
    return fake_supabase.seed("agent_webhooks", {
        "id": "wh-1",
        "agent_id": agent["id"],
        "name": "Orders",
        "description": "",
        "webhook_key": "wh_orderskey",
        "webhook_url": "http://localhost:8000/api/v1/webhooks/wh_orderskey",
        "requires_auth": False,
        "auth_token": None,
        "rate_limit": 100,
        "allowed_origins": [],
        "is_active": True,
        "created_at": "2024-01-01T00:00:00+00:00",
    })[0]


def invocation(webhook, **overrides):
    row = {
        "agent_webhook_id": webhook["id"],
        "agent_id": webhook["agent_id"],
        "request_method": "POST",
        "response_status": 200,
        "success": True,
        "response_time_ms": 100,
    }
    row.update(overrides)
    return row


# =============================================================================
# Management
# =============================================================================

class TestValidation:
    def test_collects_all_errors(self):
        errors = validate_webhook(WebhookCreate(name=" ", rate_limit=0, allowed_origins="*"))

        assert errors == [
            "Webhook name is required",
            "Rate limit must be between 1 and 10000",
            "Allowed origins must be an array",
        ]

    def test_long_name(self):
        assert validate_webhook(WebhookCreate(name="x" * 101)) == ["Webhook name must be less than 100 characters"]


class TestCreateWebhook:
    """POST /agents/{id}/webhook"""

    def test_generates_key_and_url(self, client, fake_supabase, agent):
        response = client.post("/api/v1/agents/agent-1/webhook", json={"name": "  Orders  "})

        assert response.status_code == 201
        webhook = response.json()["webhook"]
        assert webhook["name"] == "Orders"
        assert webhook["webhook_key"].startswith("wh_")
        assert len(webhook["webhook_key"]) == 35
        assert webhook["webhook_url"].endswith(f"/api/v1/webhooks/{webhook['webhook_key']}")
        assert webhook["auth_token"] is None
        assert webhook["rate_limit"] == 100
        assert webhook["is_active"] is True

    def test_auth_token(self, client, agent):
        response = client.post("/api/v1/agents/agent-1/webhook", json={"name": "Secure", "requires_auth": True})

        token = response.json()["webhook"]["auth_token"]
        assert token.startswith("sk_")
        assert len(token) == 51

    def test_validation_failure(self, client, agent):
        response = client.post("/api/v1/agents/agent-1/webhook", json={"rate_limit": 20000})

        assert response.status_code == 400
        data = response.json()
        assert data["error"] == "Validation failed"
        assert "Webhook name is required" in data["details"]

    def test_duplicate_name(self, client, fake_supabase, agent):
        fake_supabase.errors[("agent_webhooks", "insert")] = APIError({
            "code": "23505", "message": "duplicate key value", "details": None, "hint": None,
        })

        response = client.post("/api/v1/agents/agent-1/webhook", json={"name": "Orders"})

        assert response.status_code == 409

    def test_foreign_agent(self, client, agent):
        agent["user_id"] = "someone-else"

        response = client.post("/api/v1/agents/agent-1/webhook", json={"name": "Orders"})

        assert response.status_code == 404


class TestManageWebhooks:
    """Listing, bulk actions and per-webhook routes."""

    def test_list(self, client, webhook):
        response = client.get("/api/v1/agents/agent-1/webhook")

        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 1
        assert data["agentName"] == "Support Bot"
        assert data["webhooks"][0]["url"] == webhook["webhook_url"]
        assert data["webhooks"][0]["hasAuth"] is False
        assert response.headers["Cache-Control"] == "private, max-age=10"

    def test_bulk_deactivate(self, client, fake_supabase, webhook):
        fake_supabase.seed("agent_webhooks", dict(webhook, id="wh-2", name="Leads", webhook_key="wh_other"))

        response = client.patch("/api/v1/agents/agent-1/webhook", json={"action": "deactivate"})

        assert response.json() == {"message": "Deactivated 2 webhooks"}
        assert all(w["is_active"] is False for w in fake_supabase.rows("agent_webhooks"))

    def test_bulk_requires_action(self, client, webhook):
        assert client.patch("/api/v1/agents/agent-1/webhook", json={}).status_code == 400

    def test_get_missing(self, client, agent):
        assert client.get("/api/v1/agent-webhooks/nope").status_code == 404

    def test_get_other_users_webhook(self, client, agent, webhook):
        agent["user_id"] = "someone-else"

        assert client.get("/api/v1/agent-webhooks/wh-1").status_code == 403

    def test_update_toggles_auth(self, client, webhook):
        response = client.patch("/api/v1/agent-webhooks/wh-1", json={"requires_auth": True, "rate_limit": 10})

        assert response.status_code == 200
        assert webhook["auth_token"].startswith("sk_")
        assert webhook["rate_limit"] == 10

        client.patch("/api/v1/agent-webhooks/wh-1", json={"requires_auth": False})
        assert webhook["auth_token"] is None

    @pytest.mark.parametrize("payload,error", [
        ({"description": "not updatable here"}, "No valid fields to update"),
        ({"name": "   "}, "Webhook name is required"),
        ({"rate_limit": 0}, "Rate limit must be between 1 and 10000"),
    ])
    def test_update_rejections(self, client, webhook, payload, error):
        response = client.patch("/api/v1/agent-webhooks/wh-1", json=payload)

        assert response.status_code == 400
        assert response.json()["error"] == error

    def test_delete_removes_invocations(self, client, fake_supabase, webhook):
        fake_supabase.seed("webhook_invocations", invocation(webhook))

        response = client.delete("/api/v1/agent-webhooks/wh-1")

        assert response.json()["success"] is True
        assert fake_supabase.rows("agent_webhooks") == []
        assert fake_supabase.rows("webhook_invocations") == []

    def test_regenerate(self, client, webhook):
        response = client.post("/api/v1/agent-webhooks/wh-1/regenerate")

        data = response.json()
        assert data["webhook"]["webhook_key"] != "wh_orderskey"
        assert data["webhook"]["webhook_url"].endswith(data["webhook"]["webhook_key"])
        assert data["warning"] == "Previous webhook URL and auth token are now invalid"


class TestInvocationLog:
    """GET /agent-webhooks/{id}/invocations and the stats route."""

    @pytest.fixture
    def invocations(self, fake_supabase, webhook):
        return fake_supabase.seed("webhook_invocations", *[
            invocation(webhook, created_at=f"2024-01-0{i}T00:00:00+00:00", success=i != 3)
            for i in range(1, 6)
        ])

    def test_pagination(self, client, invocations):
        response = client.get("/api/v1/agent-webhooks/wh-1/invocations", params={"limit": 2, "offset": 2})

        data = response.json()
        pagination = data["pagination"]
        assert [i["created_at"][:10] for i in data["invocations"]] == ["2024-01-03", "2024-01-02"]
        assert pagination["total"] == 5
        assert pagination["currentPage"] == 2
        assert pagination["totalPages"] == 3
        assert pagination["nextUrl"] == "/api/v1/agent-webhooks/wh-1/invocations?limit=2&offset=4&sort=desc"
        assert pagination["prevUrl"] == "/api/v1/agent-webhooks/wh-1/invocations?limit=2&offset=0&sort=desc"
        assert response.headers["X-Total-Count"] == "5"

    def test_status_filter(self, client, invocations):
        response = client.get("/api/v1/agent-webhooks/wh-1/invocations", params={"status": "error", "sort": "asc"})

        data = response.json()
        assert data["pagination"]["total"] == 1
        assert data["filters"] == {"sort": "asc", "status": "error"}

    def test_stats(self, client, fake_supabase, webhook):
        fake_supabase.seed("agent_webhooks", dict(webhook, id="wh-2", is_active=False, webhook_key="wh_idle"))
        fake_supabase.seed(
            "webhook_invocations",
            invocation(webhook, response_time_ms=100),
            invocation(webhook, response_time_ms=200),
            invocation(webhook, response_time_ms=300, success=False),
        )

        response = client.get("/api/v1/agents/agent-1/webhook/stats")

        data = response.json()
        per_webhook = {w["webhookId"]: w for w in data["webhooks"]}
        assert per_webhook["wh-1"]["successRate"] == 66.7
        assert per_webhook["wh-1"]["avgResponseTime"] == 200
        assert per_webhook["wh-1"]["last24h"] == 3
        assert per_webhook["wh-2"]["totalInvocations"] == 0
        assert data["overall"]["totalWebhooks"] == 2
        assert data["overall"]["inactiveWebhooks"] == 1
        assert data["overall"]["totalFailed"] == 1


# =============================================================================
# Public invocation
# =============================================================================

class TestInvokeWebhook:
    """POST /webhooks/{key}"""

    URL = "/api/v1/webhooks/wh_orderskey"

    @pytest.fixture
    def ai(self, openai_client):
        with patch.object(webhook_invoker, "resolve_api_key", return_value=ApiKeyResolution("sk-p", "platform")), \
                patch.object(webhook_invoker, "get_openai_client", return_value=openai_client):
            yield openai_client

    @pytest.fixture
    def credits(self, fake_supabase, test_user):
        return fake_supabase.seed("profiles", {"id": test_user["id"], "api_credits": 10})[0]

    def test_reply(self, anon_client, fake_supabase, webhook, credits, ai):
        response = anon_client.post(self.URL, json={"message": "Order status?", "orderId": "A-1"},
                                    headers={"Authorization": "Bearer whatever"})

        assert response.status_code == 200
        data = response.json()
        assert data["response"] == "Hello from the agent"
        assert data["sessionId"] == "webhook-default"
        assert data["tokensUsed"] == 42

        conversation = fake_supabase.rows("conversations")[0]
        assert conversation["metadata"] == {"source": "webhook", "orderId": "A-1"}
        logged = fake_supabase.rows("webhook_invocations")[0]
        assert logged["success"] is True
        assert logged["response_status"] == 200
        assert logged["request_headers"]["authorization"] == "[redacted]"
        assert fake_supabase.rows("analytics")[0]["event_type"] == "webhook_invocation"
        assert credits["api_credits"] == 9

    def test_custom_session(self, anon_client, webhook, credits, ai):
        response = anon_client.post(self.URL, json={"message": "hi", "sessionId": "crm-7"})

        assert response.json()["sessionId"] == "crm-7"

    def test_unknown_key(self, anon_client, webhook):
        assert anon_client.post("/api/v1/webhooks/wh_nope", json={"message": "hi"}).status_code == 404

    def test_disabled(self, anon_client, webhook):
        webhook["is_active"] = False

        response = anon_client.post(self.URL, json={"message": "hi"})

        assert response.status_code == 403
        assert response.json()["error"] == "Webhook is disabled"

    def test_bearer_token_required(self, anon_client, fake_supabase, webhook, credits, ai):
        webhook.update(requires_auth=True, auth_token="sk_secret")

        denied = anon_client.post(self.URL, json={"message": "hi"}, headers={"Authorization": "Bearer wrong"})
        allowed = anon_client.post(self.URL, json={"message": "hi"}, headers={"Authorization": "Bearer sk_secret"})

        assert denied.status_code == 401
        assert allowed.status_code == 200
        statuses = [i["response_status"] for i in fake_supabase.rows("webhook_invocations")]
        assert statuses == [401, 200]

    @pytest.mark.parametrize("headers", [{}, {"Authorization": "Bearer "}, {"Authorization": "Bearer anything"}])
    def test_auth_without_stored_token_rejects(self, anon_client, fake_supabase, webhook, credits, ai, headers):
        webhook.update(requires_auth=True, auth_token=None)

        response = anon_client.post(self.URL, json={"message": "hi"}, headers=headers)

        assert response.status_code == 401
        assert [i["response_status"] for i in fake_supabase.rows("webhook_invocations")] == [401]

    def test_invalid_json(self, anon_client, webhook):
        response = anon_client.post(self.URL, content=b"not json", headers={"Content-Type": "application/json"})

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid JSON in request body"

    def test_message_required(self, anon_client, fake_supabase, webhook):
        response = anon_client.post(self.URL, json={"sessionId": "s"})

        assert response.status_code == 400
        assert fake_supabase.rows("webhook_invocations")[0]["error_message"] == "Message is required"

    def test_rate_limited(self, anon_client, fake_supabase, webhook, credits, ai):
        webhook["rate_limit"] = 1

        first = anon_client.post(self.URL, json={"message": "hi"})
        second = anon_client.post(self.URL, json={"message": "hi"})

        assert first.status_code == 200
        assert second.status_code == 429
        assert second.headers["Retry-After"] == "60"
        assert second.json()["retryAfter"] == 60

    def test_provider_failure(self, anon_client, fake_supabase, webhook, credits, ai):
        ai.chat.completions.create.side_effect = RuntimeError("upstream down")

        response = anon_client.post(self.URL, json={"message": "hi"})

        assert response.status_code == 500
        assert response.json()["message"] == "upstream down"
        logged = fake_supabase.rows("webhook_invocations")[0]
        assert logged["success"] is False
        assert logged["response_status"] == 500
        assert credits["api_credits"] == 10
