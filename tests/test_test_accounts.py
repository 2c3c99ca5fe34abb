"""
ai-spot-backend - Test Account Tests
====================================

Owner-side test account management and the public test-link flow.
"""

from datetime import timedelta
from unittest.mock import patch

import pytest

from app.core.ai import ApiKeyResolution
from app.core.dates import utc_now
from app.modules.test_accounts import service as account_service
from app.modules.test_accounts import sessions as test_sessions
from app.modules.test_accounts import utils as account_utils
from tests.conftest import make_completion


def seed_account(fake_supabase, agent, **overrides):
    values = {
        "agent_id": agent["id"],
        "user_id": agent["user_id"],
        "name": "Tina Tester",
        "email": "tina@example.com",
        "access_token": "tok_abc123",
        "status": "invited",
        "is_active": True,
        "expires_at": (utc_now() + timedelta(days=10)).isoformat(),
        "max_sessions": 3,
        "max_messages_per_session": 2,
        "sessions_count": 0,
        "messages_count": 0,
        "permissions": {"can_view_history": False, "can_export_data": False, "can_reset_session": True},
    }
    values.update(overrides)
    return fake_supabase.seed("test_accounts", values)[0]


# =============================================================================
# Helpers
# =============================================================================

class TestDeviceInfo:
    """User agent parsing for test sessions."""

    def test_missing_user_agent(self):
        assert account_utils.parse_device_info(None) == {"device_type": "unknown", "browser": "unknown"}

    def test_iphone_safari(self):
        ua = "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 Version/17.0 Safari/604.1"
        assert account_utils.parse_device_info(ua) == {"device_type": "mobile", "browser": "Safari"}

    def test_ipad_is_tablet(self):
        ua = "Mozilla/5.0 (iPad; CPU OS 16_0 like Mac OS X) Safari/604.1"
        assert account_utils.parse_device_info(ua)["device_type"] == "tablet"

    def test_desktop_chrome_not_reported_as_safari(self):
        ua = "Mozilla/5.0 (Windows NT 10.0) AppleWebKit/537.36 Chrome/120.0 Safari/537.36"
        assert account_utils.parse_device_info(ua) == {"device_type": "desktop", "browser": "Chrome"}

    def test_edge_wins_over_chrome(self):
        ua = "Mozilla/5.0 (Windows NT 10.0) Chrome/120.0 Safari/537.36 Edg/120.0"
        assert account_utils.parse_device_info(ua)["browser"] == "Edge"


class TestValidation:
    """Create-request validation."""

    def test_valid_request(self):
        data = account_service.TestAccountCreate(name="Tina", email="tina@example.com")
        assert account_service.validate_test_account(data) == []

    def test_collects_every_error(self):
        data = account_service.TestAccountCreate(name=" ", email="nope", maxSessions=0, expiresInDays=400)
        errors = account_service.validate_test_account(data)
        assert "Name is required" in errors
        assert "Valid email is required" in errors
        assert "Max sessions must be between 1 and 1000" in errors
        assert "Expiration must be between 1 and 365 days" in errors

    def test_expiry_fields(self):
        account = {"access_token": "tok", "expires_at": (utc_now() + timedelta(days=2, hours=1)).isoformat()}
        fields = account_utils.expiry_fields(account)
        assert fields["testLink"].endswith("/test/tok")
        assert fields["isExpired"] is False
        assert fields["daysUntilExpiry"] == 3


# =============================================================================
# Owner API
# =============================================================================

class TestCreateTestAccount:
    """POST /agents/{id}/test-accounts"""

    def test_create_sends_invitation(self, client, fake_supabase, agent):
        response = client.post(
            f"/api/v1/agents/{agent['id']}/test-accounts",
            json={"name": "Tina Tester", "email": "Tina@Example.com"},
        )

        assert response.status_code == 201
        data = response.json()
        assert data["emailSent"] is True
        assert data["message"] == "Test account created and invitation sent"
        account = data["testAccount"]
        assert account["email"] == "tina@example.com"
        assert account["status"] == "invited"
        assert account["max_sessions"] == 100
        assert account["max_messages_per_session"] == 50
        assert account["testLink"].endswith(f"/test/{account['access_token']}")

        invitations = fake_supabase.rows("test_invitations")
        assert len(invitations) == 1
        assert invitations[0]["status"] == "sent"
        assert invitations[0]["sent_at"]

    def test_create_without_email(self, client, fake_supabase, agent):
        response = client.post(
            f"/api/v1/agents/{agent['id']}/test-accounts",
            json={"name": "Tina", "email": "tina@example.com", "sendEmail": False},
        )

        assert response.status_code == 201
        assert response.json()["emailSent"] is False
        assert response.json()["message"] == "Test account created"
        assert fake_supabase.rows("test_invitations")[0]["status"] == "pending"

    def test_email_failure_marks_invitation_failed(self, client, fake_supabase, agent):
        with patch.object(account_service.EmailService, "send", side_effect=RuntimeError("smtp down")):
            response = client.post(
                f"/api/v1/agents/{agent['id']}/test-accounts",
                json={"name": "Tina", "email": "tina@example.com"},
            )

        assert response.status_code == 201
        assert response.json()["emailSent"] is False
        assert response.json()["emailError"] == "smtp down"
        invitation = fake_supabase.rows("test_invitations")[0]
        assert invitation["status"] == "failed"
        assert invitation["error_message"] == "smtp down"

    def test_validation_errors(self, client, agent):
        response = client.post(
            f"/api/v1/agents/{agent['id']}/test-accounts",
            json={"name": "", "email": "not-an-email"},
        )

        assert response.status_code == 400
        data = response.json()
        assert data["error"] == "Validation failed"
        assert "Valid email is required" in data["details"]

    def test_duplicate_email_conflicts(self, client, fake_supabase, agent):
        existing = seed_account(fake_supabase, agent)

        response = client.post(
            f"/api/v1/agents/{agent['id']}/test-accounts",
            json={"name": "Tina", "email": "TINA@example.com"},
        )

        assert response.status_code == 409
        assert response.json()["existingAccount"]["id"] == existing["id"]

    def test_foreign_agent(self, client, fake_supabase):
        fake_supabase.seed("agents", {"id": "agent-2", "user_id": "someone-else", "name": "Other"})

        response = client.post(
            "/api/v1/agents/agent-2/test-accounts",
            json={"name": "Tina", "email": "tina@example.com"},
        )

        assert response.status_code == 404


class TestManageTestAccounts:
    """List, detail, update and delete."""

    def test_list_with_stats(self, client, fake_supabase, agent):
        account = seed_account(fake_supabase, agent, status="active")
        fake_supabase.seed(
            "test_sessions",
            {"agent_id": agent["id"], "test_account_id": account["id"], "messages_count": 4, "rating": 5},
            {"agent_id": agent["id"], "test_account_id": account["id"], "messages_count": 2, "rating": 4},
        )
        fake_supabase.seed("test_analytics", {"agent_id": agent["id"], "tokens_used": 120})

        response = client.get(f"/api/v1/agents/{agent['id']}/test-accounts")

        assert response.status_code == 200
        assert response.headers["cache-control"] == "private, max-age=10"
        data = response.json()
        assert data["count"] == 1
        assert data["testAccounts"][0]["testLink"].endswith("/test/tok_abc123")
        assert data["stats"] == {
            "totalTestAccounts": 1,
            "activeAccounts": 1,
            "totalSessions": 2,
            "totalMessages": 6,
            "totalTokens": 120,
            "avgRating": 4.5,
        }

    def test_detail(self, client, fake_supabase, agent):
        account = seed_account(fake_supabase, agent)
        fake_supabase.seed("test_sessions", {
            "test_account_id": account["id"], "status": "completed", "messages_count": 3,
            "started_at": utc_now().isoformat(),
        })

        response = client.get(f"/api/v1/agents/{agent['id']}/test-accounts/{account['id']}")

        assert response.status_code == 200
        detail = response.json()["testAccount"]
        assert detail["stats"]["completedSessions"] == 1
        assert detail["stats"]["totalMessages"] == 3
        assert len(detail["recentSessions"]) == 1

    def test_detail_of_other_users_account(self, client, fake_supabase, agent):
        account = seed_account(fake_supabase, agent, user_id="someone-else")

        response = client.get(f"/api/v1/agents/{agent['id']}/test-accounts/{account['id']}")

        assert response.status_code == 403

    def test_missing_account(self, client, agent):
        response = client.get(f"/api/v1/agents/{agent['id']}/test-accounts/nope")
        assert response.status_code == 404

    def test_update(self, client, fake_supabase, agent):
        account = seed_account(fake_supabase, agent)

        response = client.patch(
            f"/api/v1/agents/{agent['id']}/test-accounts/{account['id']}",
            json={"status": "suspended", "max_sessions": 10},
        )

        assert response.status_code == 200
        assert response.json()["message"] == "Test account updated successfully"
        stored = fake_supabase.rows("test_accounts")[0]
        assert stored["status"] == "suspended"
        assert stored["max_sessions"] == 10

    @pytest.mark.parametrize("body,message", [
        ({}, "No valid updates provided"),
        ({"status": "deleted"}, "Invalid status. Must be one of: invited, active, suspended, expired"),
        ({"max_sessions": 5000}, "Max sessions must be between 1 and 1000"),
    ])
    def test_update_rejections(self, client, fake_supabase, agent, body, message):
        account = seed_account(fake_supabase, agent)

        response = client.patch(f"/api/v1/agents/{agent['id']}/test-accounts/{account['id']}", json=body)

        assert response.status_code == 400
        assert response.json()["detail"] == message

    def test_delete_cascades(self, client, fake_supabase, agent):
        account = seed_account(fake_supabase, agent)
        fake_supabase.seed("test_sessions", {"test_account_id": account["id"]})
        fake_supabase.seed("test_analytics", {"test_account_id": account["id"]})
        fake_supabase.seed("test_invitations", {"test_account_id": account["id"]})

        response = client.delete(f"/api/v1/agents/{agent['id']}/test-accounts/{account['id']}")

        assert response.status_code == 200
        assert response.json()["deletedAccountId"] == account["id"]
        for table in ("test_accounts", "test_sessions", "test_analytics", "test_invitations"):
            assert fake_supabase.rows(table) == []


# =============================================================================
# Public test links
# =============================================================================

class TestPublicTestLink:
    """GET and POST /test/{access_token}"""

    def test_first_visit_activates(self, anon_client, fake_supabase, agent):
        account = seed_account(fake_supabase, agent)
        fake_supabase.seed("test_invitations", {"test_account_id": account["id"], "status": "sent"})

        response = anon_client.get("/api/v1/test/tok_abc123")

        assert response.status_code == 200
        assert response.headers["cache-control"] == "private, max-age=30"
        assert "x-ratelimit-limit" in response.headers
        data = response.json()
        assert data["message"] == "Valid test link"
        assert data["testAccount"]["agentName"] == "Support Bot"
        assert data["testAccount"]["remainingSessions"] == 3
        assert fake_supabase.rows("test_accounts")[0]["status"] == "active"
        assert fake_supabase.rows("test_invitations")[0]["status"] == "accepted"

    def test_unknown_token(self, anon_client, fake_supabase, agent):
        response = anon_client.get("/api/v1/test/does-not-exist")

        assert response.status_code == 404
        assert response.json()["error"] == "Invalid or expired test link"

    def test_expired_account_is_deactivated(self, anon_client, fake_supabase, agent):
        seed_account(fake_supabase, agent, expires_at=(utc_now() - timedelta(days=1)).isoformat())

        response = anon_client.get("/api/v1/test/tok_abc123")

        assert response.status_code == 404
        stored = fake_supabase.rows("test_accounts")[0]
        assert stored["status"] == "expired"
        assert stored["is_active"] is False

    def test_suspended_account(self, anon_client, fake_supabase, agent):
        seed_account(fake_supabase, agent, status="suspended")

        response = anon_client.get("/api/v1/test/tok_abc123")

        assert response.status_code == 403
        assert response.json()["error"] == "Test account is not active"

    def test_session_limit(self, anon_client, fake_supabase, agent):
        seed_account(fake_supabase, agent, sessions_count=3)

        response = anon_client.get("/api/v1/test/tok_abc123")

        assert response.status_code == 403
        assert response.json()["error"] == "Session limit reached"

    def test_start_session(self, anon_client, fake_supabase, agent):
        seed_account(fake_supabase, agent, status="active")

        response = anon_client.post(
            "/api/v1/test/tok_abc123",
            json={"action": "start_session"},
            headers={"User-Agent": "Mozilla/5.0 (X11; Linux x86_64) Firefox/121.0"},
        )

        assert response.status_code == 200
        assert response.json()["sessionId"].startswith("test-")
        session = fake_supabase.rows("test_sessions")[0]
        assert session["browser"] == "Firefox"
        assert session["device_type"] == "desktop"
        assert fake_supabase.rows("test_accounts")[0]["sessions_count"] == 1
        events = [e["event_type"] for e in fake_supabase.rows("test_analytics")]
        assert events == ["session_started"]

    def test_send_message(self, anon_client, fake_supabase, agent, openai_client):
        account = seed_account(fake_supabase, agent, status="active")
        fake_supabase.seed("test_sessions", {
            "test_account_id": account["id"], "agent_id": agent["id"], "session_id": "test_1", "messages_count": 0,
        })

        with patch.object(test_sessions, "resolve_api_key", return_value=ApiKeyResolution("sk-test", "platform")), \
                patch.object(test_sessions, "get_openai_client", return_value=openai_client):
            response = anon_client.post(
                "/api/v1/test/tok_abc123",
                json={"action": "send_message", "sessionId": "test_1", "message": "Hi there"},
            )

        assert response.status_code == 200
        data = response.json()
        assert data["response"] == "Hello from the agent"
        assert data["tokensUsed"] == 42
        conversation = fake_supabase.rows("conversations")[0]
        assert conversation["session_id"] == "test_1"
        assert conversation["metadata"] == {"source": "test", "test_account_id": account["id"]}
        assert fake_supabase.rows("test_sessions")[0]["messages_count"] == 1
        assert fake_supabase.rows("test_accounts")[0]["messages_count"] == 1

    def test_send_message_ai_failure_returns_fallback(self, anon_client, fake_supabase, agent):
        account = seed_account(fake_supabase, agent, status="active")
        fake_supabase.seed("test_sessions", {"test_account_id": account["id"], "session_id": "test_1"})

        response = anon_client.post(
            "/api/v1/test/tok_abc123",
            json={"action": "send_message", "sessionId": "test_1", "message": "Hi"},
        )

        assert response.status_code == 200
        assert response.json()["response"] == test_sessions.AI_FALLBACK_RESPONSE
        assert response.json()["tokensUsed"] == 0

    def test_message_limit_per_session(self, anon_client, fake_supabase, agent):
        account = seed_account(fake_supabase, agent, status="active")
        fake_supabase.seed("test_sessions", {
            "test_account_id": account["id"], "session_id": "test_1", "messages_count": 2,
        })

        response = anon_client.post(
            "/api/v1/test/tok_abc123",
            json={"action": "send_message", "sessionId": "test_1", "message": "One more"},
        )

        assert response.status_code == 403
        assert response.json()["detail"] == "Message limit reached for this session"

    def test_send_message_requires_session_and_text(self, anon_client, fake_supabase, agent):
        seed_account(fake_supabase, agent, status="active")

        response = anon_client.post("/api/v1/test/tok_abc123", json={"action": "send_message"})

        assert response.status_code == 400

    def test_end_session(self, anon_client, fake_supabase, agent):
        account = seed_account(fake_supabase, agent, status="active")
        fake_supabase.seed("test_sessions", {
            "test_account_id": account["id"], "session_id": "test_1", "status": "active",
            "started_at": (utc_now() - timedelta(minutes=5)).isoformat(),
        })

        response = anon_client.post(
            "/api/v1/test/tok_abc123",
            json={"action": "end_session", "sessionId": "test_1", "rating": 4, "feedback": "Nice"},
        )

        assert response.status_code == 200
        session = fake_supabase.rows("test_sessions")[0]
        assert session["status"] == "completed"
        assert session["rating"] == 4
        assert session["feedback_text"] == "Nice"
        assert 290 <= session["duration_seconds"] <= 310

    def test_invalid_action(self, anon_client, fake_supabase, agent):
        seed_account(fake_supabase, agent, status="active")

        response = anon_client.post("/api/v1/test/tok_abc123", json={"action": "dance"})

        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid action"

    def test_public_rate_limit(self, anon_client, fake_supabase, agent):
        seed_account(fake_supabase, agent, status="active")

        with patch.object(test_sessions.settings, "public_rate_limit", 2):
            codes = [anon_client.get("/api/v1/test/tok_abc123").status_code for _ in range(3)]

        assert codes == [200, 200, 429]


class TestAskAgent:
    """Direct service checks for the AI call."""

    def test_uses_agent_model_and_prompt(self, fake_supabase, agent, openai_client):
        service = test_sessions.TestSessionService(fake_supabase)
        openai_client.chat.completions.create.return_value = make_completion("Sure!", 10)

        with patch.object(test_sessions, "resolve_api_key", return_value=ApiKeyResolution("sk-test", "user")), \
                patch.object(test_sessions, "get_openai_client", return_value=openai_client) as get_client:
            content, tokens = service._ask_agent(agent, "Question?")

        assert (content, tokens) == ("Sure!", 10)
        get_client.assert_called_once_with("sk-test")
        kwargs = openai_client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["messages"][-1] == {"role": "user", "content": "Question?"}
