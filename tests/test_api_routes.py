from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from linkbridge.config import Settings
from linkbridge.main import create_app
from linkbridge.routers.chat import build_wa_link
from linkbridge.services.state_machine import SessionStatus
from tests.conftest import CHAT_ID

EXPECTED_LINK = (
    "https://wa.me/358400000000?text=Hello%2C%20I%20am%20interested%20in%20your%20services%20for%20a%20move."
)


@pytest.fixture
def client(container):
    return TestClient(create_app(container))


class TestHealth:
    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.text == "WhatsApp Bot API is running!"

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok", "store": "ok"}

    def test_health_reports_store_outage(self, client, fake_redis):
        fake_redis.fail("ping", times=10)
        assert client.get("/health").json() == {"status": "degraded", "store": "unavailable"}

    def test_health_before_startup(self):
        client = TestClient(create_app(app_settings=Settings(_env_file=None)))
        assert client.get("/health").json() == {"status": "starting"}


class TestInitiateChat:
    def test_creates_pending_session(self, client, fake_redis):
        response = client.post("/api/initiate-chat", json={"companyId": "A1", "imageUrl": "https://img/x.jpg"})

        assert response.status_code == 200
        data = response.json()
        assert data["message"] == "WhatsApp chat link generated successfully."
        assert data["waLink"] == EXPECTED_LINK
        stored = client.get(f"/api/session-status/{data['sessionId']}").json()
        assert stored["exists"] is True
        assert stored["data"]["companyId"] == "A1"
        assert stored["data"]["imageUrl"] == "https://img/x.jpg"
        assert stored["data"]["status"] == SessionStatus.PENDING.value

    def test_accepts_profile_id_name(self, client):
        response = client.post("/api/initiate-chat", json={"profileId": "B2"})
        assert response.status_code == 200

    def test_blank_profile_rejected(self, client):
        response = client.post("/api/initiate-chat", json={"companyId": "   "})
        assert response.status_code == 400
        assert response.json()["detail"] == "Company ID is required."

    def test_missing_profile_rejected(self, client):
        assert client.post("/api/initiate-chat", json={}).status_code == 422

    def test_store_failure(self, client, fake_redis):
        fake_redis.fail("set", times=10)
        response = client.post("/api/initiate-chat", json={"companyId": "A1"})
        assert response.status_code == 500


class TestChatRedirect:
    def test_redirects_for_live_session(self, client):
        session_id = client.post("/api/initiate-chat", json={"companyId": "A1"}).json()["sessionId"]

        response = client.get("/api/chat-redirect", params={"sessionId": session_id}, follow_redirects=False)

        assert response.status_code == 307
        expected = build_wa_link("+358 40 000 0000", "Hello, I am interested in your services.")
        assert response.headers["location"] == expected

    def test_missing_session_id(self, client):
        response = client.get("/api/chat-redirect")
        assert response.status_code == 400
        assert response.json()["detail"] == "Missing sessionId"

    def test_unknown_session(self, client):
        response = client.get("/api/chat-redirect", params={"sessionId": "nope"})
        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid or expired session."


class TestSessionStatus:
    def test_age_in_minutes(self, client, clock):
        session_id = client.post("/api/initiate-chat", json={"companyId": "A1"}).json()["sessionId"]
        clock.advance(150)

        data = client.get(f"/api/session-status/{session_id}").json()

        assert data["exists"] is True
        assert data["ageMinutes"] == 2

    def test_unknown(self, client):
        assert client.get("/api/session-status/nope").json() == {"exists": False, "ageMinutes": None, "data": None}


class TestRateLimit:
    def test_blocks_after_limit(self, client, container):
        container.rate_limiter.limit = 2

        assert client.get("/api/session-status/a").status_code == 200
        assert client.get("/api/session-status/b").status_code == 200
        response = client.get("/api/session-status/c")

        assert response.status_code == 429
        assert response.json()["detail"] == "Too many requests from this IP, please try again after 15 minutes."

    def test_webhooks_are_not_limited(self, client, container):
        container.rate_limiter.limit = 0
        response = client.post("/webhook/message", json={"from": CHAT_ID, "body": "!ping"})
        assert response.status_code == 200


class TestWebhooks:
    def test_message_ping(self, client, gateway):
        response = client.post("/webhook/message", json={"from": CHAT_ID, "body": "!ping"})

        assert response.status_code == 200
        assert response.json()["outcome"] == "ping"
        assert gateway.delivered_texts == ["pong"]

    def test_message_matches_session(self, client, gateway):
        session_id = client.post("/api/initiate-chat", json={"companyId": "A1"}).json()["sessionId"]

        response = client.post("/webhook/message", json={"from": CHAT_ID, "body": "Hello"})

        assert response.json() == {
            "success": True,
            "outcome": "matched",
            "session_id": session_id,
            "message": None,
        }
        assert len(gateway.delivered) == 1

    def test_secret_required_when_configured(self, client, container):
        container.settings.webhook_secret = "s3cret"

        denied = client.post("/webhook/message", json={"from": CHAT_ID, "body": "!ping"})
        allowed = client.post(
            "/webhook/message",
            json={"from": CHAT_ID, "body": "!ping"},
            headers={"X-Webhook-Secret": "s3cret"},
        )

        assert denied.status_code == 401
        assert allowed.status_code == 200

    @patch("linkbridge.services.inbound_service.alert_warning")
    def test_auth_event_clears_sessions(self, mock_alert, client):
        session_id = client.post("/api/initiate-chat", json={"companyId": "A1"}).json()["sessionId"]

        response = client.post("/webhook/auth", json={"event": "authenticated"})

        assert response.json()["outcome"] == "sessions_cleared"
        assert client.get(f"/api/session-status/{session_id}").json()["exists"] is False

    def test_auth_event_store_outage(self, client, fake_redis):
        fake_redis.fail("scan", times=10)
        response = client.post("/webhook/auth", json={"event": "authenticated"})
        assert response.status_code == 503

    @patch("linkbridge.services.inbound_service.alert_warning")
    def test_auth_event_survives_transient_scan_error(self, mock_alert, client, fake_redis):
        fake_redis.fail("scan", times=2)
        response = client.post("/webhook/auth", json={"event": "authenticated"})
        assert response.status_code == 200

    def test_unknown_auth_event_rejected(self, client):
        assert client.post("/webhook/auth", json={"event": "exploded"}).status_code == 422


class TestBuildWaLink:
    def test_strips_plus_and_spaces(self):
        assert build_wa_link("+358 40 000 0000", "hi there") == "https://wa.me/358400000000?text=hi%20there"
