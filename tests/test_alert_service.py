from unittest.mock import AsyncMock, Mock, patch

import pytest

from linkbridge.services import alert_service
from linkbridge.services.alert_service import (
    alert_critical,
    alert_error,
    alert_warning,
    format_alert,
    send_alert,
)


@pytest.fixture(autouse=True)
def _clear_throttle():
    alert_service.reset_throttle()
    yield
    alert_service.reset_throttle()


def telegram_client(mock_client_class, status_code=200):
    mock_client = AsyncMock()
    mock_client_class.return_value.__aenter__.return_value = mock_client
    mock_client.post.return_value = Mock(status_code=status_code)
    return mock_client


class TestFormatAlert:
    def test_includes_level_and_service(self):
        text = format_alert("CRITICAL", "Redis connection failed at startup")
        assert text.startswith("🔥 *CRITICAL* linkbridge\n\nRedis connection failed at startup")

    def test_includes_context(self):
        text = format_alert("ERROR", "WhatsApp send failed", {"chat_id": "234501234567@c.us", "endpoint": "send-text"})
        assert "  chat_id: 234501234567@c.us" in text
        assert "  endpoint: send-text" in text

    def test_unknown_level_gets_default_icon(self):
        assert format_alert("NOTICE", "x").startswith("📢")


class TestSendAlert:
    @pytest.mark.asyncio
    @patch("linkbridge.services.alert_service.ALERT_BOT_TOKEN", None)
    @patch("linkbridge.services.alert_service.ALERT_CHAT_ID", None)
    async def test_returns_false_when_not_configured(self):
        assert await send_alert("ERROR", "Store unavailable") is False

    @pytest.mark.asyncio
    @patch("linkbridge.services.alert_service.ALERT_BOT_TOKEN", "test-token")
    @patch("linkbridge.services.alert_service.ALERT_CHAT_ID", "test-chat")
    @patch("linkbridge.services.alert_service.httpx.AsyncClient")
    async def test_sends_alert_to_telegram(self, mock_client_class):
        mock_client = telegram_client(mock_client_class)

        result = await send_alert("CRITICAL", "Redis connection failed at startup")

        assert result is True
        mock_client.post.assert_called_once()
        call_args = mock_client.post.call_args
        assert "api.telegram.org/bottest-token" in call_args[0][0]
        json_data = call_args[1]["json"]
        assert json_data["chat_id"] == "test-chat"
        assert "CRITICAL" in json_data["text"]

    @pytest.mark.asyncio
    @patch("linkbridge.services.alert_service.ALERT_BOT_TOKEN", "test-token")
    @patch("linkbridge.services.alert_service.ALERT_CHAT_ID", "test-chat")
    @patch("linkbridge.services.alert_service.httpx.AsyncClient")
    async def test_repeated_alert_is_throttled(self, mock_client_class):
        mock_client = telegram_client(mock_client_class)

        assert await send_alert("CRITICAL", "WhatsApp send failed") is True
        assert await send_alert("CRITICAL", "WhatsApp send failed") is False
        assert await send_alert("ERROR", "WhatsApp send failed") is True

        assert mock_client.post.call_count == 2

    @pytest.mark.asyncio
    @patch("linkbridge.services.alert_service.ALERT_BOT_TOKEN", "test-token")
    @patch("linkbridge.services.alert_service.ALERT_CHAT_ID", "test-chat")
    @patch("linkbridge.services.alert_service.ALERT_COOLDOWN_SECONDS", 0)
    @patch("linkbridge.services.alert_service.httpx.AsyncClient")
    async def test_zero_cooldown_disables_throttle(self, mock_client_class):
        mock_client = telegram_client(mock_client_class)

        await send_alert("ERROR", "same")
        await send_alert("ERROR", "same")

        assert mock_client.post.call_count == 2

    @pytest.mark.asyncio
    @patch("linkbridge.services.alert_service.ALERT_BOT_TOKEN", "test-token")
    @patch("linkbridge.services.alert_service.ALERT_CHAT_ID", "test-chat")
    @patch("linkbridge.services.alert_service.httpx.AsyncClient")
    async def test_returns_false_on_telegram_error(self, mock_client_class):
        telegram_client(mock_client_class, status_code=400)
        assert await send_alert("ERROR", "Test message") is False

    @pytest.mark.asyncio
    @patch("linkbridge.services.alert_service.ALERT_BOT_TOKEN", "test-token")
    @patch("linkbridge.services.alert_service.ALERT_CHAT_ID", "test-chat")
    @patch("linkbridge.services.alert_service.httpx.AsyncClient")
    async def test_returns_false_on_exception(self, mock_client_class):
        mock_client_class.return_value.__aenter__.side_effect = Exception("Network error")
        assert await send_alert("ERROR", "Test message") is False


class TestAlertHelpers:
    @pytest.mark.asyncio
    @patch("linkbridge.services.alert_service.send_alert")
    async def test_levels(self, mock_send):
        mock_send.return_value = True

        assert await alert_error("e", {"a": 1}) is True
        await alert_critical("c")
        await alert_warning("w")

        assert [call.args[0] for call in mock_send.call_args_list] == ["ERROR", "CRITICAL", "WARNING"]
        assert mock_send.call_args_list[0].args[2] == {"a": 1}
