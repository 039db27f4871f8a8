import base64
from dataclasses import dataclass
from typing import Optional

import httpx

from linkbridge.logging_config import get_logger
from linkbridge.services.alert_service import alert_critical

logger = get_logger("whatsapp_service")


@dataclass
class MediaPayload:
    mimetype: str
    data: bytes
    filename: str

    def as_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")


class WhatsAppGateway:
    """Outbound side of the messaging client: an HTTP sidecar that owns the WhatsApp session."""

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        *,
        timeout_seconds: float = 30.0,
        media_max_bytes: int = 8 * 1024 * 1024,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or "").rstrip("/")
        self.token = token
        self.timeout_seconds = timeout_seconds
        self.media_max_bytes = media_max_bytes
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        return httpx.AsyncClient(timeout=self.timeout_seconds, headers=headers, transport=self._transport)

    async def _post(self, endpoint: str, payload: dict, chat_id: str) -> bool:
        if not self.base_url:
            logger.error("Gateway URL is missing (GATEWAY_URL env var not set)")
            await alert_critical("WhatsApp send failed", {"chat_id": chat_id, "error": "missing_gateway_url"})
            return False

        try:
            async with self._client() as client:
                response = await client.post(f"{self.base_url}/{endpoint}", json=payload)
                logger.info(
                    f"Gateway response: status={response.status_code}, chat_id={chat_id}, body={response.text[:200]}"
                )
                return response.is_success
        except httpx.HTTPError as e:
            logger.error(f"Error sending WhatsApp {endpoint}: {e}", extra={"context": {"chat_id": chat_id}})
            await alert_critical("WhatsApp send failed", {"chat_id": chat_id, "endpoint": endpoint, "error": str(e)})
            return False

    async def send_text(self, chat_id: str, text: str) -> bool:
        if not chat_id or not text:
            logger.warning(f"send_text: missing chat_id={chat_id} or text")
            return False
        return await self._post("send-text", {"chatId": chat_id, "text": text}, chat_id)

    async def send_media(self, chat_id: str, media: MediaPayload, caption: Optional[str] = None) -> bool:
        payload = {
            "chatId": chat_id,
            "mimetype": media.mimetype,
            "filename": media.filename,
            "data": media.as_base64(),
        }
        if caption and caption.strip():
            payload["caption"] = caption
        return await self._post("send-media", payload, chat_id)

    async def fetch_media(
        self, url: str, *, filename: str = "image.jpg", mimetype: str = "image/jpeg"
    ) -> tuple[Optional[MediaPayload], Optional[str]]:
        """Download an attachment. Returns (payload, None) or (None, reason)."""
        if not url:
            return None, "missing_url"

        data = bytearray()
        try:
            async with httpx.AsyncClient(timeout=15.0, transport=self._transport, follow_redirects=True) as client:
                async with client.stream("GET", url) as response:
                    response.raise_for_status()
                    content_type = response.headers.get("content-type", "").split(";")[0].strip()
                    async for chunk in response.aiter_bytes():
                        if not chunk:
                            continue
                        data.extend(chunk)
                        if self.media_max_bytes and len(data) > self.media_max_bytes:
                            return None, "too_large"
        except httpx.InvalidURL as exc:
            return None, f"invalid_url:{exc}"
        except httpx.HTTPError as exc:
            return None, f"download_failed:{exc}"

        if not data:
            return None, "empty"
        if content_type.startswith("image/"):
            mimetype = content_type
        return MediaPayload(mimetype=mimetype, data=bytes(data), filename=filename), None
