from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, status

from linkbridge.dependencies import get_container
from linkbridge.logging_config import get_logger
from linkbridge.schemas.webhook import AuthEvent, InboundMessageEvent, WebhookResponse
from linkbridge.services.container import ServiceContainer
from linkbridge.services.store_service import StoreError

logger = get_logger("webhook")

router = APIRouter(prefix="/webhook")


def _require_secret(
    provided: Optional[str] = Header(default=None, alias="X-Webhook-Secret"),
    container: ServiceContainer = Depends(get_container),
) -> None:
    expected = container.settings.webhook_secret
    if expected and provided != expected:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook secret")


@router.post("/message", response_model=WebhookResponse, dependencies=[Depends(_require_secret)])
async def handle_message(event: InboundMessageEvent, container: ServiceContainer = Depends(get_container)):
    """Inbound chat message forwarded by the WhatsApp transport."""
    logger.info("Inbound message", extra={"context": {"chat_id": event.chat_id, "message_id": event.message_id}})
    return await container.inbound.handle(event)


@router.post("/auth", response_model=WebhookResponse, dependencies=[Depends(_require_secret)])
async def handle_auth(event: AuthEvent, container: ServiceContainer = Depends(get_container)):
    """Authentication / QR pairing lifecycle of the WhatsApp transport."""
    try:
        return await container.auth.handle(event)
    except StoreError as e:
        logger.error(f"Auth event {event.event} failed: {e}")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Store unavailable")
