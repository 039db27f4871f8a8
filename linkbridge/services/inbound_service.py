from linkbridge.logging_config import get_logger
from linkbridge.schemas.webhook import AuthEvent, InboundMessageEvent, WebhookResponse
from linkbridge.services.alert_service import alert_error, alert_warning
from linkbridge.services.correlator import Correlator
from linkbridge.services.reply_orchestrator import ReplyOrchestrator
from linkbridge.services.session_registry import SessionRegistry
from linkbridge.services.store_service import StoreError
from linkbridge.services.whatsapp_service import WhatsAppGateway

logger = get_logger("inbound_service")

PING_COMMAND = "!ping"


class InboundMessageHandler:
    """One invocation per inbound chat event: correlate, then deliver the reply."""

    def __init__(self, correlator: Correlator, orchestrator: ReplyOrchestrator, gateway: WhatsAppGateway):
        self.correlator = correlator
        self.orchestrator = orchestrator
        self.gateway = gateway

    async def handle(self, event: InboundMessageEvent) -> WebhookResponse:
        if event.body.strip() == PING_COMMAND:
            await self.gateway.send_text(event.chat_id, "pong")
            return WebhookResponse(success=True, outcome="ping")

        try:
            correlation = await self.correlator.correlate(event)
            if not correlation.matched:
                return WebhookResponse(success=True, outcome=correlation.outcome.value)

            session = correlation.session
            result = await self.orchestrator.deliver(session, event.chat_id, correlation.phone)
        except StoreError as exc:
            logger.error(
                "Store unavailable, dropping message",
                extra={"context": {"chat_id": event.chat_id, "key": exc.key, "error": str(exc.cause)}},
            )
            return WebhookResponse(success=False, outcome="store_error", message=str(exc))

        if not result.ok:
            return WebhookResponse(
                success=False,
                outcome=result.error_code,
                session_id=session.session_id,
                message=result.error,
            )
        return WebhookResponse(success=True, outcome="matched", session_id=session.session_id)


class AuthEventHandler:
    """Messaging client lifecycle. A fresh login invalidates every stored session and claim."""

    def __init__(self, registry: SessionRegistry):
        self.registry = registry

    async def handle(self, event: AuthEvent) -> WebhookResponse:
        if event.event == "authenticated":
            deleted = await self.registry.clear_all()
            await alert_warning("Messaging client re-authenticated, sessions cleared", {"deleted": deleted})
            return WebhookResponse(success=True, outcome="sessions_cleared", message=f"deleted {deleted} keys")

        if event.event == "auth_failure":
            logger.error(f"Messaging client authentication failed: {event.detail}")
            await alert_error("Messaging client authentication failed", {"detail": event.detail})
        elif event.event == "qr":
            logger.info("Messaging client waiting for QR pairing")
        else:
            logger.info(f"Messaging client event: {event.event}")
        return WebhookResponse(success=True, outcome=event.event)
