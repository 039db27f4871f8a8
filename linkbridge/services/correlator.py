"""Matches an inbound chat message to the web session it belongs to.

Precedence, first hit wins:
  1. an existing phone claim (duplicates of in-flight sessions are dropped here),
  2. the oldest-enumerated pending session younger than the age bound, claimed for this phone,
  3. a session id embedded in the message body (links generated by older pages),
  4. nothing: a completed phone stays silent, otherwise one canned "link expired"
     reply per phone per marker TTL.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from linkbridge.logging_config import get_logger
from linkbridge.schemas.session import InvalidRecordError, Session
from linkbridge.schemas.webhook import InboundMessageEvent
from linkbridge.services.phone import DEFAULT_COUNTRY_CODE, normalize_phone
from linkbridge.services.session_registry import SessionRegistry
from linkbridge.services.state_machine import SessionStatus, is_in_flight
from linkbridge.services.whatsapp_service import WhatsAppGateway

logger = get_logger("correlator")

EXPIRED_LINK_MESSAGE = (
    "Hello! It looks like your inquiry link may have expired. Please generate a new chat link "
    "from our website to get personalized moving service details."
)

SESSION_TOKEN_PATTERN = re.compile(r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}")


class CorrelationOutcome(str, Enum):
    MATCHED = "matched"
    DUPLICATE = "duplicate"
    INVALID_CLAIM = "invalid_claim"
    COMPLETED = "completed"
    FALLBACK_SENT = "fallback_sent"
    SILENCED = "silenced"


@dataclass
class Correlation:
    outcome: CorrelationOutcome
    phone: str
    session: Optional[Session] = None

    @property
    def matched(self) -> bool:
        return self.outcome == CorrelationOutcome.MATCHED


class Correlator:
    def __init__(
        self,
        registry: SessionRegistry,
        gateway: WhatsAppGateway,
        *,
        max_age_minutes: int = 10,
        country_code: str = DEFAULT_COUNTRY_CODE,
    ):
        self.registry = registry
        self.gateway = gateway
        self.max_age_minutes = max_age_minutes
        self.country_code = country_code

    async def correlate(self, message: InboundMessageEvent) -> Correlation:
        phone = normalize_phone(message.sender_phone, self.country_code)

        claimed_id = await self.registry.find_claim(phone)
        if claimed_id:
            return await self._resolve_claim(phone, claimed_id)

        session = await self._claim_pending(phone)
        if session is not None:
            return Correlation(CorrelationOutcome.MATCHED, phone, session)

        legacy = await self._match_embedded_token(phone, message.body)
        if legacy is not None:
            return legacy

        return await self._handle_unmatched(phone, message.chat_id)

    async def _resolve_claim(self, phone: str, session_id: str) -> Correlation:
        context = {"phone": phone, "session_id": session_id}
        try:
            session = await self.registry.get(session_id)
        except InvalidRecordError as exc:
            logger.warning("Claimed session record is invalid", extra={"context": {**context, "error": exc.reason}})
            session = None

        if session is None:
            logger.warning("Claim points to a missing session, abandoning", extra={"context": context})
            return Correlation(CorrelationOutcome.INVALID_CLAIM, phone)

        if is_in_flight(session.status):
            logger.info(
                f"Duplicate message for session in {session.status.value}, ignoring",
                extra={"context": context},
            )
            return Correlation(CorrelationOutcome.DUPLICATE, phone, session)

        logger.info("Using existing phone claim", extra={"context": {**context, "status": session.status.value}})
        return Correlation(CorrelationOutcome.MATCHED, phone, session)

    async def _claim_pending(self, phone: str) -> Optional[Session]:
        async for candidate in self.registry.scan_pending(self.max_age_minutes):
            claimed = await self.registry.claim(phone, candidate)
            if not claimed.ok:
                logger.debug(
                    f"Skipping session: {claimed.error}",
                    extra={"context": {"phone": phone, "session_id": candidate.session_id}},
                )
                continue
            return await self.registry.transition(candidate, SessionStatus.ACTIVE, claimed_phone=phone)
        return None

    async def _match_embedded_token(self, phone: str, body: str) -> Optional[Correlation]:
        """Legacy links carried the session id in the prefilled message text."""
        match = SESSION_TOKEN_PATTERN.search((body or "").lower())
        if not match:
            return None

        session_id = match.group(0)
        context = {"phone": phone, "session_id": session_id}
        try:
            session = await self.registry.get(session_id)
        except InvalidRecordError as exc:
            logger.warning("Embedded session record is invalid", extra={"context": {**context, "error": exc.reason}})
            return None
        if session is None:
            logger.info("Embedded session id not found", extra={"context": context})
            return None
        if is_in_flight(session.status):
            return Correlation(CorrelationOutcome.DUPLICATE, phone, session)

        claimed = await self.registry.claim(phone, session)
        if not claimed.ok:
            logger.info(f"Embedded session not claimable: {claimed.error}", extra={"context": context})
            return None
        logger.info("Matched session from embedded id", extra={"context": context})
        if session.status == SessionStatus.PENDING:
            session = await self.registry.transition(session, SessionStatus.ACTIVE, claimed_phone=phone)
        return Correlation(CorrelationOutcome.MATCHED, phone, session)

    async def _handle_unmatched(self, phone: str, chat_id: str) -> Correlation:
        if await self.registry.is_completed(phone):
            logger.info("No session for completed phone, staying silent", extra={"context": {"phone": phone}})
            return Correlation(CorrelationOutcome.COMPLETED, phone)

        if await self.registry.has_fallback(phone):
            logger.info("Fallback already sent, staying silent", extra={"context": {"phone": phone}})
            return Correlation(CorrelationOutcome.SILENCED, phone)

        await self.registry.mark_fallback(phone)
        sent = await self.gateway.send_text(chat_id, EXPIRED_LINK_MESSAGE)
        logger.info("Sent expired-link fallback", extra={"context": {"phone": phone, "delivered": sent}})
        return Correlation(CorrelationOutcome.FALLBACK_SENT, phone)
