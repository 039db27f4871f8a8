"""Two-part reply: bridge message now, detailed profile after a delay, then cleanup.

Status writes bracket every send:
  pending/active -> bridge_sending   (persisted before any outbound call; abort if it fails)
  bridge_sending -> bridge_sent      (bridge delivered, responseScheduled=true)
  bridge_sending -> pending          (bridge failed, responseScheduled=false)
  bridge_sent    -> response_sent    (profile delivered), then session, claim deleted
                                     and the phone marked completed.
"""

import re
from typing import Optional

from linkbridge.logging_config import bind_context, get_logger
from linkbridge.schemas.profile import Profile
from linkbridge.schemas.session import InvalidRecordError, Session
from linkbridge.services.profile_directory import ProfileDirectory
from linkbridge.services.result import FailureCode, Result
from linkbridge.services.scheduler import Scheduler
from linkbridge.services.session_registry import SessionRegistry
from linkbridge.services.state_machine import SessionStatus
from linkbridge.services.store_service import StoreError
from linkbridge.services.whatsapp_service import WhatsAppGateway

logger = get_logger("reply_orchestrator")

PROFILE_NOT_FOUND_MESSAGE = "I am sorry, I cannot find the details for this company. Please try again later."

BRIDGE_EMPHASIS = [
    ("MSF!", "*MSF!*"),
    ("Company Name:", "*Company Name:*"),
    ("Services Offered:", "*Services Offered:*"),
    ("Cost:", "*Cost:*"),
    ("Service Area:", "*Service Area:*"),
    ("Note:", "*Note:*"),
    ("How to Find Them", "*How to Find Them*"),
    ("Search their name on Google", "• Search their name on *Google*"),
    ("look them up on Facebook", "look them up on *Facebook*"),
]

# "!" and ";" are line separators in the sheet, except inside the "*MSF!*" brand mark.
_LINE_BREAKS = re.compile(r"(?<!\*MSF)!|;")


def format_bridge_message(template: str) -> str:
    text = (template or "").strip()
    for literal, emphasized in BRIDGE_EMPHASIS:
        text = re.sub(re.escape(literal), lambda _m, rep=emphasized: rep, text, count=1, flags=re.IGNORECASE)
    return _LINE_BREAKS.sub("\n", text)


def build_profile_message(profile: Profile) -> str:
    languages = ", ".join(part for part in [profile.languages_a, (profile.languages_b or "").strip()] if part)
    return (
        f"📍 *{profile.company}*\n\n"
        f"💰 *Service Rates*\n"
        f"• {profile.rate_1}\n"
        f"• {profile.rate_2}\n"
        f"• {profile.rate_3}\n"
        f"• {profile.rate_4}\n\n"
        f"👨‍✈️ *Owner / Driver*\n"
        f"{profile.owner_driver}\n\n"
        f"🗣️ *Languages*\n"
        f"{languages}\n\n"
        f"🚗 *Vehicle Model & Licensed*\n"
        f"{profile.vehicle_model}\n"
        f"✅ Licensed: {profile.licensed}\n\n"
        f"🗺️ *Coverage Area*\n"
        f"{profile.coverage}\n\n"
        f"🧰 *Services*\n"
        f"{profile.services}\n\n"
        f"📆 *Availability*\n"
        f"{profile.availability}\n\n"
        f"☎️ *Contact Method*\n"
        f"{profile.contact_method}\n\n"
        f"{profile.thank_you_message}"
    )


class ReplyOrchestrator:
    def __init__(
        self,
        registry: SessionRegistry,
        directory: ProfileDirectory,
        gateway: WhatsAppGateway,
        scheduler: Scheduler,
        *,
        response_delay_seconds: float = 30.0,
    ):
        self.registry = registry
        self.directory = directory
        self.gateway = gateway
        self.scheduler = scheduler
        self.response_delay_seconds = response_delay_seconds

    async def deliver(self, session: Session, chat_id: str, phone: str) -> Result[Session]:
        log = bind_context(logger, session_id=session.session_id, phone=phone)

        profile = await self.directory.get_profile(session.profile_id)
        if profile is None:
            log.warning("Profile not found, sending apology", extra={"context": {"profile_id": session.profile_id}})
            await self.gateway.send_text(chat_id, PROFILE_NOT_FOUND_MESSAGE)
            return Result.failure(f"Profile {session.profile_id} not found", FailureCode.PROFILE_NOT_FOUND)

        try:
            session = await self.registry.transition(session, SessionStatus.BRIDGE_SENDING, claimed_phone=phone)
        except StoreError as exc:
            log.error("Could not persist bridge_sending, not sending", extra={"context": {"error": str(exc)}})
            return Result.failure(str(exc), FailureCode.STATE_WRITE_FAILED)

        bridge_text = format_bridge_message(profile.bridge_message)
        sent = await self._send_with_image(
            chat_id,
            bridge_text,
            session.image_ref,
            filename=f"company-{session.profile_id}.jpg",
        )
        if not sent:
            log.warning("Bridge send failed, reverting to pending")
            try:
                await self.registry.transition(session, SessionStatus.PENDING, response_scheduled=False)
            except StoreError as exc:
                log.error("Could not revert session to pending", extra={"context": {"error": str(exc)}})
            return Result.failure("Bridge message not delivered", FailureCode.BRIDGE_SEND_FAILED)

        if profile.is_bridge_only:
            log.info("Bridge-only profile, completing without detailed reply")
            await self._complete(session, phone)
            return Result.success(session)

        try:
            session = await self.registry.transition(session, SessionStatus.BRIDGE_SENT, response_scheduled=True)
        except StoreError as exc:
            log.error(
                "Bridge sent but state not persisted, profile reply not scheduled",
                extra={"context": {"error": str(exc)}},
            )
            return Result.failure(str(exc), FailureCode.STATE_WRITE_FAILED)

        session_id = session.session_id

        async def _fire() -> None:
            await self.send_profile(session_id, chat_id, phone, profile)

        self.scheduler.schedule_after(self.response_delay_seconds, _fire)
        log.info(f"Profile reply scheduled in {self.response_delay_seconds}s")
        return Result.success(session)

    async def send_profile(self, session_id: str, chat_id: str, phone: str, profile: Profile) -> bool:
        """Delayed half of the reply. Skips if the session was cleaned up or reset meanwhile."""
        log = bind_context(logger, session_id=session_id, phone=phone)
        try:
            session = await self.registry.get(session_id)
        except (InvalidRecordError, StoreError) as exc:
            log.warning(
                "Could not reload session before profile reply, skipping",
                extra={"context": {"error": str(exc)}},
            )
            return False

        if session is None or not session.response_scheduled:
            log.info("Profile reply no longer scheduled, skipping")
            return False

        sent = False
        try:
            sent = await self._send_with_image(
                chat_id,
                build_profile_message(profile),
                profile.company_image,
                filename=f"{profile.company}.jpg",
            )
            if sent:
                try:
                    session = await self.registry.transition(session, SessionStatus.RESPONSE_SENT)
                except StoreError as exc:
                    log.warning("Could not persist response_sent", extra={"context": {"error": str(exc)}})
            else:
                log.error("Profile reply not delivered")
        finally:
            await self._complete(session, phone)
        return sent

    async def _complete(self, session: Session, phone: str) -> None:
        """Delete session and claim, and close the phone for further correlation."""
        owner = session.claimed_phone or phone
        context = {"session_id": session.session_id, "phone": owner}
        steps = [
            ("delete_session", lambda: self.registry.delete(session)),
            ("delete_claim", lambda: self.registry.delete_claim(owner)),
            ("mark_completed", lambda: self.registry.mark_completed(owner)),
        ]
        failed = []
        for name, step in steps:
            try:
                await step()
            except StoreError as exc:
                failed.append(name)
                logger.error(f"Cleanup step {name} failed", extra={"context": {**context, "error": str(exc)}})
        if not failed:
            logger.info("Session completed and cleaned up", extra={"context": context})

    async def _send_with_image(
        self, chat_id: str, text: str, image_url: Optional[str], *, filename: str
    ) -> bool:
        if image_url:
            try:
                if await self._send_image(chat_id, text, image_url, filename=filename):
                    return True
            except Exception as exc:
                # The image is optional; whatever breaks here must not block the text reply.
                logger.warning(
                    "Image delivery raised, falling back to text",
                    exc_info=True,
                    extra={"context": {"chat_id": chat_id, "url": image_url, "error": str(exc)}},
                )
        return await self.gateway.send_text(chat_id, text)

    async def _send_image(self, chat_id: str, text: str, image_url: str, *, filename: str) -> bool:
        media, error = await self.gateway.fetch_media(image_url, filename=filename)
        if media is None:
            logger.warning(
                "Image fetch failed, falling back to text",
                extra={"context": {"chat_id": chat_id, "url": image_url, "error": error}},
            )
            return False
        if await self.gateway.send_media(chat_id, media, caption=text):
            return True
        logger.warning("Image send failed, falling back to text", extra={"context": {"chat_id": chat_id}})
        return False
