import time
import uuid
from typing import AsyncIterator, Callable, Optional

from linkbridge.logging_config import get_logger
from linkbridge.schemas.session import InvalidRecordError, Session
from linkbridge.services.result import FailureCode, Result
from linkbridge.services.state_machine import SessionStatus, transition
from linkbridge.services.store_service import EphemeralStore

logger = get_logger("session_registry")

SESSION_PREFIX = "session_"
PHONE_SESSION_PREFIX = "phone_session_"
CLAIM_PREFIX = "claim_session_"
FALLBACK_PREFIX = "fallback_user_"
COMPLETED_PREFIX = "completed_user_"


def session_key(session_id: str) -> str:
    return f"{SESSION_PREFIX}{session_id}"


def phone_session_key(phone: str) -> str:
    return f"{PHONE_SESSION_PREFIX}{phone}"


def session_claim_key(session_id: str) -> str:
    return f"{CLAIM_PREFIX}{session_id}"


def fallback_key(phone: str) -> str:
    return f"{FALLBACK_PREFIX}{phone}"


def completed_key(phone: str) -> str:
    return f"{COMPLETED_PREFIX}{phone}"


class SessionRegistry:
    """Owns the session lifecycle in the store: create, lookup, claim, transition, cleanup.

    Nothing is cached between calls; every read goes to the store and every write is a
    full record write that refreshes the TTL (last write wins).
    """

    def __init__(
        self,
        store: EphemeralStore,
        *,
        session_ttl_seconds: int = 600,
        claim_ttl_seconds: int = 600,
        marker_ttl_seconds: int = 86400,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.session_ttl_seconds = session_ttl_seconds
        self.claim_ttl_seconds = claim_ttl_seconds
        self.marker_ttl_seconds = marker_ttl_seconds
        self._clock = clock

    def now_ms(self) -> int:
        return int(self._clock() * 1000)

    async def create(self, profile_id: str, image_ref: Optional[str] = None) -> Session:
        session = Session(
            session_id=str(uuid.uuid4()),
            profile_id=profile_id,
            image_ref=image_ref or None,
            timestamp=self.now_ms(),
            status=SessionStatus.PENDING,
        )
        await self._save(session)
        logger.info(
            "Session created",
            extra={"context": {"session_id": session.session_id, "profile_id": profile_id}},
        )
        return session

    async def get(self, session_id: str) -> Optional[Session]:
        """Load a session. Raises InvalidRecordError if the stored blob is malformed."""
        key = session_key(session_id)
        raw = await self.store.get(key)
        if raw is None:
            return None
        return Session.from_store(key, raw)

    async def find_claim(self, phone: str) -> Optional[str]:
        return await self.store.get_str(phone_session_key(phone))

    async def claim(self, phone: str, session: Session) -> Result[Session]:
        """Record that ``phone`` owns ``session``.

        Succeeds when nobody holds the session, or when this phone already does.
        A session held by another phone, or a phone already holding another session,
        is refused with ``claimed_by_other``.
        """
        claim_key = session_claim_key(session.session_id)
        took_session = await self.store.set_if_absent(claim_key, phone, self.claim_ttl_seconds)
        if not took_session:
            holder = await self.store.get_str(claim_key)
            if holder != phone:
                return Result.failure(
                    f"Session {session.session_id} claimed by another phone", FailureCode.CLAIMED_BY_OTHER
                )

        phone_key = phone_session_key(phone)
        took_phone = await self.store.set_if_absent(phone_key, session.session_id, self.claim_ttl_seconds)
        if not took_phone:
            current = await self.store.get_str(phone_key)
            if current != session.session_id:
                if took_session:
                    await self.store.delete(claim_key)
                return Result.failure(f"Phone already holds session {current}", FailureCode.CLAIMED_BY_OTHER)

        await self.store.expire(claim_key, self.claim_ttl_seconds)
        await self.store.expire(phone_key, self.claim_ttl_seconds)
        logger.info(
            "Session claimed",
            extra={"context": {"session_id": session.session_id, "phone": phone}},
        )
        return Result.success(session)

    async def transition(self, session: Session, new_status: SessionStatus, **changes) -> Session:
        """Persist ``session`` with a new status and field changes, refreshing its TTL.

        Re-writing the current status is allowed so duplicate writes stay harmless.
        """
        if session.status != new_status:
            transition(session.status, new_status)
        updated = session.model_copy(update={"status": new_status, **changes})
        await self._save(updated)
        logger.info(
            f"Session {session.status.value} -> {new_status.value}",
            extra={"context": {"session_id": session.session_id, "phone": updated.claimed_phone}},
        )
        return updated

    async def scan_pending(self, max_age_minutes: int = 10) -> AsyncIterator[Session]:
        """Yield pending sessions younger than ``max_age_minutes``, re-scanning the store each call."""
        max_age_ms = max_age_minutes * 60 * 1000
        async for key in self.store.scan(f"{SESSION_PREFIX}*"):
            raw = await self.store.get(key)
            if raw is None:
                continue
            try:
                session = Session.from_store(key, raw)
            except InvalidRecordError as exc:
                logger.warning("Skipping invalid session record", extra={"context": {"key": key, "error": exc.reason}})
                continue
            if session.status != SessionStatus.PENDING:
                continue
            if session.age_ms(self.now_ms()) > max_age_ms:
                continue
            yield session

    async def delete(self, session: Session) -> None:
        await self.store.delete(session_key(session.session_id), session_claim_key(session.session_id))

    async def delete_claim(self, phone: str) -> None:
        await self.store.delete(phone_session_key(phone))

    async def has_fallback(self, phone: str) -> bool:
        return await self.store.exists(fallback_key(phone))

    async def mark_fallback(self, phone: str) -> None:
        await self.store.set(fallback_key(phone), "1", self.marker_ttl_seconds)

    async def is_completed(self, phone: str) -> bool:
        return await self.store.exists(completed_key(phone))

    async def mark_completed(self, phone: str) -> None:
        await self.store.set(completed_key(phone), True, self.marker_ttl_seconds)

    async def clear_all(self) -> int:
        """Drop every session and claim key; used when the messaging identity changes."""
        keys: list[str] = []
        for prefix in (SESSION_PREFIX, PHONE_SESSION_PREFIX, CLAIM_PREFIX):
            async for key in self.store.scan(f"{prefix}*"):
                keys.append(key)
        deleted = await self.store.delete(*keys)
        logger.warning("Cleared sessions and claims", extra={"context": {"deleted": deleted}})
        return deleted

    async def _save(self, session: Session) -> None:
        await self.store.set(session_key(session.session_id), session.to_store(), self.session_ttl_seconds)
