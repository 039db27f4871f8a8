import asyncio
import fnmatch
from typing import Optional

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from linkbridge.config import Settings
from linkbridge.schemas.profile import Profile
from linkbridge.services.container import build_container
from linkbridge.services.scheduler import Scheduler
from linkbridge.services.whatsapp_service import MediaPayload

START_TIME = 1_700_000_000.0


class FakeClock:
    def __init__(self, now: float = START_TIME):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRedis:
    """In-memory stand-in for redis.asyncio with decode_responses=True."""

    def __init__(self, clock: Optional[FakeClock] = None):
        self.clock = clock or FakeClock()
        self.data: dict[str, str] = {}
        self.expires_at: dict[str, float] = {}
        self.failures: dict[str, int] = {}
        self.calls: list[tuple[str, str]] = []

    def fail(self, operation: str, times: int = 1) -> None:
        self.failures[operation] = times

    async def _record(self, operation: str, key: str) -> None:
        # Yield like a network round trip so gathered coroutines interleave.
        await asyncio.sleep(0)
        self.calls.append((operation, key))
        remaining = self.failures.get(operation, 0)
        if remaining:
            self.failures[operation] = remaining - 1
            raise RedisConnectionError(f"{operation} unavailable")

    def _alive(self, key: str) -> bool:
        expires = self.expires_at.get(key)
        if expires is not None and expires <= self.clock():
            self.data.pop(key, None)
            self.expires_at.pop(key, None)
        return key in self.data

    def ttl(self, key: str) -> Optional[float]:
        if not self._alive(key):
            return None
        expires = self.expires_at.get(key)
        return None if expires is None else expires - self.clock()

    async def ping(self):
        await self._record("ping", "-")
        return True

    async def get(self, key: str):
        await self._record("get", key)
        return self.data.get(key) if self._alive(key) else None

    async def set(self, key: str, value: str, ex: int | None = None, nx: bool = False):
        await self._record("set", key)
        if nx and self._alive(key):
            return None
        self.data[key] = value
        if ex is not None:
            self.expires_at[key] = self.clock() + ex
        else:
            self.expires_at.pop(key, None)
        return True

    async def expire(self, key: str, seconds: int):
        await self._record("expire", key)
        if not self._alive(key):
            return False
        self.expires_at[key] = self.clock() + seconds
        return True

    async def delete(self, *keys: str):
        await self._record("delete", ",".join(keys))
        deleted = 0
        for key in keys:
            if self._alive(key):
                deleted += 1
            self.data.pop(key, None)
            self.expires_at.pop(key, None)
        return deleted

    async def exists(self, *keys: str):
        await self._record("exists", ",".join(keys))
        return sum(1 for key in keys if self._alive(key))

    async def incr(self, key: str):
        await self._record("incr", key)
        value = int(self.data.get(key, "0")) + 1 if self._alive(key) else 1
        self.data[key] = str(value)
        return value

    async def scan(self, cursor: int = 0, match: str | None = None, count: int | None = None):
        await self._record("scan", match or "*")
        keys = [key for key in list(self.data) if self._alive(key) and fnmatch.fnmatchcase(key, match or "*")]
        return 0, keys


class VirtualScheduler(Scheduler):
    """Runs scheduled callbacks only when the test advances virtual time."""

    def __init__(self):
        self.now = 0.0
        self.jobs: list[tuple[float, object]] = []

    def schedule_after(self, delay_seconds, callback):
        self.jobs.append((self.now + delay_seconds, callback))

    async def advance(self, seconds: float) -> int:
        self.now += seconds
        due = [job for job in self.jobs if job[0] <= self.now]
        self.jobs = [job for job in self.jobs if job[0] > self.now]
        for _, callback in sorted(due, key=lambda job: job[0]):
            await callback()
        return len(due)


class FakeGateway:
    def __init__(self):
        self.attempts: list[tuple[str, str, str]] = []
        self.fail_text = False
        self.fail_media = False
        self.media_error: Optional[str] = None
        self.fetched: list[str] = []

    @property
    def delivered(self) -> list[tuple[str, str, str]]:
        return [item for item in self.attempts if item[0] != "failed"]

    @property
    def delivered_texts(self) -> list[str]:
        return [item[2] for item in self.delivered]

    async def send_text(self, chat_id, text):
        if self.fail_text:
            self.attempts.append(("failed", chat_id, text))
            return False
        self.attempts.append(("text", chat_id, text))
        return True

    async def send_media(self, chat_id, media, caption=None):
        if self.fail_media:
            self.attempts.append(("failed", chat_id, caption or ""))
            return False
        self.attempts.append(("media", chat_id, caption or ""))
        return True

    async def fetch_media(self, url, *, filename="image.jpg", mimetype="image/jpeg"):
        self.fetched.append(url)
        if self.media_error:
            return None, self.media_error
        return MediaPayload(mimetype=mimetype, data=b"\xff\xd8jpeg", filename=filename), None


class FakeDirectory:
    def __init__(self, profiles: Optional[dict[str, Profile]] = None):
        self.profiles = profiles or {}
        self.lookups: list[str] = []

    async def get_profile(self, profile_id):
        self.lookups.append(profile_id)
        return self.profiles.get(profile_id)


FULL_PROFILE_ROW = {
    "ID": "A1",
    "BRIDGE MESSAGE": "MSF! Company Name: Swift Movers; Cost: from 80 EUR",
    "COMPANY IMAGE": "https://img.example.com/swift.jpg",
    "COMPANY": "Swift Movers",
    "OWNER / DRIVER": "Mikko",
    "LANGUAGES - A": "Finnish",
    "LANGUAGES - B": " English ",
    "RATE & SERVICES  ( I )": "Van 45 EUR/h",
    "RATE & SERVICES  ( II )": "Two movers 70 EUR/h",
    "RATE & SERVICES  ( III )": "Packing 30 EUR",
    "RATE & SERVICES  ( IV )": "Storage on request",
    "VEHICLE MODEL": "Ford Transit",
    "LICENSED": "Yes",
    "COVERAGE": "Helsinki region",
    "SERVICES": "Home and office moves",
    "CUSTOM OFFERS": "Student discount",
    "AVAILABILITY ": "Mon-Sat",
    "CONTACT METHOD": "WhatsApp",
    "THANK YOU MESSAGE": "Thanks for choosing us!",
}

BRIDGE_ONLY_ROW = {"ID": "B2", "BRIDGE MESSAGE": "Note: we will connect you shortly"}

PHONE = "234501234567"
CHAT_ID = f"{PHONE}@c.us"


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_redis(clock):
    return FakeRedis(clock)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def directory():
    return FakeDirectory(
        {
            "A1": Profile.from_row(FULL_PROFILE_ROW),
            "B2": Profile.from_row(BRIDGE_ONLY_ROW),
        }
    )


@pytest.fixture
def scheduler():
    return VirtualScheduler()


@pytest.fixture
def app_settings():
    return Settings(
        _env_file=None,
        bot_phone="+358 40 000 0000",
        gateway_url="http://gateway.test",
        store_retry_backoff_seconds=0.0,
        webhook_secret=None,
    )


@pytest.fixture
def container(app_settings, fake_redis, gateway, directory, scheduler, clock):
    async def _no_sleep(_seconds):
        return None

    return build_container(
        app_settings,
        fake_redis,
        gateway=gateway,
        directory=directory,
        scheduler=scheduler,
        clock=clock,
        sleep_func=_no_sleep,
    )


@pytest.fixture
def registry(container):
    return container.registry
