from dataclasses import dataclass
from typing import Optional

from linkbridge.config import Settings
from linkbridge.services.correlator import Correlator
from linkbridge.services.inbound_service import AuthEventHandler, InboundMessageHandler
from linkbridge.services.profile_directory import (
    GoogleSheetsProfileDirectory,
    ProfileDirectory,
    YamlProfileDirectory,
)
from linkbridge.services.rate_limit_service import RateLimiter
from linkbridge.services.reply_orchestrator import ReplyOrchestrator
from linkbridge.services.scheduler import AsyncioScheduler, Scheduler
from linkbridge.services.session_registry import SessionRegistry
from linkbridge.services.store_service import EphemeralStore
from linkbridge.services.whatsapp_service import WhatsAppGateway


@dataclass
class ServiceContainer:
    settings: Settings
    store: EphemeralStore
    registry: SessionRegistry
    gateway: WhatsAppGateway
    directory: ProfileDirectory
    scheduler: Scheduler
    correlator: Correlator
    orchestrator: ReplyOrchestrator
    inbound: InboundMessageHandler
    auth: AuthEventHandler
    rate_limiter: RateLimiter


def build_directory(settings: Settings) -> ProfileDirectory:
    if settings.profile_source == "yaml":
        return YamlProfileDirectory(settings.profiles_path)
    return GoogleSheetsProfileDirectory(
        settings.google_sheet_id or "",
        settings.google_api_key or "",
        sheet_range=settings.google_sheet_range,
    )


def build_container(
    settings: Settings,
    redis_client,
    *,
    gateway: Optional[WhatsAppGateway] = None,
    directory: Optional[ProfileDirectory] = None,
    scheduler: Optional[Scheduler] = None,
    clock=None,
    sleep_func=None,
) -> ServiceContainer:
    """Wire every service once; collaborators can be swapped for fakes."""
    store_kwargs = {"sleep_func": sleep_func} if sleep_func else {}
    store = EphemeralStore(
        redis_client,
        retries=settings.store_retries,
        backoff_seconds=settings.store_retry_backoff_seconds,
        **store_kwargs,
    )
    registry_kwargs = {"clock": clock} if clock else {}
    registry = SessionRegistry(
        store,
        session_ttl_seconds=settings.session_ttl_seconds,
        claim_ttl_seconds=settings.claim_ttl_seconds,
        marker_ttl_seconds=settings.marker_ttl_seconds,
        **registry_kwargs,
    )
    gateway = gateway or WhatsAppGateway(
        settings.gateway_url,
        settings.gateway_token,
        timeout_seconds=settings.gateway_timeout_seconds,
        media_max_bytes=settings.media_max_bytes,
    )
    directory = directory or build_directory(settings)
    scheduler = scheduler or AsyncioScheduler()
    correlator = Correlator(
        registry,
        gateway,
        max_age_minutes=settings.session_max_age_minutes,
        country_code=settings.default_country_code,
    )
    orchestrator = ReplyOrchestrator(
        registry,
        directory,
        gateway,
        scheduler,
        response_delay_seconds=settings.response_delay_seconds,
    )
    return ServiceContainer(
        settings=settings,
        store=store,
        registry=registry,
        gateway=gateway,
        directory=directory,
        scheduler=scheduler,
        correlator=correlator,
        orchestrator=orchestrator,
        inbound=InboundMessageHandler(correlator, orchestrator, gateway),
        auth=AuthEventHandler(registry),
        rate_limiter=RateLimiter(
            store,
            limit=settings.api_rate_limit_count,
            window_seconds=settings.api_rate_limit_window_seconds,
        ),
    )
