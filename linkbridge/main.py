from typing import Optional

import redis.asyncio as redis_async
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from linkbridge.config import Settings, settings
from linkbridge.logging_config import get_logger, setup_logging
from linkbridge.routers import chat, webhook
from linkbridge.services.alert_service import alert_critical
from linkbridge.services.container import ServiceContainer, build_container
from linkbridge.services.scheduler import AsyncioScheduler
from linkbridge.services.store_service import StoreError

logger = get_logger("main")


async def _connect_redis(app_settings: Settings):
    client = redis_async.from_url(
        app_settings.redis_url,
        decode_responses=True,
        socket_connect_timeout=app_settings.redis_socket_timeout_seconds,
        socket_timeout=app_settings.redis_socket_timeout_seconds,
    )
    await client.ping()
    return client


def create_app(container: Optional[ServiceContainer] = None, app_settings: Optional[Settings] = None) -> FastAPI:
    app_settings = app_settings or (container.settings if container else settings)
    setup_logging(app_settings.log_level)

    app = FastAPI(
        title="Link Bridge API",
        description="Correlates web inquiries with WhatsApp chats and sends company profiles",
        version="0.1.0",
    )
    app.state.container = container
    app.state.redis = None

    cors_origins = [origin.strip() for origin in app_settings.cors_allow_origins.split(",") if origin.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins or ["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(chat.router)
    app.include_router(webhook.router)

    @app.on_event("startup")
    async def connect_services() -> None:
        if app.state.container is not None:
            return
        try:
            app.state.redis = await _connect_redis(app_settings)
        except Exception as exc:
            # Nothing works without the store; let the server abort startup.
            logger.critical("Failed to connect to Redis", extra={"context": {"error": str(exc)}})
            await alert_critical("Redis connection failed at startup", {"error": str(exc)})
            raise
        app.state.container = build_container(app_settings, app.state.redis)
        logger.info("Redis client is connected and ready")

    @app.on_event("shutdown")
    async def close_services() -> None:
        container_ = app.state.container
        if container_ is not None and isinstance(container_.scheduler, AsyncioScheduler):
            await container_.scheduler.shutdown()
        if app.state.redis is not None:
            await app.state.redis.aclose()
            app.state.redis = None

    @app.get("/", response_class=PlainTextResponse)
    async def root():
        return "WhatsApp Bot API is running!"

    @app.get("/health")
    async def health():
        container_ = app.state.container
        if container_ is None:
            return {"status": "starting"}
        try:
            await container_.store.ping()
        except StoreError as e:
            logger.warning(f"Health check: store unavailable: {e}")
            return {"status": "degraded", "store": "unavailable"}
        return {"status": "ok", "store": "ok"}

    return app


app = create_app()
