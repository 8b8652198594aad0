"""FastAPI application factory for the control surface"""

import asyncio
import logging
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from control.core.bot import AlertBot
from control.core.config import ControlSettings, get_settings
from control.core.controller import AlertController
from control.core.ingestion import IngestionFilter
from control.core.streamlabs import StreamlabsFeed
from control.routers import gate_router, queue_router, settings_router
from shared.channel import SynchronizationChannel
from shared.database import DatabaseManager
from shared.logging import setup_logging
from shared.protocol import Role
from shared.repositories.state import (
    JsonStateRepository,
    NullStateRepository,
    PgStateRepository,
    StateRepository,
)

logger = logging.getLogger(__name__)


async def _heartbeat(app: FastAPI, interval: float) -> None:
    """Periodic heartbeat: log uptime and queue status"""
    while True:
        await asyncio.sleep(interval)
        uptime = int(time.time() - app.state.start_time)
        status = app.state.controller.status()
        logger.info(
            f"Heartbeat: uptime={uptime}s, relay={status['relay_connected']}, "
            f"gate_open={status['gate_open']}, pending={status['pending']}"
        )


async def _build_repository(
    settings: ControlSettings,
) -> tuple[StateRepository, DatabaseManager | None]:
    if settings.state_backend == "postgres":
        db_manager = DatabaseManager(settings.database_url)
        await db_manager.connect()
        repository = PgStateRepository(db_manager.pool)
        await repository.ensure_schema()
        return repository, db_manager
    if settings.state_backend == "json":
        return JsonStateRepository(settings.state_path), None
    return NullStateRepository(), None


async def _run_bot(controller: AlertController, settings: ControlSettings) -> None:
    try:
        async with AlertBot(controller=controller, settings=settings) as bot:
            await bot.run()
    except asyncio.CancelledError:
        raise
    except Exception as e:
        logger.exception(f"Twitch ingestion stopped: {type(e).__name__}: {e}")


async def _run_streamlabs(feed: StreamlabsFeed) -> None:
    try:
        await feed.run()
    except asyncio.CancelledError:
        raise
    except Exception as e:
        logger.exception(f"Streamlabs ingestion stopped: {type(e).__name__}: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Handle startup and shutdown"""
    settings: ControlSettings = app.state.settings
    app.state.start_time = time.time()

    # Startup
    logger.info("Starting minaqueue control server")
    logger.info(f"Environment: {settings.environment}")

    repository, db_manager = await _build_repository(settings)
    controller = AlertController(
        repository=repository,
        ingestion=IngestionFilter(
            min_bits=settings.min_bits, emote_prefixes=settings.emote_prefixes
        ),
        dedup_window_ms=settings.dedup_window_ms,
        max_pending=settings.max_pending_alerts,
    )
    await controller.load()
    app.state.controller = controller

    channel: SynchronizationChannel | None = None
    if settings.relay_url:
        channel = SynchronizationChannel(
            settings.relay_url, Role.CONTROL, reconnect_delay=settings.reconnect_delay
        )
        controller.attach_channel(channel)
        await channel.connect()
        logger.info(f"Relay channel connecting to {settings.relay_url}")
    else:
        logger.warning("No relay URL configured, queue changes stay local")

    bot_task: asyncio.Task | None = None
    if settings.twitch_enabled:
        bot_task = asyncio.create_task(_run_bot(controller, settings))
        logger.info(f"Twitch ingestion enabled for broadcaster {settings.twitch_broadcaster_id}")
    else:
        logger.info("Twitch credentials not set, ingestion disabled (manual alerts only)")

    streamlabs: StreamlabsFeed | None = None
    streamlabs_task: asyncio.Task | None = None
    if settings.streamlabs_enabled:
        streamlabs = StreamlabsFeed(settings.streamlabs_socket_token, controller.ingest)
        streamlabs_task = asyncio.create_task(_run_streamlabs(streamlabs))
        logger.info("Streamlabs donation ingestion enabled")

    heartbeat_task = asyncio.create_task(_heartbeat(app, settings.heartbeat_interval))

    yield

    # Shutdown
    logger.info("Shutting down minaqueue control server")
    heartbeat_task.cancel()
    if bot_task:
        bot_task.cancel()
        await asyncio.gather(bot_task, return_exceptions=True)
    if streamlabs_task:
        streamlabs_task.cancel()
        await asyncio.gather(streamlabs_task, return_exceptions=True)
        await streamlabs.close()
    if channel is not None:
        await channel.disconnect()
    if db_manager is not None:
        await db_manager.disconnect()
        logger.info("Database disconnected")


def create_app(settings: ControlSettings | None = None) -> FastAPI:
    """Create and configure FastAPI application"""
    settings = settings or get_settings()

    # Setup logging first
    setup_logging(settings.log_level, "minaqueue-control")

    app = FastAPI(
        title="minaqueue control",
        description="Operator API for the alert queue, gate and overlay settings",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )
    app.state.settings = settings
    app.state.start_time = time.time()

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Register routers
    app.include_router(queue_router.router)
    app.include_router(gate_router.router)
    app.include_router(settings_router.router)

    # Root endpoint
    @app.get("/")
    async def root():
        """Root endpoint - minimal service info"""
        return {"service": "minaqueue-control", "status": "running"}

    # Liveness probe: always 200, no external dependency
    @app.get("/health")
    async def health():
        """Liveness check (no relay dependency)"""
        return {
            "status": "healthy",
            "uptime_seconds": int(time.time() - app.state.start_time),
        }

    # Detailed status endpoint
    @app.get("/status")
    async def status():
        """Queue, gate and relay connection status"""
        controller: AlertController | None = getattr(app.state, "controller", None)
        return {
            "service": "minaqueue-control",
            "version": "1.0.0",
            "uptime_seconds": int(time.time() - app.state.start_time),
            "environment": settings.environment,
            **(controller.status() if controller else {}),
        }

    # Ping endpoint
    @app.api_route("/ping", methods=["GET", "HEAD"], response_class=PlainTextResponse)
    async def ping():
        """Ping endpoint"""
        return "pong"

    logger.info("FastAPI application configured")

    return app
