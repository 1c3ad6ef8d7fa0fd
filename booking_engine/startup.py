"""
Application startup and shutdown lifecycle management.

Handles:
- Wiring repositories, OpenAI, Evolution API and the booking pipeline
- Lock and de-duplication backends (Redis when configured)
- Graceful shutdown of the gateway session and in-flight message tasks
"""
import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from . import config
from .evolution_api import EvolutionAPIClient
from .pipeline import BookingPipeline
from .repositories import SupabaseClientRegistry, SupabaseConversationStore, SupabaseDirectory
from .services.deduplication import create_deduplicator
from .services.event_bus import InMemoryEventBus
from .services.llm_service import OpenAILanguageModel
from .services.locks import create_keyed_lock
from .startup_validation import validate_environment

logger = logging.getLogger(__name__)

# How long shutdown waits for queued messages to finish
SHUTDOWN_GRACE_SECONDS = 10.0


def build_pipeline(app: FastAPI) -> BookingPipeline:
    """Production wiring over Supabase, OpenAI and Evolution API."""
    redis_client = None
    if config.REDIS_URL:
        try:
            redis_client = config.get_redis_client()
            redis_client.ping()
            logger.info("✅ Redis connected")
        except Exception as e:
            logger.warning(f"⚠️ Redis unavailable, using in-process locks and de-duplication: {e}")
            redis_client = None

    backend = config.LOCK_BACKEND if redis_client is not None else "local"

    gateway = EvolutionAPIClient()
    app.state.gateway = gateway

    return BookingPipeline(
        directory=SupabaseDirectory(),
        clients=SupabaseClientRegistry(),
        conversations=SupabaseConversationStore(),
        llm=OpenAILanguageModel(),
        gateway=gateway,
        event_bus=app.state.event_bus,
        commit_lock=create_keyed_lock(backend, redis_client),
        conversation_lock=create_keyed_lock(backend, redis_client),
        deduplicator=create_deduplicator(redis_client),
    )


async def drain_background_tasks(app: FastAPI) -> None:
    tasks = list(getattr(app.state, "background_tasks", ()))
    if not tasks:
        return
    logger.info(f"Waiting for {len(tasks)} in-flight message task(s)...")
    done, pending = await asyncio.wait(tasks, timeout=SHUTDOWN_GRACE_SECONDS)
    for task in pending:
        task.cancel()
    if pending:
        logger.warning(f"⚠️ Cancelled {len(pending)} message task(s) still running at shutdown")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle manager."""
    # === STARTUP ===
    logger.info("Starting WhatsApp Booking Engine...")

    if not hasattr(app.state, "background_tasks"):
        app.state.background_tasks = set()
    if getattr(app.state, "event_bus", None) is None:
        app.state.event_bus = InMemoryEventBus()

    if getattr(app.state, "pipeline", None) is None:
        validate_environment()
        app.state.pipeline = build_pipeline(app)
        logger.info(f"✅ Booking pipeline ready (locks: {config.LOCK_BACKEND}, timezone: {config.BOOKING_TIMEZONE})")

    yield

    # === SHUTDOWN ===
    logger.info("Shutting down services...")

    await drain_background_tasks(app)

    gateway = getattr(app.state, "gateway", None)
    if gateway is not None:
        await gateway.close()
        logger.info("✅ Evolution API session closed")

    logger.info("WhatsApp Booking Engine shutdown complete")
