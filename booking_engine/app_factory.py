"""
FastAPI application factory.

Creates and configures the FastAPI application with:
- CORS middleware
- Evolution API webhook, SSE and health routers
"""
import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .api import events, evolution_webhook, health
from .interfaces import EventBus
from .pipeline import BookingPipeline
from .startup import lifespan

logger = logging.getLogger(__name__)


def configure_cors(app: FastAPI):
    """Configure CORS middleware for the dashboard frontend."""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["*"],
    )


def create_app(pipeline: Optional[BookingPipeline] = None, event_bus: Optional[EventBus] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        pipeline: Pre-built pipeline (tests); built from the environment at startup when omitted
        event_bus: Bus shared by the commit engine and the SSE endpoint

    Returns:
        Configured FastAPI application instance
    """
    app = FastAPI(
        title="WhatsApp Booking Engine",
        description="Conversational appointment booking over WhatsApp (Evolution API).",
        version=__version__,
        lifespan=lifespan,
        redirect_slashes=False,
    )

    app.state.pipeline = pipeline
    app.state.event_bus = event_bus
    app.state.background_tasks = set()

    configure_cors(app)

    app.include_router(health.router)
    app.include_router(evolution_webhook.router)
    app.include_router(events.router)

    return app
