"""Health check endpoint"""
import os
from datetime import datetime, timezone

import psutil
from fastapi import APIRouter, Request

from .. import __version__

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(request: Request):
    """Instant health check endpoint with memory monitoring"""
    process = psutil.Process(os.getpid())
    memory_mb = process.memory_info().rss / (1024 * 1024)
    memory_percent = process.memory_percent()

    # Warning at 70%, degraded at 85%
    if memory_percent > 85:
        status = "degraded"
    elif memory_percent > 70:
        status = "warning"
    else:
        status = "healthy"

    bus = getattr(request.app.state, "event_bus", None)

    return {
        "status": status,
        "service": "WhatsApp Booking Engine",
        "version": __version__,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "memory": {
            "used_mb": round(memory_mb, 1),
            "percent": round(memory_percent, 1),
        },
        "sse_subscribers": bus.subscriber_count if bus is not None else 0,
    }
