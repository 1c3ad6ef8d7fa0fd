"""
Application Configuration
Centralized configuration for Redis, OpenAI, Evolution API and booking rules
"""
import os
from typing import Optional

from redis import Redis

# Redis Configuration (optional - local fallbacks are used when unset)
REDIS_URL = os.getenv("REDIS_URL", "")

# OpenAI defaults (companies may override model/temperature/max tokens)
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o")
OPENAI_TEMPERATURE = float(os.getenv("OPENAI_TEMPERATURE", "0.7"))
OPENAI_MAX_TOKENS = int(os.getenv("OPENAI_MAX_TOKENS", "300"))
OPENAI_EXTRACTION_MAX_TOKENS = int(os.getenv("OPENAI_EXTRACTION_MAX_TOKENS", "500"))
OPENAI_TRANSCRIPTION_MODEL = os.getenv("OPENAI_TRANSCRIPTION_MODEL", "whisper-1")
LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", "30"))

# Replies are kept short for WhatsApp regardless of tenant settings
MAX_REPLY_TOKENS = 300

# Evolution API (WhatsApp gateway)
EVOLUTION_TIMEOUT_SECONDS = float(os.getenv("EVOLUTION_TIMEOUT_SECONDS", "15"))

# Booking behaviour
BOOKING_TIMEZONE = os.getenv("BOOKING_TIMEZONE", "America/Sao_Paulo")
AVAILABILITY_DAYS = int(os.getenv("AVAILABILITY_DAYS", "7"))
HISTORY_WINDOW = int(os.getenv("HISTORY_WINDOW", "8"))
IDEMPOTENCY_WINDOW_MINUTES = int(os.getenv("IDEMPOTENCY_WINDOW_MINUTES", "5"))
WEBHOOK_DEDUP_TTL_SECONDS = int(os.getenv("WEBHOOK_DEDUP_TTL_SECONDS", "300"))

# A confirmed booking overlapping another client's appointment is still
# created (and logged) unless this is switched off
ALLOW_CONFLICTING_BOOKINGS = os.getenv("ALLOW_CONFLICTING_BOOKINGS", "true").lower() == "true"

# "local" (asyncio locks, single process) or "redis" (multi-process)
LOCK_BACKEND = os.getenv("LOCK_BACKEND", "local").lower()
LOCK_TTL_MS = int(os.getenv("BOOKING_LOCK_TTL_MS", "10000"))

# Server-sent events keep-alive
SSE_HEARTBEAT_SECONDS = float(os.getenv("SSE_HEARTBEAT_SECONDS", "30"))


def get_redis_client(url: Optional[str] = None) -> Redis:
    """
    Get configured Redis client with optimized settings

    Returns:
        Redis: Configured Redis client instance
    """
    return Redis.from_url(
        url or REDIS_URL,
        decode_responses=True,  # Automatically decode responses to strings
        socket_connect_timeout=5,
        socket_timeout=5,
        retry_on_timeout=True,
        health_check_interval=30
    )


def openai_configured() -> bool:
    """Credentials are re-read so a rotated key is picked up without restart."""
    return bool(os.getenv("OPENAI_API_KEY"))


def evolution_configured() -> bool:
    return bool(os.getenv("EVOLUTION_API_URL")) and bool(os.getenv("EVOLUTION_API_KEY"))
