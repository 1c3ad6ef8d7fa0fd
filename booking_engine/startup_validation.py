"""
Startup validation for environment variables.

Supabase credentials are required to serve anything. OpenAI and Evolution API
credentials are only reported: message webhooks answer 400 while they are
missing, every other endpoint keeps working.
"""
import logging
import sys
from typing import List

from pydantic import field_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class EnvironmentSettings(BaseSettings):
    """Validated environment configuration."""

    SUPABASE_URL: str
    SUPABASE_SERVICE_ROLE_KEY: str = ""
    SUPABASE_ANON_KEY: str = ""

    OPENAI_API_KEY: str = ""
    EVOLUTION_API_URL: str = ""
    EVOLUTION_API_KEY: str = ""

    REDIS_URL: str = ""
    LOCK_BACKEND: str = "local"

    @field_validator('SUPABASE_URL')
    @classmethod
    def validate_supabase_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("SUPABASE_URL must be an http(s) URL")
        return v

    @field_validator('LOCK_BACKEND')
    @classmethod
    def validate_lock_backend(cls, v: str) -> str:
        v = v.lower()
        if v not in ("local", "redis"):
            raise ValueError("LOCK_BACKEND must be 'local' or 'redis'")
        return v

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    def missing_optional(self) -> List[str]:
        """Names of unset credentials that disable message processing."""
        missing = []
        if not self.OPENAI_API_KEY:
            missing.append("OPENAI_API_KEY")
        if not self.EVOLUTION_API_URL:
            missing.append("EVOLUTION_API_URL")
        if not self.EVOLUTION_API_KEY:
            missing.append("EVOLUTION_API_KEY")
        if self.LOCK_BACKEND == "redis" and not self.REDIS_URL:
            missing.append("REDIS_URL")
        return missing


def validate_environment() -> bool:
    """
    Validate environment configuration at startup.
    Returns True if valid, logs errors and returns False otherwise.

    Note: Never log actual secret values, only variable names.
    """
    try:
        settings = EnvironmentSettings()
    except Exception as e:
        logger.error(f"Startup validation failed: {e}")
        return False

    if not (settings.SUPABASE_SERVICE_ROLE_KEY or settings.SUPABASE_ANON_KEY):
        logger.error("Startup validation failed: SUPABASE_SERVICE_ROLE_KEY or SUPABASE_ANON_KEY must be set")
        return False

    for name in settings.missing_optional():
        logger.warning(f"⚠️ {name} is not set - message webhooks will be rejected")

    logger.info("Environment validation passed")
    return True


def validate_or_exit():
    """Validate environment or exit with error code."""
    if not validate_environment():
        logger.critical("Application cannot start with invalid configuration")
        sys.exit(1)
