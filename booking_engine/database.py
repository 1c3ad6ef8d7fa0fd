"""
Supabase client module.

This is the only module that calls create_client. Everything else asks for a
client through get_supabase_client().

The supabase-py client is synchronous: repositories run its calls through
asyncio.to_thread so the event loop is never blocked.
"""
import logging
import os
from typing import Dict, Optional

import httpx
from supabase import Client, create_client
from supabase.client import ClientOptions

logger = logging.getLogger(__name__)

DEFAULT_SCHEMA = os.getenv("SUPABASE_SCHEMA", "public")

# Timeouts (configured once, used throughout)
DEFAULT_DB_TIMEOUT = 30.0  # seconds
DEFAULT_CONNECT_TIMEOUT = 10.0  # seconds

# Cached clients per schema
_supabase_clients: Dict[str, Client] = {}


def _get_credentials() -> tuple:
    """Get Supabase credentials from environment."""
    supabase_url = os.getenv("SUPABASE_URL")
    supabase_key = os.getenv("SUPABASE_SERVICE_ROLE_KEY") or os.getenv("SUPABASE_ANON_KEY")

    if not supabase_url or not supabase_key:
        raise ValueError("SUPABASE_URL and SUPABASE_ANON_KEY/SERVICE_ROLE_KEY must be set")

    return supabase_url, supabase_key


def _build_http_client() -> httpx.Client:
    """HTTP/1.1 client with tight timeouts."""
    return httpx.Client(
        http2=False,
        timeout=httpx.Timeout(
            connect=DEFAULT_CONNECT_TIMEOUT,
            read=DEFAULT_DB_TIMEOUT,
            write=DEFAULT_DB_TIMEOUT,
            pool=DEFAULT_DB_TIMEOUT
        ),
        limits=httpx.Limits(
            max_connections=100,
            max_keepalive_connections=20,
            keepalive_expiry=30.0
        ),
        follow_redirects=True
    )


def get_supabase_client(schema: Optional[str] = None) -> Client:
    """
    Create or get the cached Supabase client for a schema.

    Args:
        schema: Database schema, SUPABASE_SCHEMA (default 'public') when omitted

    Returns:
        Configured sync Supabase client
    """
    schema = schema or DEFAULT_SCHEMA
    if schema in _supabase_clients:
        return _supabase_clients[schema]

    supabase_url, supabase_key = _get_credentials()

    options = ClientOptions(
        schema=schema,
        auto_refresh_token=False,  # Service-role usage
        persist_session=False
    )

    client = create_client(supabase_url, supabase_key, options=options)

    try:
        http_client = _build_http_client()
        if hasattr(client, '_postgrest') and hasattr(client._postgrest, 'session'):
            client._postgrest.session = http_client
    except Exception as e:
        logger.warning(f"Could not apply HTTP optimization: {e}")

    _supabase_clients[schema] = client
    logger.info(f"Created Supabase client for schema: {schema}")

    return client


def reset_clients() -> None:
    """Drop cached clients (credential rotation, tests)."""
    _supabase_clients.clear()
