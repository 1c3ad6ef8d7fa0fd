"""
Evolution API Client for WhatsApp Integration
Sends the assistant's replies through the Evolution API gateway
"""

import asyncio
import json
import logging
import os
from typing import Any, Dict, Optional

import aiohttp

from . import config
from .exceptions import MessagingGatewayError
from .interfaces import MessagingGateway
from .utils.phone import mask_phone, normalize_phone

logger = logging.getLogger(__name__)


def normalize_base_url(url: str) -> str:
    """Gateways are often configured with the manager UI URL or a trailing slash"""
    url = (url or "").strip().rstrip("/")
    if url.endswith("/manager"):
        url = url[: -len("/manager")]
    return url


class EvolutionAPIClient(MessagingGateway):
    """Client for Evolution API WhatsApp integration"""

    def __init__(self, base_url: str = None, api_key: str = None, timeout: float = None):
        self.base_url = normalize_base_url(base_url or os.getenv("EVOLUTION_API_URL", ""))
        self.api_key = api_key or os.getenv("EVOLUTION_API_KEY", "")
        self.timeout = aiohttp.ClientTimeout(total=timeout or config.EVOLUTION_TIMEOUT_SECONDS)
        self.session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self):
        """Async context manager entry"""
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit"""
        await self.close()

    async def initialize(self):
        """Initialize the HTTP session"""
        if not self.session:
            self.session = aiohttp.ClientSession(
                headers={"apikey": self.api_key, "Content-Type": "application/json"},
                timeout=self.timeout,
            )

    async def close(self):
        """Close the HTTP session"""
        if self.session:
            await self.session.close()
            self.session = None

    async def _make_request(self, method: str, endpoint: str, **kwargs) -> Dict[str, Any]:
        """Make an HTTP request to Evolution API"""
        if not self.base_url:
            raise MessagingGatewayError("Evolution API URL is not configured")
        if not self.session:
            await self.initialize()

        url = f"{self.base_url}{endpoint}"

        try:
            async with self.session.request(method, url, **kwargs) as response:
                response_text = await response.text()

                if response.status >= 400:
                    logger.error(f"Evolution API error: {response.status} - {response_text[:200]}")
                    raise MessagingGatewayError(
                        f"Evolution API error: {response.status}", status=response.status
                    )

                try:
                    return json.loads(response_text) if response_text else {}
                except json.JSONDecodeError:
                    return {"response": response_text}

        except aiohttp.ClientError as e:
            logger.error(f"Network error calling Evolution API: {e}")
            raise MessagingGatewayError(f"Network error calling Evolution API: {e}")
        except asyncio.TimeoutError:
            logger.error(f"Timeout calling Evolution API {endpoint}")
            raise MessagingGatewayError("Evolution API request timed out")

    async def send_text(self, instance_name: str, number: str, text: str) -> Dict[str, Any]:
        """Send a text message; raises MessagingGatewayError when it is not accepted"""
        payload = {"number": normalize_phone(number), "text": text}
        result = await self._make_request(
            "POST",
            f"/message/sendText/{instance_name}",
            json=payload,
        )
        logger.info(f"✅ Message sent via {instance_name} to {mask_phone(number)}")
        return result
