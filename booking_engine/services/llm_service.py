"""
OpenAI-backed Language Model Service

Chat completions for the dialogue and the structured extraction, and Whisper
transcription for WhatsApp voice notes.
"""

import base64
import binascii
import logging
import os
import time
from typing import Dict, List, Optional

import openai
from openai import AsyncOpenAI

from .. import config
from ..exceptions import LanguageModelUnavailable, TranscriptionError
from ..interfaces import LanguageModelService

logger = logging.getLogger(__name__)


def sniff_audio_extension(audio: bytes) -> str:
    """Container type from the file header; WhatsApp voice notes are OGG/Opus"""
    if audio[:4] == b"OggS":
        return "ogg"
    if audio[:4] == b"RIFF":
        return "wav"
    if audio[4:8] == b"ftyp":
        return "m4a"
    if audio[:3] == b"ID3" or (len(audio) > 1 and audio[0] == 0xFF and (audio[1] & 0xE0) == 0xE0):
        return "mp3"
    return "ogg"


def decode_audio(audio_base64: str) -> bytes:
    """Decode a base64 payload, tolerating a data: URI prefix"""
    if "," in audio_base64 and audio_base64.strip().startswith("data:"):
        audio_base64 = audio_base64.split(",", 1)[1]
    try:
        return base64.b64decode(audio_base64, validate=False)
    except (binascii.Error, ValueError) as e:
        raise TranscriptionError(f"Invalid base64 audio: {e}")


def is_quota_error(error: Exception) -> bool:
    if isinstance(error, openai.RateLimitError):
        return True
    status = getattr(error, "status_code", None)
    code = getattr(error, "code", None)
    return status == 429 or code == "insufficient_quota"


class OpenAILanguageModel(LanguageModelService):
    """Adapter for OpenAI chat completions and transcription"""

    def __init__(self, api_key: Optional[str] = None, timeout: Optional[float] = None):
        self.api_key = api_key or os.getenv("OPENAI_API_KEY")
        self.timeout = timeout or config.LLM_TIMEOUT_SECONDS
        self._client: Optional[AsyncOpenAI] = None

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self.api_key:
                raise LanguageModelUnavailable("OpenAI API key not configured")
            self._client = AsyncOpenAI(api_key=self.api_key, timeout=self.timeout, max_retries=1)
        return self._client

    async def chat(
        self,
        messages: List[Dict[str, str]],
        model: str,
        temperature: float,
        max_tokens: int
    ) -> str:
        start_time = time.time()
        try:
            response = await self.client.chat.completions.create(
                model=model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except openai.APITimeoutError as e:
            logger.error(f"OpenAI request timed out after {self.timeout}s")
            raise LanguageModelUnavailable(f"OpenAI timeout: {e}")
        except openai.OpenAIError as e:
            quota = is_quota_error(e)
            logger.error(f"OpenAI generation error: {e}")
            raise LanguageModelUnavailable(str(e), quota_exceeded=quota)

        latency_ms = int((time.time() - start_time) * 1000)
        logger.info(f"🤖 OpenAI {model} answered in {latency_ms}ms")

        if not response.choices:
            return ""
        return response.choices[0].message.content or ""

    async def transcribe(self, audio: bytes, filename: str) -> Optional[str]:
        try:
            result = await self.client.audio.transcriptions.create(
                model=config.OPENAI_TRANSCRIPTION_MODEL,
                file=(filename, audio),
                language="pt",
            )
        except LanguageModelUnavailable as e:
            raise TranscriptionError(e.message)
        except openai.OpenAIError as e:
            logger.error(f"❌ Transcription failed: {e}")
            raise TranscriptionError(str(e))

        text = (getattr(result, "text", None) or "").strip()
        return text or None
