"""
Evolution API webhook normalizer

The gateway delivers the same message in several shapes depending on version
and configuration:

- {"event": "messages.upsert", "data": {"messages": [{...}]}}
- {"event": "messages.upsert", "data": {"key": ..., "message": ...}}
- {"key": ..., "message": ...}                      (no event)
- {"data": {"key": ..., "message": ...}}
- {"key": ..., "messageType": "audioMessage", "audio": "<base64>"}

normalize_webhook() reduces every payload to one tagged event variant.
"""

import logging
from typing import Any, Dict, Optional

from ..models import (
    ConnectionUpdate,
    IgnoredEvent,
    InboundMessage,
    MessageEvent,
    QrCodeUpdate,
    WebhookEvent,
)

logger = logging.getLogger(__name__)

CONNECTION_EVENTS = {"connection.update", "CONNECTION_UPDATE"}
QRCODE_EVENTS = {"qrcode.updated", "QRCODE_UPDATED"}
MESSAGE_EVENTS = {"messages.upsert", "MESSAGES_UPSERT"}

# Shorter strings are not a usable QR image
MIN_QR_LENGTH = 50


def _dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _qr_string(value: Any) -> Optional[str]:
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        return value.get("base64") or value.get("data") or value.get("code")
    return None


def extract_qr_code(payload: Dict[str, Any]) -> Optional[str]:
    data = _dict(payload.get("data"))
    for candidate in (data.get("base64"), data.get("qrcode"), payload.get("qrcode"), payload.get("base64")):
        qr = _qr_string(candidate)
        if qr:
            return qr if len(qr) > MIN_QR_LENGTH else None
    return None


def _locate_message(payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    event = payload.get("event")
    data = _dict(payload.get("data"))

    if event in MESSAGE_EVENTS:
        messages = data.get("messages")
        if isinstance(messages, list) and messages:
            return _dict(messages[0])
        if data.get("key") and data.get("message"):
            return data

    if payload.get("key") and payload.get("message") and not event:
        return payload
    if data.get("key") and data.get("message"):
        return data
    if payload.get("key") and payload.get("messageType") == "audioMessage" and payload.get("audio"):
        return payload
    return None


def _audio_base64(message: Dict[str, Any]) -> Optional[str]:
    inner = _dict(message.get("message"))
    data = _dict(message.get("data"))
    return (
        message.get("audio")
        or message.get("base64")
        or _dict(inner.get("audioMessage")).get("base64")
        or data.get("base64")
        or _dict(_dict(data.get("message")).get("audioMessage")).get("base64")
    )


def _text(message: Dict[str, Any]) -> Optional[str]:
    inner = _dict(message.get("message"))
    return (
        inner.get("conversation")
        or _dict(inner.get("extendedTextMessage")).get("text")
        or None
    )


def _timestamp(value: Any) -> Optional[int]:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def parse_message(message: Dict[str, Any]) -> InboundMessage:
    key = _dict(message.get("key"))
    inner = _dict(message.get("message"))
    is_audio = message.get("messageType") == "audioMessage" or "audioMessage" in inner

    return InboundMessage(
        remote_id=key.get("remoteJid") or "",
        from_me=bool(key.get("fromMe")),
        text=_text(message),
        audio_base64=_audio_base64(message) if is_audio else None,
        push_name=message.get("pushName"),
        timestamp_seconds=_timestamp(message.get("messageTimestamp")),
        external_id=key.get("id"),
        message_type="audioMessage" if is_audio else "text",
    )


def normalize_webhook(payload: Dict[str, Any]) -> WebhookEvent:
    payload = _dict(payload)
    event = payload.get("event")

    if event in CONNECTION_EVENTS:
        return ConnectionUpdate(state=_dict(payload.get("data")).get("state"))

    if event in QRCODE_EVENTS:
        return QrCodeUpdate(qr_code=extract_qr_code(payload))

    raw = _locate_message(payload)
    if raw is None:
        return IgnoredEvent(reason=f"Event: {event}")

    message = parse_message(raw)
    if message.from_me:
        return IgnoredEvent(reason="Message sent by the business")
    if not message.remote_id:
        return IgnoredEvent(reason="Message without sender")
    if message.is_audio and not message.audio_base64 and not message.text:
        return IgnoredEvent(reason="No audio data")
    if not message.has_content:
        return IgnoredEvent(reason="No text or audio content")

    return MessageEvent(message=message)
