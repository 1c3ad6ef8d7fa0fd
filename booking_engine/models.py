"""
Booking Engine Pydantic Models

Records are validated from Supabase rows (snake_case column names).

Models:
- ChannelInstance, Company: tenant configuration
- Conversation, Message: dialogue state
- Professional, Service, Client, Appointment: directory records
- InboundMessage and the webhook event variants: normalized gateway payloads
- BookingDetails: structured output of the appointment extractor
"""

import json
from datetime import date, datetime
from enum import Enum
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .utils.phone import jid_to_phone
from .utils.time_utils import normalize_hhmm, to_minutes

DEFAULT_WORK_DAYS = [1, 2, 3, 4, 5, 6]
DEFAULT_WORK_START = "09:00"
DEFAULT_WORK_END = "18:00"
DEFAULT_DURATION_MINUTES = 30

CANCELLED_LABELS = {"cancelado", "cancelled", "canceled"}


class InstanceStatus(str, Enum):
    CONNECTED = "connected"
    CONNECTING = "connecting"
    DISCONNECTED = "disconnected"


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class AppointmentStatus(str, Enum):
    """Persisted appointment labels. The engine only ever creates PENDING."""
    PENDING = "Pendente"
    CONFIRMED = "Confirmado"
    CANCELLED = "Cancelado"
    NO_SHOW = "Não compareceu"
    IN_PROGRESS = "Em andamento"
    DONE = "Concluído"


def is_cancelled_status(status: Optional[str]) -> bool:
    return (status or "").strip().lower() in CANCELLED_LABELS


class _Row(BaseModel):
    """Base for database rows: unknown columns are ignored."""
    model_config = ConfigDict(extra="ignore", use_enum_values=True)


class ChannelInstance(_Row):
    id: int
    company_id: int
    instance_name: str
    status: Optional[str] = None
    qr_code: Optional[str] = None


class Company(_Row):
    id: int
    fantasy_name: Optional[str] = None
    ai_agent_prompt: Optional[str] = None
    openai_model: Optional[str] = None
    openai_temperature: Optional[float] = None
    openai_max_tokens: Optional[int] = None

    @property
    def display_name(self) -> str:
        return self.fantasy_name or "nossa empresa"

    @property
    def has_agent_prompt(self) -> bool:
        return bool((self.ai_agent_prompt or "").strip())


class Conversation(_Row):
    id: int
    company_id: int
    whatsapp_instance_id: int
    phone_number: str
    contact_name: Optional[str] = None
    last_message_at: Optional[datetime] = None


class Message(_Row):
    id: Optional[int] = None
    conversation_id: int
    role: MessageRole
    content: str = ""
    message_id: Optional[str] = None
    message_type: str = "text"
    delivered: bool = True
    timestamp: Optional[datetime] = None

    @field_validator('content', mode='before')
    @classmethod
    def none_to_empty(cls, v):
        return v or ""

    @property
    def is_assistant(self) -> bool:
        return self.role == MessageRole.ASSISTANT.value

    @property
    def is_user(self) -> bool:
        return self.role == MessageRole.USER.value


class Professional(_Row):
    """Working days use 0 = Sunday ... 6 = Saturday."""
    id: int
    name: str
    active: bool = True
    work_days: List[int] = Field(default_factory=lambda: list(DEFAULT_WORK_DAYS))
    work_start_time: str = DEFAULT_WORK_START
    work_end_time: str = DEFAULT_WORK_END

    @field_validator('active', mode='before')
    @classmethod
    def null_is_active(cls, v):
        return True if v is None else v

    @field_validator('work_days', mode='before')
    @classmethod
    def parse_work_days(cls, v):
        # Column is JSON; older rows store it as a string
        if v is None or v == "":
            return list(DEFAULT_WORK_DAYS)
        if isinstance(v, str):
            try:
                v = json.loads(v)
            except json.JSONDecodeError:
                return list(DEFAULT_WORK_DAYS)
        return [int(day) for day in v if 0 <= int(day) <= 6]

    @field_validator('work_start_time', mode='before')
    @classmethod
    def parse_start(cls, v):
        return normalize_hhmm(v) or DEFAULT_WORK_START

    @field_validator('work_end_time', mode='before')
    @classmethod
    def parse_end(cls, v):
        return normalize_hhmm(v) or DEFAULT_WORK_END


class Service(_Row):
    id: int
    name: str
    duration: Optional[int] = DEFAULT_DURATION_MINUTES
    price: Optional[float] = None
    is_active: bool = True

    @field_validator('is_active', mode='before')
    @classmethod
    def null_is_active(cls, v):
        return True if v is None else v

    @property
    def duration_minutes(self) -> int:
        return self.duration or DEFAULT_DURATION_MINUTES


class Client(_Row):
    id: int
    company_id: int
    name: str
    phone: Optional[str] = None
    notes: Optional[str] = None


class Appointment(_Row):
    id: Optional[int] = None
    company_id: int
    professional_id: int
    service_id: Optional[int] = None
    client_name: Optional[str] = None
    client_phone: Optional[str] = None
    appointment_date: date
    appointment_time: str
    duration: Optional[int] = DEFAULT_DURATION_MINUTES
    status: str = AppointmentStatus.PENDING.value
    total_price: Optional[float] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator('appointment_date', mode='before')
    @classmethod
    def parse_date(cls, v):
        if isinstance(v, datetime):
            return v.date()
        if isinstance(v, str):
            return v[:10]
        return v

    @field_validator('appointment_time', mode='before')
    @classmethod
    def parse_time(cls, v):
        normalized = normalize_hhmm(v)
        if normalized is None:
            raise ValueError(f"Invalid appointment time: {v!r}")
        return normalized

    @property
    def duration_minutes(self) -> int:
        return self.duration or DEFAULT_DURATION_MINUTES

    @property
    def start_minutes(self) -> int:
        return to_minutes(self.appointment_time)

    @property
    def end_minutes(self) -> int:
        return self.start_minutes + self.duration_minutes

    @property
    def is_cancelled(self) -> bool:
        return is_cancelled_status(self.status)


# ============================================================================
# Inbound webhook payloads (normalized)
# ============================================================================

class InboundMessage(BaseModel):
    """One message from the gateway, whatever shape it arrived in."""
    remote_id: str
    from_me: bool = False
    text: Optional[str] = None
    audio_base64: Optional[str] = None
    push_name: Optional[str] = None
    timestamp_seconds: Optional[int] = None
    external_id: Optional[str] = None
    message_type: str = "text"

    @property
    def phone_number(self) -> str:
        return jid_to_phone(self.remote_id)

    @property
    def is_audio(self) -> bool:
        return self.message_type == "audioMessage"

    @property
    def has_content(self) -> bool:
        return bool((self.text or "").strip()) or bool(self.audio_base64)


class ConnectionUpdate(BaseModel):
    kind: Literal["connection"] = "connection"
    state: Optional[str] = None

    @property
    def instance_status(self) -> InstanceStatus:
        """Unknown gateway states count as disconnected"""
        return {
            "open": InstanceStatus.CONNECTED,
            "connecting": InstanceStatus.CONNECTING,
            "close": InstanceStatus.DISCONNECTED,
        }.get((self.state or "").lower(), InstanceStatus.DISCONNECTED)


class QrCodeUpdate(BaseModel):
    kind: Literal["qrcode"] = "qrcode"
    qr_code: Optional[str] = None


class MessageEvent(BaseModel):
    kind: Literal["message"] = "message"
    message: InboundMessage


class IgnoredEvent(BaseModel):
    kind: Literal["ignored"] = "ignored"
    reason: str


WebhookEvent = Union[ConnectionUpdate, QrCodeUpdate, MessageEvent, IgnoredEvent]


# ============================================================================
# Extraction output
# ============================================================================

class BookingDetails(BaseModel):
    """Fields required to commit an appointment, plus the strategy that found them."""
    client_name: str
    client_phone: str
    professional_id: int
    service_id: int
    appointment_date: date
    appointment_time: str
    source: str = "llm"

    @field_validator('client_name', 'client_phone')
    @classmethod
    def not_blank(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator('appointment_time', mode='before')
    @classmethod
    def valid_time(cls, v):
        normalized = normalize_hhmm(v)
        if normalized is None:
            raise ValueError(f"Invalid time: {v!r}")
        return normalized
