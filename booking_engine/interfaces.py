"""
Collaborator interfaces consumed by the booking engine.

Production adapters live in repositories.py (Supabase), services/llm_service.py
(OpenAI), evolution_api.py (Evolution API) and services/event_bus.py.
"""

import asyncio
from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from .models import (
    Appointment,
    ChannelInstance,
    Client,
    Company,
    Conversation,
    Message,
    Professional,
    Service,
)


class DirectoryService(ABC):
    """Tenant directory: instances, companies, professionals, services, appointments"""

    @abstractmethod
    async def get_instance_by_name(self, instance_name: str) -> Optional[ChannelInstance]:
        pass

    @abstractmethod
    async def update_instance(
        self,
        instance_id: int,
        status: Optional[str] = None,
        qr_code: Optional[str] = None
    ) -> None:
        pass

    @abstractmethod
    async def get_company(self, company_id: int) -> Optional[Company]:
        pass

    @abstractmethod
    async def list_active_professionals(self, company_id: int) -> List[Professional]:
        pass

    @abstractmethod
    async def list_active_services(self, company_id: int) -> List[Service]:
        pass

    @abstractmethod
    async def list_appointments(
        self,
        company_id: int,
        professional_id: Optional[int] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None
    ) -> List[Appointment]:
        """Appointments in [start_date, end_date], cancelled ones included"""
        pass

    @abstractmethod
    async def find_conversation_appointment(
        self,
        company_id: int,
        conversation_id: int,
        created_since: datetime
    ) -> Optional[Appointment]:
        """Latest non-cancelled appointment stamped with this conversation id"""
        pass

    @abstractmethod
    async def create_appointment(self, data: Dict[str, Any]) -> Appointment:
        pass

    @abstractmethod
    async def update_appointment(self, appointment_id: int, changes: Dict[str, Any]) -> Appointment:
        pass


class ClientRegistry(ABC):
    """Client records keyed by canonical phone digits"""

    @abstractmethod
    async def find_by_phone(self, company_id: int, phone: str) -> Optional[Client]:
        pass

    @abstractmethod
    async def create(self, company_id: int, name: str, phone: str) -> Client:
        pass

    async def find_or_create(self, company_id: int, phone: str, name: str) -> Client:
        client = await self.find_by_phone(company_id, phone)
        if client:
            return client
        return await self.create(company_id, name, phone)


class ConversationStore(ABC):
    """Conversations and their append-only message history"""

    @abstractmethod
    async def find_conversation(self, instance_id: int, phone_number: str) -> Optional[Conversation]:
        pass

    @abstractmethod
    async def list_conversations_by_phone(self, company_id: int, phone_number: str) -> List[Conversation]:
        """All company conversations for a phone, most recent activity first"""
        pass

    @abstractmethod
    async def create_conversation(
        self,
        company_id: int,
        instance_id: int,
        phone_number: str,
        contact_name: Optional[str]
    ) -> Conversation:
        pass

    @abstractmethod
    async def update_conversation(
        self,
        conversation_id: int,
        instance_id: int,
        contact_name: Optional[str],
        last_message_at: datetime
    ) -> Conversation:
        pass

    @abstractmethod
    async def add_message(
        self,
        conversation_id: int,
        role: str,
        content: str,
        message_id: Optional[str] = None,
        message_type: str = "text",
        delivered: bool = True
    ) -> Message:
        pass

    @abstractmethod
    async def recent_messages(self, conversation_id: int, limit: int) -> List[Message]:
        """The last `limit` messages in chronological order"""
        pass

    @abstractmethod
    async def last_assistant_message(self, conversation_id: int) -> Optional[Message]:
        pass


class LanguageModelService(ABC):
    """Chat completion and speech transcription"""

    @abstractmethod
    async def chat(
        self,
        messages: List[Dict[str, str]],
        model: str,
        temperature: float,
        max_tokens: int
    ) -> str:
        """Raises LanguageModelUnavailable on any provider failure"""
        pass

    @abstractmethod
    async def transcribe(self, audio: bytes, filename: str) -> Optional[str]:
        """Returns None when nothing intelligible was recognised"""
        pass


class MessagingGateway(ABC):
    """Outbound chat messages"""

    @abstractmethod
    async def send_text(self, instance_name: str, number: str, text: str) -> Dict[str, Any]:
        """Raises MessagingGatewayError when the message is not accepted"""
        pass


class EventBus(ABC):
    """Fan-out of booking notifications to live viewers"""

    @abstractmethod
    def subscribe(self) -> "asyncio.Queue[Dict[str, Any]]":
        pass

    @abstractmethod
    def unsubscribe(self, queue: "asyncio.Queue[Dict[str, Any]]") -> None:
        pass

    @abstractmethod
    async def publish(self, event: Dict[str, Any]) -> int:
        """Returns the number of subscribers the event was queued for"""
        pass
