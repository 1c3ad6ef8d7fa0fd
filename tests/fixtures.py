"""
Test fixtures for the booking engine: in-memory collaborators and record builders
"""

import re
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from booking_engine.exceptions import MessagingGatewayError
from booking_engine.interfaces import (
    ClientRegistry,
    ConversationStore,
    DirectoryService,
    LanguageModelService,
    MessagingGateway,
)
from booking_engine.models import (
    Appointment,
    ChannelInstance,
    Client,
    Company,
    Conversation,
    InboundMessage,
    Message,
    Professional,
    Service,
)
from booking_engine.utils.phone import normalize_phone

# Monday; the following Saturday is 2026-10-24
TODAY = date(2026, 10, 19)
SATURDAY = date(2026, 10, 24)

TEST_PHONE = "5511999999999"
TEST_JID = f"{TEST_PHONE}@s.whatsapp.net"
INSTANCE_NAME = "salao-centro"

SUMMARY_TEXT = (
    "Perfeito! Vou confirmar seu agendamento:\n\n"
    "👤 Nome: Ana\n"
    "🏢 Profissional: Carlos\n"
    "💇 Serviço: Corte\n"
    "📅 Data: sábado, 24/10/2026\n"
    "🕐 Horário: 09:00\n"
    f"📱 Telefone: {TEST_PHONE}\n\n"
    "Está tudo correto? Responda SIM para confirmar ou me informe se algo precisa ser alterado."
)

COMPLETION_TEXT = "Agendamento realizado com sucesso! Nos vemos sábado às 09:00."

EXTRACTION_JSON = (
    '{"clientName": "Ana", "clientPhone": "5511999999999", "professionalId": 1, '
    '"serviceId": 1, "appointmentDate": "2026-10-24", "appointmentTime": "09:00"}'
)


def make_instance(**kwargs) -> ChannelInstance:
    return ChannelInstance(
        id=kwargs.get("id", 1),
        company_id=kwargs.get("company_id", 1),
        instance_name=kwargs.get("instance_name", INSTANCE_NAME),
        status=kwargs.get("status", "connected"),
    )


def make_company(**kwargs) -> Company:
    return Company(
        id=kwargs.get("id", 1),
        fantasy_name=kwargs.get("fantasy_name", "Salão Bella"),
        ai_agent_prompt=kwargs.get("ai_agent_prompt", "Você é a recepcionista virtual do Salão Bella."),
        openai_model=kwargs.get("openai_model"),
        openai_temperature=kwargs.get("openai_temperature"),
        openai_max_tokens=kwargs.get("openai_max_tokens"),
    )


def make_professional(**kwargs) -> Professional:
    return Professional(
        id=kwargs.get("id", 1),
        name=kwargs.get("name", "Carlos"),
        active=kwargs.get("active", True),
        work_days=kwargs.get("work_days", [1, 2, 3, 4, 5, 6]),
        work_start_time=kwargs.get("work_start_time", "09:00"),
        work_end_time=kwargs.get("work_end_time", "18:00"),
    )


def make_service(**kwargs) -> Service:
    return Service(
        id=kwargs.get("id", 1),
        name=kwargs.get("name", "Corte"),
        duration=kwargs.get("duration", 30),
        price=kwargs.get("price", 50.0),
        is_active=kwargs.get("is_active", True),
    )


def make_appointment(**kwargs) -> Appointment:
    return Appointment(
        id=kwargs.get("id", 900),
        company_id=kwargs.get("company_id", 1),
        professional_id=kwargs.get("professional_id", 1),
        service_id=kwargs.get("service_id", 1),
        client_name=kwargs.get("client_name", "Beatriz"),
        client_phone=kwargs.get("client_phone", "5511888888888"),
        appointment_date=kwargs.get("appointment_date", SATURDAY),
        appointment_time=kwargs.get("appointment_time", "09:00"),
        duration=kwargs.get("duration", 30),
        status=kwargs.get("status", "Pendente"),
        notes=kwargs.get("notes"),
        created_at=kwargs.get("created_at"),
    )


def make_message(role: str, content: str, conversation_id: int = 1) -> Message:
    return Message(conversation_id=conversation_id, role=role, content=content)


def dialogue(*turns: str, conversation_id: int = 1) -> List[Message]:
    """Alternating user/assistant messages, starting with the user"""
    roles = ("user", "assistant")
    return [make_message(roles[i % 2], text, conversation_id) for i, text in enumerate(turns)]


def inbound(text: Optional[str] = None, external_id: Optional[str] = None, **kwargs) -> InboundMessage:
    return InboundMessage(
        remote_id=kwargs.get("remote_id", TEST_JID),
        text=text,
        audio_base64=kwargs.get("audio_base64"),
        push_name=kwargs.get("push_name", "Ana Paula"),
        external_id=external_id,
        message_type=kwargs.get("message_type", "audioMessage" if kwargs.get("audio_base64") else "text"),
    )


# ============================================================================
# In-memory collaborators
# ============================================================================

class FakeDirectory(DirectoryService):

    def __init__(
        self,
        instances: Optional[List[ChannelInstance]] = None,
        companies: Optional[List[Company]] = None,
        professionals: Optional[List[Professional]] = None,
        services: Optional[List[Service]] = None,
        appointments: Optional[List[Appointment]] = None
    ):
        self.instances = {i.instance_name: i for i in instances or []}
        self.companies = {c.id: c for c in companies or []}
        self.professionals = list(professionals or [])
        self.services = list(services or [])
        self.appointments = list(appointments or [])
        self.instance_updates: List[Dict[str, Any]] = []
        self._next_id = 100

    async def get_instance_by_name(self, instance_name):
        return self.instances.get(instance_name)

    async def update_instance(self, instance_id, status=None, qr_code=None):
        self.instance_updates.append({"id": instance_id, "status": status, "qr_code": qr_code})

    async def get_company(self, company_id):
        return self.companies.get(company_id)

    async def list_active_professionals(self, company_id):
        return [p for p in self.professionals if p.active]

    async def list_active_services(self, company_id):
        return [s for s in self.services if s.is_active]

    async def list_appointments(self, company_id, professional_id=None, start_date=None, end_date=None):
        return [
            a for a in self.appointments
            if a.company_id == company_id
            and (professional_id is None or a.professional_id == professional_id)
            and (start_date is None or a.appointment_date >= start_date)
            and (end_date is None or a.appointment_date <= end_date)
        ]

    async def find_conversation_appointment(self, company_id, conversation_id, created_since):
        tag = re.compile(rf"Conversa ID: {conversation_id}(?!\d)")
        matches = [
            a for a in self.appointments
            if a.company_id == company_id
            and not a.is_cancelled
            and tag.search(a.notes or "")
            and a.created_at is not None
            and a.created_at >= created_since
        ]
        return matches[-1] if matches else None

    async def create_appointment(self, data):
        self._next_id += 1
        appointment = Appointment.model_validate({
            "id": self._next_id,
            "created_at": datetime.now(timezone.utc),
            **data,
        })
        self.appointments.append(appointment)
        return appointment

    async def update_appointment(self, appointment_id, changes):
        for index, appointment in enumerate(self.appointments):
            if appointment.id == appointment_id:
                updated = Appointment.model_validate({**appointment.model_dump(), **changes})
                self.appointments[index] = updated
                return updated
        raise KeyError(appointment_id)


class FakeClientRegistry(ClientRegistry):

    def __init__(self, clients: Optional[List[Client]] = None):
        self.clients = list(clients or [])

    async def find_by_phone(self, company_id, phone):
        digits = normalize_phone(phone)
        for client in self.clients:
            if client.company_id == company_id and normalize_phone(client.phone) == digits:
                return client
        return None

    async def create(self, company_id, name, phone):
        client = Client(id=len(self.clients) + 1, company_id=company_id, name=name, phone=normalize_phone(phone))
        self.clients.append(client)
        return client


class FakeConversationStore(ConversationStore):

    def __init__(self, conversations: Optional[List[Conversation]] = None):
        self.conversations = {c.id: c for c in conversations or []}
        self.messages: List[Message] = []
        self._next_id = max(self.conversations, default=0)

    async def find_conversation(self, instance_id, phone_number):
        for conversation in self.conversations.values():
            if conversation.whatsapp_instance_id == instance_id and conversation.phone_number == phone_number:
                return conversation
        return None

    async def list_conversations_by_phone(self, company_id, phone_number):
        matches = [
            c for c in self.conversations.values()
            if c.company_id == company_id and c.phone_number == phone_number
        ]
        oldest = datetime.min.replace(tzinfo=timezone.utc)
        return sorted(matches, key=lambda c: c.last_message_at or oldest, reverse=True)

    async def create_conversation(self, company_id, instance_id, phone_number, contact_name):
        self._next_id += 1
        conversation = Conversation(
            id=self._next_id,
            company_id=company_id,
            whatsapp_instance_id=instance_id,
            phone_number=phone_number,
            contact_name=contact_name,
            last_message_at=datetime.now(timezone.utc),
        )
        self.conversations[conversation.id] = conversation
        return conversation

    async def update_conversation(self, conversation_id, instance_id, contact_name, last_message_at):
        conversation = self.conversations[conversation_id].model_copy(update={
            "whatsapp_instance_id": instance_id,
            "contact_name": contact_name,
            "last_message_at": last_message_at,
        })
        self.conversations[conversation_id] = conversation
        return conversation

    async def add_message(self, conversation_id, role, content, message_id=None, message_type="text", delivered=True):
        message = Message(
            id=len(self.messages) + 1,
            conversation_id=conversation_id,
            role=role,
            content=content,
            message_id=message_id,
            message_type=message_type,
            delivered=delivered,
            timestamp=datetime.now(timezone.utc),
        )
        self.messages.append(message)
        return message

    def history(self, conversation_id) -> List[Message]:
        return [m for m in self.messages if m.conversation_id == conversation_id]

    async def recent_messages(self, conversation_id, limit):
        return self.history(conversation_id)[-limit:]

    async def last_assistant_message(self, conversation_id):
        assistant = [m for m in self.history(conversation_id) if m.is_assistant]
        return assistant[-1] if assistant else None


class ScriptedLanguageModel(LanguageModelService):
    """
    Dialogue replies are served in order; the extraction prompt gets
    `extraction` (a string, or an exception to raise).
    """

    def __init__(self, replies=None, extraction=None, transcription=None, dialogue_error=None):
        self.replies = list(replies or [])
        self.extraction = extraction
        self.transcription = transcription
        self.dialogue_error = dialogue_error
        self.chat_calls: List[Dict[str, Any]] = []
        self.extraction_calls: List[Dict[str, Any]] = []
        self.transcribe_calls: List[str] = []

    @staticmethod
    def _is_extraction(messages) -> bool:
        return len(messages) == 1 and messages[0]["content"].startswith("Analise esta conversa")

    async def chat(self, messages, model, temperature, max_tokens):
        call = {"messages": messages, "model": model, "temperature": temperature, "max_tokens": max_tokens}
        if self._is_extraction(messages):
            self.extraction_calls.append(call)
            if isinstance(self.extraction, Exception):
                raise self.extraction
            return self.extraction or "DADOS_INCOMPLETOS"

        self.chat_calls.append(call)
        if self.dialogue_error is not None:
            raise self.dialogue_error
        return self.replies.pop(0) if self.replies else "Como posso ajudar?"

    async def transcribe(self, audio, filename):
        self.transcribe_calls.append(filename)
        if isinstance(self.transcription, Exception):
            raise self.transcription
        return self.transcription


class FakeGateway(MessagingGateway):

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: List[Dict[str, str]] = []

    async def send_text(self, instance_name, number, text):
        if self.fail:
            raise MessagingGatewayError("Evolution API error: 500", status=500)
        self.sent.append({"instance": instance_name, "number": number, "text": text})
        return {"key": {"id": f"out-{len(self.sent)}"}}
