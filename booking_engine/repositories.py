"""
Supabase-backed persistence adapters.

SupabaseDirectory, SupabaseClientRegistry and SupabaseConversationStore
implement the collaborator interfaces over the whatsapp_instances, companies,
professionals, services, appointments, clients, conversations and messages
tables. Every blocking supabase call runs in a worker thread.
"""

import asyncio
import logging
import re
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from .database import get_supabase_client
from .interfaces import ClientRegistry, ConversationStore, DirectoryService
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
from .utils.phone import mask_phone, normalize_phone

logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class SupabaseRepository:
    """Shared plumbing: lazy client and thread offloading."""

    def __init__(self, supabase_client=None):
        self._supabase = supabase_client

    @property
    def supabase(self):
        if self._supabase is None:
            self._supabase = get_supabase_client()
        return self._supabase

    async def _run(self, query: Callable[[], Any]) -> List[Dict[str, Any]]:
        """Execute a query builder callable in a thread and return its rows."""

        def _execute():
            response = query().execute()
            return getattr(response, "data", None) or []

        return await asyncio.to_thread(_execute)

    async def _first(self, query: Callable[[], Any]) -> Optional[Dict[str, Any]]:
        rows = await self._run(query)
        return rows[0] if rows else None


class SupabaseDirectory(SupabaseRepository, DirectoryService):

    async def get_instance_by_name(self, instance_name: str) -> Optional[ChannelInstance]:
        row = await self._first(
            lambda: self.supabase.table("whatsapp_instances")
            .select("*")
            .eq("instance_name", instance_name)
            .limit(1)
        )
        return ChannelInstance.model_validate(row) if row else None

    async def update_instance(
        self,
        instance_id: int,
        status: Optional[str] = None,
        qr_code: Optional[str] = None
    ) -> None:
        changes: Dict[str, Any] = {"updated_at": _now_iso()}
        if status is not None:
            changes["status"] = status
        if qr_code is not None:
            changes["qr_code"] = qr_code
        await self._run(
            lambda: self.supabase.table("whatsapp_instances").update(changes).eq("id", instance_id)
        )

    async def get_company(self, company_id: int) -> Optional[Company]:
        row = await self._first(
            lambda: self.supabase.table("companies").select("*").eq("id", company_id).limit(1)
        )
        return Company.model_validate(row) if row else None

    async def list_active_professionals(self, company_id: int) -> List[Professional]:
        rows = await self._run(
            lambda: self.supabase.table("professionals")
            .select("*")
            .eq("company_id", company_id)
            .eq("active", True)
            .order("name")
        )
        return [Professional.model_validate(row) for row in rows]

    async def list_active_services(self, company_id: int) -> List[Service]:
        rows = await self._run(
            lambda: self.supabase.table("services")
            .select("*")
            .eq("company_id", company_id)
            .order("name")
        )
        # is_active NULL counts as active
        services = [Service.model_validate(row) for row in rows]
        return [service for service in services if service.is_active]

    async def list_appointments(
        self,
        company_id: int,
        professional_id: Optional[int] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None
    ) -> List[Appointment]:

        def query():
            builder = self.supabase.table("appointments").select("*").eq("company_id", company_id)
            if professional_id is not None:
                builder = builder.eq("professional_id", professional_id)
            if start_date is not None:
                builder = builder.gte("appointment_date", start_date.isoformat())
            if end_date is not None:
                builder = builder.lte("appointment_date", end_date.isoformat())
            return builder.order("appointment_date").order("appointment_time")

        rows = await self._run(query)
        return [Appointment.model_validate(row) for row in rows]

    async def find_conversation_appointment(
        self,
        company_id: int,
        conversation_id: int,
        created_since: datetime
    ) -> Optional[Appointment]:
        tag = f"Conversa ID: {conversation_id}"
        rows = await self._run(
            lambda: self.supabase.table("appointments")
            .select("*")
            .eq("company_id", company_id)
            .like("notes", f"%{tag}%")
            .gte("created_at", created_since.isoformat())
            .order("created_at", desc=True)
        )
        # LIKE also matches "Conversa ID: 12" for conversation 1
        exact = re.compile(rf"{re.escape(tag)}(?!\d)")
        for row in rows:
            appointment = Appointment.model_validate(row)
            if not appointment.is_cancelled and exact.search(appointment.notes or ""):
                return appointment
        return None

    async def create_appointment(self, data: Dict[str, Any]) -> Appointment:
        now = _now_iso()
        payload = {"created_at": now, "updated_at": now, **data}
        rows = await self._run(lambda: self.supabase.table("appointments").insert(payload))
        if not rows:
            raise RuntimeError("Appointment insert returned no row")
        return Appointment.model_validate(rows[0])

    async def update_appointment(self, appointment_id: int, changes: Dict[str, Any]) -> Appointment:
        payload = {"updated_at": _now_iso(), **changes}
        rows = await self._run(
            lambda: self.supabase.table("appointments").update(payload).eq("id", appointment_id)
        )
        if not rows:
            raise RuntimeError(f"Appointment {appointment_id} not found for update")
        return Appointment.model_validate(rows[0])


class SupabaseClientRegistry(SupabaseRepository, ClientRegistry):

    async def find_by_phone(self, company_id: int, phone: str) -> Optional[Client]:
        digits = normalize_phone(phone)
        if not digits:
            return None
        rows = await self._run(
            lambda: self.supabase.table("clients").select("*").eq("company_id", company_id)
        )
        # Stored phones may be formatted; compare digits
        for row in rows:
            if normalize_phone(row.get("phone")) == digits:
                return Client.model_validate(row)
        return None

    async def create(self, company_id: int, name: str, phone: str) -> Client:
        payload = {
            "company_id": company_id,
            "name": name,
            "phone": normalize_phone(phone),
            "notes": "Cliente criado automaticamente via WhatsApp",
            "created_at": _now_iso(),
        }
        rows = await self._run(lambda: self.supabase.table("clients").insert(payload))
        if not rows:
            raise RuntimeError("Client insert returned no row")
        logger.info(f"🆕 Client created for {mask_phone(phone)}")
        return Client.model_validate(rows[0])


class SupabaseConversationStore(SupabaseRepository, ConversationStore):

    async def find_conversation(self, instance_id: int, phone_number: str) -> Optional[Conversation]:
        row = await self._first(
            lambda: self.supabase.table("conversations")
            .select("*")
            .eq("whatsapp_instance_id", instance_id)
            .eq("phone_number", phone_number)
            .order("last_message_at", desc=True)
            .limit(1)
        )
        return Conversation.model_validate(row) if row else None

    async def list_conversations_by_phone(self, company_id: int, phone_number: str) -> List[Conversation]:
        rows = await self._run(
            lambda: self.supabase.table("conversations")
            .select("*")
            .eq("company_id", company_id)
            .eq("phone_number", phone_number)
            .order("last_message_at", desc=True)
        )
        return [Conversation.model_validate(row) for row in rows]

    async def create_conversation(
        self,
        company_id: int,
        instance_id: int,
        phone_number: str,
        contact_name: Optional[str]
    ) -> Conversation:
        payload = {
            "company_id": company_id,
            "whatsapp_instance_id": instance_id,
            "phone_number": phone_number,
            "contact_name": contact_name,
            "last_message_at": _now_iso(),
        }
        rows = await self._run(lambda: self.supabase.table("conversations").insert(payload))
        if not rows:
            raise RuntimeError("Conversation insert returned no row")
        return Conversation.model_validate(rows[0])

    async def update_conversation(
        self,
        conversation_id: int,
        instance_id: int,
        contact_name: Optional[str],
        last_message_at: datetime
    ) -> Conversation:
        payload = {
            "whatsapp_instance_id": instance_id,
            "contact_name": contact_name,
            "last_message_at": last_message_at.isoformat(),
        }
        rows = await self._run(
            lambda: self.supabase.table("conversations").update(payload).eq("id", conversation_id)
        )
        if not rows:
            raise RuntimeError(f"Conversation {conversation_id} not found for update")
        return Conversation.model_validate(rows[0])

    async def add_message(
        self,
        conversation_id: int,
        role: str,
        content: str,
        message_id: Optional[str] = None,
        message_type: str = "text",
        delivered: bool = True
    ) -> Message:
        payload = {
            "conversation_id": conversation_id,
            "role": role,
            "content": content,
            "message_id": message_id,
            "message_type": message_type,
            "delivered": delivered,
            "timestamp": _now_iso(),
        }
        rows = await self._run(lambda: self.supabase.table("messages").insert(payload))
        if not rows:
            raise RuntimeError("Message insert returned no row")
        return Message.model_validate(rows[0])

    async def recent_messages(self, conversation_id: int, limit: int) -> List[Message]:
        rows = await self._run(
            lambda: self.supabase.table("messages")
            .select("*")
            .eq("conversation_id", conversation_id)
            .order("timestamp", desc=True)
            .limit(limit)
        )
        return [Message.model_validate(row) for row in reversed(rows)]

    async def last_assistant_message(self, conversation_id: int) -> Optional[Message]:
        row = await self._first(
            lambda: self.supabase.table("messages")
            .select("*")
            .eq("conversation_id", conversation_id)
            .eq("role", "assistant")
            .order("timestamp", desc=True)
            .limit(1)
        )
        return Message.model_validate(row) if row else None
