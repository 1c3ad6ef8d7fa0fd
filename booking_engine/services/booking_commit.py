"""
Booking Commit Engine

Validated BookingDetails -> exactly one appointment row.

Runs under a lock keyed by (professional, date):
1. idempotency: an appointment already stamped with this conversation id and
   created inside the window means the booking was handled
2. client find-or-create by phone digits
3. overlap check against the professional's non-cancelled appointments that
   day; the same client's overlapping appointment is rescheduled in place
4. insert with status Pendente, notes stamped with the conversation id
5. booking-created event on the bus (failures never undo the commit)
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from .. import config
from ..exceptions import BookingConflictError
from ..interfaces import ClientRegistry, DirectoryService, EventBus
from ..models import (
    Appointment,
    AppointmentStatus,
    BookingDetails,
    DEFAULT_DURATION_MINUTES,
    Professional,
    Service,
)
from ..utils.phone import format_brazilian_phone, mask_phone, normalize_phone
from ..utils.time_utils import to_minutes
from .availability import intervals_overlap
from .locks import KeyedLock, LocalKeyedLock

logger = logging.getLogger(__name__)


def conversation_tag(conversation_id: int) -> str:
    return f"Conversa ID: {conversation_id}"


class CommitOutcome(str, Enum):
    CREATED = "created"
    RESCHEDULED = "rescheduled"
    DUPLICATE = "duplicate"
    CONFLICT_REJECTED = "conflict_rejected"


@dataclass
class CommitResult:
    outcome: CommitOutcome
    appointment: Optional[Appointment] = None
    conflict: Optional[Appointment] = None

    @property
    def wrote(self) -> bool:
        return self.outcome in (CommitOutcome.CREATED, CommitOutcome.RESCHEDULED)


def booking_created_event(
    appointment: Appointment,
    professional: Optional[Professional],
    service: Optional[Service]
) -> Dict[str, Any]:
    return {
        "type": "new_appointment",
        "appointment": {
            "id": appointment.id,
            "clientName": appointment.client_name,
            "serviceName": service.name if service else None,
            "professionalName": professional.name if professional else None,
            "appointmentDate": appointment.appointment_date.isoformat(),
            "appointmentTime": appointment.appointment_time,
            "professionalId": appointment.professional_id,
            "serviceId": appointment.service_id,
            "status": appointment.status,
        },
    }


class BookingCommitEngine:
    """Idempotent create-or-update of appointments with overlap detection"""

    def __init__(
        self,
        directory: DirectoryService,
        clients: ClientRegistry,
        event_bus: Optional[EventBus] = None,
        lock: Optional[KeyedLock] = None,
        allow_conflicts: Optional[bool] = None,
        idempotency_window_minutes: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.directory = directory
        self.clients = clients
        self.event_bus = event_bus
        self.lock = lock or LocalKeyedLock()
        self.allow_conflicts = config.ALLOW_CONFLICTING_BOOKINGS if allow_conflicts is None else allow_conflicts
        self.idempotency_window = timedelta(
            minutes=idempotency_window_minutes or config.IDEMPOTENCY_WINDOW_MINUTES
        )
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def commit(self, company_id: int, conversation_id: int, details: BookingDetails) -> CommitResult:
        lock_key = f"{company_id}:{details.professional_id}:{details.appointment_date.isoformat()}"
        async with self.lock.acquire(lock_key):
            try:
                return await self._commit_locked(company_id, conversation_id, details)
            except BookingConflictError as e:
                logger.error(f"❌ Booking refused: {e.message}")
                return CommitResult(CommitOutcome.CONFLICT_REJECTED, conflict=e.conflict)

    async def _commit_locked(self, company_id: int, conversation_id: int, details: BookingDetails) -> CommitResult:
        now = self.clock()

        existing = await self.directory.find_conversation_appointment(
            company_id, conversation_id, created_since=now - self.idempotency_window
        )
        if existing:
            logger.info(
                f"ℹ️ Appointment {existing.id} already created for conversation {conversation_id} "
                f"within {self.idempotency_window}, skipping"
            )
            return CommitResult(CommitOutcome.DUPLICATE, appointment=existing)

        phone = normalize_phone(details.client_phone)
        client = await self.clients.find_or_create(
            company_id, phone, details.client_name or self.placeholder_name(phone)
        )
        logger.info(f"👤 Client {client.id} resolved for {mask_phone(phone)}")

        professional = await self._professional(company_id, details.professional_id)
        service = await self._service(company_id, details.service_id)
        duration = service.duration_minutes if service else DEFAULT_DURATION_MINUTES

        same_client, other_client = await self._overlaps(company_id, details, duration, phone)

        if same_client:
            updated = await self.directory.update_appointment(same_client.id, {
                "appointment_date": details.appointment_date.isoformat(),
                "appointment_time": details.appointment_time,
                "duration": duration,
                "service_id": details.service_id,
                "notes": f"Agendamento atualizado via WhatsApp - {conversation_tag(conversation_id)}",
                "updated_at": now.isoformat(),
            })
            logger.info(f"🔁 Rescheduled appointment {updated.id} for the same client")
            return CommitResult(CommitOutcome.RESCHEDULED, appointment=updated)

        if other_client:
            logger.warning(
                f"⚠️ Requested {details.appointment_date} {details.appointment_time} overlaps appointment "
                f"{other_client.id} ({other_client.appointment_time}, {other_client.duration_minutes}min) "
                f"of professional {details.professional_id}"
            )
            if not self.allow_conflicts:
                raise BookingConflictError(other_client)

        appointment = await self.directory.create_appointment({
            "company_id": company_id,
            "professional_id": details.professional_id,
            "service_id": details.service_id,
            "client_name": details.client_name,
            "client_phone": phone,
            "appointment_date": details.appointment_date.isoformat(),
            "appointment_time": details.appointment_time,
            "duration": duration,
            "status": AppointmentStatus.PENDING.value,
            "total_price": service.price if service else None,
            "notes": f"Agendamento confirmado via WhatsApp - {conversation_tag(conversation_id)}",
        })
        logger.info(
            f"✅ Appointment {appointment.id} created: {appointment.appointment_date} "
            f"{appointment.appointment_time} ({details.source})"
        )

        await self._notify(appointment, professional, service)
        return CommitResult(CommitOutcome.CREATED, appointment=appointment, conflict=other_client)

    @staticmethod
    def placeholder_name(phone: str) -> str:
        return f"Cliente {format_brazilian_phone(phone) or phone}"

    async def _professional(self, company_id: int, professional_id: int) -> Optional[Professional]:
        professionals = await self.directory.list_active_professionals(company_id)
        return next((p for p in professionals if p.id == professional_id), None)

    async def _service(self, company_id: int, service_id: int) -> Optional[Service]:
        services = await self.directory.list_active_services(company_id)
        return next((s for s in services if s.id == service_id), None)

    async def _overlaps(self, company_id: int, details: BookingDetails, duration: int, phone: str):
        """(same client's overlapping appointment, another client's overlapping appointment)"""
        appointments: List[Appointment] = await self.directory.list_appointments(
            company_id,
            professional_id=details.professional_id,
            start_date=details.appointment_date,
            end_date=details.appointment_date,
        )
        start = to_minutes(details.appointment_time)
        end = start + duration

        same_client = other_client = None
        for appointment in appointments:
            if appointment.is_cancelled or appointment.professional_id != details.professional_id:
                continue
            if appointment.appointment_date != details.appointment_date:
                continue
            if not intervals_overlap(start, end, appointment.start_minutes, appointment.end_minutes):
                continue
            if normalize_phone(appointment.client_phone) == phone:
                same_client = same_client or appointment
            else:
                other_client = other_client or appointment
        return same_client, other_client

    async def _notify(
        self,
        appointment: Appointment,
        professional: Optional[Professional],
        service: Optional[Service]
    ) -> None:
        if not self.event_bus:
            return
        try:
            delivered = await self.event_bus.publish(booking_created_event(appointment, professional, service))
            logger.info(f"📡 Booking notification sent to {delivered} viewer(s)")
        except Exception as e:
            logger.error(f"⚠️ Broadcast error for appointment {appointment.id}: {e}", exc_info=True)
