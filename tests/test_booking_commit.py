"""
Tests for the booking commit engine
"""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from booking_engine.exceptions import BookingConflictError
from booking_engine.models import BookingDetails, Client
from booking_engine.services.booking_commit import (
    BookingCommitEngine,
    CommitOutcome,
    booking_created_event,
    conversation_tag,
)
from booking_engine.services.event_bus import InMemoryEventBus

from .fixtures import (
    SATURDAY,
    TEST_PHONE,
    FakeClientRegistry,
    FakeDirectory,
    make_appointment,
    make_professional,
    make_service,
)


def _details(**kwargs):
    return BookingDetails(
        client_name=kwargs.get("client_name", "Ana"),
        client_phone=kwargs.get("client_phone", TEST_PHONE),
        professional_id=kwargs.get("professional_id", 1),
        service_id=kwargs.get("service_id", 1),
        appointment_date=kwargs.get("appointment_date", SATURDAY),
        appointment_time=kwargs.get("appointment_time", "09:00"),
    )


def _directory(appointments=None):
    return FakeDirectory(
        professionals=[make_professional()],
        services=[make_service(), make_service(id=2, name="Escova", duration=45, price=70.0)],
        appointments=appointments,
    )


class TestCommit:

    @pytest.mark.asyncio
    async def test_creates_pending_appointment(self):
        directory = _directory()
        clients = FakeClientRegistry()
        engine = BookingCommitEngine(directory, clients)

        result = await engine.commit(1, 55, _details())

        assert result.outcome == CommitOutcome.CREATED
        assert result.wrote
        assert result.conflict is None
        appointment = directory.appointments[0]
        assert appointment.status == "Pendente"
        assert appointment.duration == 30
        assert appointment.total_price == 50.0
        assert appointment.client_phone == TEST_PHONE
        assert appointment.appointment_time == "09:00"
        assert appointment.notes == "Agendamento confirmado via WhatsApp - Conversa ID: 55"
        assert clients.clients[0].name == "Ana"

    @pytest.mark.asyncio
    async def test_duration_comes_from_service(self):
        directory = _directory()
        engine = BookingCommitEngine(directory, FakeClientRegistry())

        await engine.commit(1, 55, _details(service_id=2))

        assert directory.appointments[0].duration == 45
        assert directory.appointments[0].total_price == 70.0

    @pytest.mark.asyncio
    async def test_existing_client_is_reused(self):
        clients = FakeClientRegistry([Client(id=9, company_id=1, name="Ana Paula", phone="+55 (11) 99999-9999")])
        engine = BookingCommitEngine(_directory(), clients)

        await engine.commit(1, 55, _details(client_name="Ana"))

        assert len(clients.clients) == 1

    @pytest.mark.asyncio
    async def test_same_conversation_inside_window_is_duplicate(self):
        directory = _directory()
        engine = BookingCommitEngine(directory, FakeClientRegistry())

        first = await engine.commit(1, 55, _details())
        second = await engine.commit(1, 55, _details(appointment_time="10:00"))

        assert second.outcome == CommitOutcome.DUPLICATE
        assert not second.wrote
        assert second.appointment.id == first.appointment.id
        assert len(directory.appointments) == 1

    @pytest.mark.asyncio
    async def test_conversation_tag_prefix_does_not_match(self):
        directory = _directory([make_appointment(
            client_phone="5511777777777",
            appointment_time="15:00",
            notes=f"Agendamento confirmado via WhatsApp - {conversation_tag(550)}",
            created_at=datetime.now(timezone.utc),
        )])
        engine = BookingCommitEngine(directory, FakeClientRegistry())

        result = await engine.commit(1, 55, _details())

        assert result.outcome == CommitOutcome.CREATED

    @pytest.mark.asyncio
    async def test_window_expiry_allows_new_booking(self):
        directory = _directory()
        later = datetime.now(timezone.utc) + timedelta(minutes=10)
        engine = BookingCommitEngine(directory, FakeClientRegistry(), idempotency_window_minutes=5)

        await engine.commit(1, 55, _details())
        engine.clock = lambda: later
        result = await engine.commit(1, 55, _details(appointment_time="11:00"))

        assert result.outcome == CommitOutcome.CREATED
        assert len(directory.appointments) == 2

    @pytest.mark.asyncio
    async def test_same_client_overlap_is_rescheduled(self):
        directory = _directory([make_appointment(id=900, client_phone=TEST_PHONE, appointment_time="09:15")])
        engine = BookingCommitEngine(directory, FakeClientRegistry())

        result = await engine.commit(1, 55, _details(appointment_time="09:00", service_id=2))

        assert result.outcome == CommitOutcome.RESCHEDULED
        assert len(directory.appointments) == 1
        updated = directory.appointments[0]
        assert updated.id == 900
        assert updated.appointment_time == "09:00"
        assert updated.duration == 45
        assert updated.notes == "Agendamento atualizado via WhatsApp - Conversa ID: 55"

    @pytest.mark.asyncio
    async def test_other_client_overlap_is_still_created(self):
        existing = make_appointment(id=900, appointment_time="09:00")
        directory = _directory([existing])
        engine = BookingCommitEngine(directory, FakeClientRegistry(), allow_conflicts=True)

        result = await engine.commit(1, 55, _details())

        assert result.outcome == CommitOutcome.CREATED
        assert result.conflict.id == 900
        assert len(directory.appointments) == 2

    @pytest.mark.asyncio
    async def test_other_client_overlap_rejected_when_disallowed(self):
        directory = _directory([make_appointment(id=900, appointment_time="09:00")])
        engine = BookingCommitEngine(directory, FakeClientRegistry(), allow_conflicts=False)

        result = await engine.commit(1, 55, _details())

        assert result.outcome == CommitOutcome.CONFLICT_REJECTED
        assert result.conflict.id == 900
        assert not result.wrote
        assert len(directory.appointments) == 1

    @pytest.mark.asyncio
    async def test_disallowed_overlap_raises_inside_the_lock(self):
        directory = _directory([make_appointment(id=900, appointment_time="09:00")])
        engine = BookingCommitEngine(directory, FakeClientRegistry(), allow_conflicts=False)

        with pytest.raises(BookingConflictError) as exc_info:
            await engine._commit_locked(1, 55, _details())

        assert exc_info.value.appointment_id == 900
        assert exc_info.value.conflict.appointment_time == "09:00"
        assert len(directory.appointments) == 1

    @pytest.mark.asyncio
    async def test_cancelled_and_adjacent_appointments_do_not_conflict(self):
        directory = _directory([
            make_appointment(id=900, appointment_time="09:00", status="Cancelado"),
            make_appointment(id=901, appointment_time="09:30"),
            make_appointment(id=902, appointment_time="08:30"),
        ])
        engine = BookingCommitEngine(directory, FakeClientRegistry(), allow_conflicts=False)

        result = await engine.commit(1, 55, _details())

        assert result.outcome == CommitOutcome.CREATED
        assert result.conflict is None

    @pytest.mark.asyncio
    async def test_concurrent_commits_for_one_conversation_write_once(self):
        directory = _directory()
        engine = BookingCommitEngine(directory, FakeClientRegistry())

        results = await asyncio.gather(*(engine.commit(1, 55, _details()) for _ in range(3)))

        outcomes = sorted(r.outcome.value for r in results)
        assert outcomes == ["created", "duplicate", "duplicate"]
        assert len(directory.appointments) == 1


class TestNotification:

    @pytest.mark.asyncio
    async def test_event_published_on_create(self):
        bus = InMemoryEventBus()
        queue = bus.subscribe()
        engine = BookingCommitEngine(_directory(), FakeClientRegistry(), event_bus=bus)

        result = await engine.commit(1, 55, _details())

        event = queue.get_nowait()
        assert event["type"] == "new_appointment"
        assert event["appointment"] == {
            "id": result.appointment.id,
            "clientName": "Ana",
            "serviceName": "Corte",
            "professionalName": "Carlos",
            "appointmentDate": "2026-10-24",
            "appointmentTime": "09:00",
            "professionalId": 1,
            "serviceId": 1,
            "status": "Pendente",
        }

    @pytest.mark.asyncio
    async def test_broadcast_failure_keeps_the_booking(self):
        bus = AsyncMock()
        bus.publish.side_effect = RuntimeError("bus down")
        directory = _directory()
        engine = BookingCommitEngine(directory, FakeClientRegistry(), event_bus=bus)

        result = await engine.commit(1, 55, _details())

        assert result.outcome == CommitOutcome.CREATED
        assert len(directory.appointments) == 1

    def test_event_without_lookups(self):
        event = booking_created_event(make_appointment(), None, None)
        assert event["appointment"]["serviceName"] is None
        assert event["appointment"]["professionalName"] is None

    def test_placeholder_name(self):
        assert BookingCommitEngine.placeholder_name(TEST_PHONE) == "Cliente +55 (11) 99999-9999"
