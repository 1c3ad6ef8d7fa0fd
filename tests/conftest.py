"""Shared pytest fixtures"""

import pytest

from booking_engine.pipeline import BookingPipeline
from booking_engine.services.event_bus import InMemoryEventBus

from .fixtures import (
    TODAY,
    FakeClientRegistry,
    FakeConversationStore,
    FakeDirectory,
    FakeGateway,
    ScriptedLanguageModel,
    make_company,
    make_instance,
    make_professional,
    make_service,
)


@pytest.fixture
def directory():
    return FakeDirectory(
        instances=[make_instance()],
        companies=[make_company()],
        professionals=[make_professional(), make_professional(id=2, name="Marina", work_days=[2, 3, 4])],
        services=[make_service(), make_service(id=2, name="Escova", duration=45, price=70.0)],
    )


@pytest.fixture
def clients():
    return FakeClientRegistry()


@pytest.fixture
def conversations():
    return FakeConversationStore()


@pytest.fixture
def llm():
    return ScriptedLanguageModel()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def event_bus():
    return InMemoryEventBus()


@pytest.fixture
def pipeline(directory, clients, conversations, llm, gateway, event_bus):
    return BookingPipeline(
        directory=directory,
        clients=clients,
        conversations=conversations,
        llm=llm,
        gateway=gateway,
        event_bus=event_bus,
        today_provider=lambda: TODAY,
    )
