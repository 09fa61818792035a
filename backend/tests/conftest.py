"""Fixtures compartidas para las pruebas."""

import pytest
from httpx import ASGITransport, AsyncClient

from chatdesk.core.config import Settings
from chatdesk.main import create_app
from chatdesk.services.container import ChatServices, assemble_services
from chatdesk.services.events import EventBus
from fakes import FakeAssistant, FakeClassifier, FakeIdentityIssuer, MemoryStore


@pytest.fixture(name="test_settings")
def fixture_test_settings() -> Settings:
    return Settings(
        _env_file=None,
        supabase_jwt_secret=None,
        cron_secret=None,
        sweep_scheduler_enabled=False,
    )


@pytest.fixture(name="store")
def fixture_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture(name="assistant")
def fixture_assistant() -> FakeAssistant:
    return FakeAssistant()


@pytest.fixture(name="classifier")
def fixture_classifier() -> FakeClassifier:
    return FakeClassifier()


@pytest.fixture(name="identity")
def fixture_identity() -> FakeIdentityIssuer:
    return FakeIdentityIssuer()


@pytest.fixture(name="services")
def fixture_services(
    test_settings: Settings,
    store: MemoryStore,
    identity: FakeIdentityIssuer,
    assistant: FakeAssistant,
    classifier: FakeClassifier,
) -> ChatServices:
    """Núcleo real conectado a dobles en memoria."""
    return assemble_services(
        test_settings,
        store=store,
        identity=identity,
        assistant=assistant,
        classifier=classifier,
        events=EventBus(),
    )


@pytest.fixture(name="async_client")
async def fixture_async_client(services: ChatServices) -> AsyncClient:
    """Retorna un cliente asíncrono contra la app principal utilizando ASGITransport."""
    app = create_app(services)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    await services.negotiator.wait_background()
