"""Pruebas del arranque de sesiones del widget."""

import pytest

from chatdesk.core.config import DEFAULT_WELCOME_MESSAGE
from chatdesk.core.errors import DomainRejected, IdentityIssuanceFailure
from chatdesk.core.security import verify_jwt
from chatdesk.conversations.bootstrap import SessionBootstrapper
from chatdesk.models.conversation import ConversationStatus, NewConversation, WidgetSettings
from fakes import TEST_JWT_SECRET, FakeIdentityIssuer, MemoryStore


@pytest.fixture(name="bootstrapper")
def fixture_bootstrapper(store: MemoryStore, identity: FakeIdentityIssuer) -> SessionBootstrapper:
    return SessionBootstrapper(store, identity, default_welcome_message=DEFAULT_WELCOME_MESSAGE)


@pytest.mark.asyncio
async def test_first_visit_creates_conversation_and_identity(
    bootstrapper: SessionBootstrapper, store: MemoryStore, identity: FakeIdentityIssuer
) -> None:
    store.widget_settings = WidgetSettings(
        allowed_domains=["*.example.com"], welcome_message="Mirë se vini!"
    )

    result = await bootstrapper.bootstrap(
        "abc", "https://shop.example.com/product/1", {"userId": "u-1"}
    )

    assert result.resumed is False
    assert result.welcome_message == "Mirë se vini!"
    assert identity.created == [result.visitor_id]
    conversation = store.conversation(result.conversation_id)
    assert conversation.external_id == "abc"
    assert conversation.status is ConversationStatus.AI
    assert conversation.client_params == {"userId": "u-1"}
    claims = verify_jwt(result.token, TEST_JWT_SECRET)
    assert claims is not None
    assert claims["sub"] == result.visitor_id


@pytest.mark.asyncio
async def test_second_visit_resumes_same_conversation(
    bootstrapper: SessionBootstrapper, identity: FakeIdentityIssuer
) -> None:
    first = await bootstrapper.bootstrap("abc", "https://shop.example.com")
    second = await bootstrapper.bootstrap("abc", "https://shop.example.com")

    assert second.resumed is True
    assert second.conversation_id == first.conversation_id
    assert second.visitor_id == first.visitor_id
    assert len(identity.created) == 1


@pytest.mark.asyncio
async def test_rejected_domain_creates_nothing(
    bootstrapper: SessionBootstrapper, store: MemoryStore, identity: FakeIdentityIssuer
) -> None:
    store.widget_settings = WidgetSettings(allowed_domains=["*.example.com"])

    with pytest.raises(DomainRejected) as excinfo:
        await bootstrapper.bootstrap("abc", "https://evil.io")

    assert excinfo.value.hostname == "evil.io"
    assert store.rows == {}
    assert identity.created == []


@pytest.mark.asyncio
async def test_missing_settings_allow_all_with_default_welcome(
    bootstrapper: SessionBootstrapper, store: MemoryStore
) -> None:
    store.fail_settings = True

    result = await bootstrapper.bootstrap("abc", "https://anything.io")

    assert result.welcome_message == DEFAULT_WELCOME_MESSAGE


@pytest.mark.asyncio
async def test_ended_conversation_gets_fresh_one_with_same_visitor(
    bootstrapper: SessionBootstrapper, store: MemoryStore, identity: FakeIdentityIssuer
) -> None:
    store.seed(external_id="abc", visitor_id="visitor-old", status=ConversationStatus.ENDED)

    result = await bootstrapper.bootstrap("abc", "https://shop.example.com")

    assert result.resumed is False
    assert result.visitor_id == "visitor-old"
    assert identity.created == []
    assert store.conversation(result.conversation_id).status is ConversationStatus.AI


@pytest.mark.asyncio
async def test_concurrent_creation_resumes_the_winner(identity: FakeIdentityIssuer) -> None:
    class RacingStore(MemoryStore):
        async def find_conversation_by_external_id(self, external_id, *, include_terminal=False):
            if not self.rows:
                return None
            return await super().find_conversation_by_external_id(
                external_id, include_terminal=include_terminal
            )

        async def create_conversation(self, data):
            if not self.rows:
                # Otra pestaña crea la conversación justo antes.
                await super().create_conversation(
                    NewConversation(external_id=data.external_id, visitor_id="visitor-winner")
                )
            return await super().create_conversation(data)

    racing = RacingStore()
    bootstrapper = SessionBootstrapper(
        racing, identity, default_welcome_message=DEFAULT_WELCOME_MESSAGE
    )

    result = await bootstrapper.bootstrap("abc", "https://shop.example.com")

    assert result.resumed is True
    assert result.visitor_id == "visitor-winner"
    assert len(racing.rows) == 1


@pytest.mark.asyncio
async def test_identity_failure_propagates(store: MemoryStore) -> None:
    bootstrapper = SessionBootstrapper(
        store, FakeIdentityIssuer(fail=True), default_welcome_message=DEFAULT_WELCOME_MESSAGE
    )

    with pytest.raises(IdentityIssuanceFailure):
        await bootstrapper.bootstrap("abc", "https://shop.example.com")
    assert store.rows == {}
