"""Pruebas de las rutas del escritorio de operadores."""

import pytest
from httpx import AsyncClient

from chatdesk.core.config import ASSISTANT_RESUMED_TEXT
from chatdesk.models.conversation import ConversationStatus, MessageRole, OperatorRef
from fakes import FakeAssistant, MemoryStore

S = ConversationStatus


@pytest.mark.asyncio
async def test_operator_message_joins_and_resets_unread(
    async_client: AsyncClient, store: MemoryStore
) -> None:
    conversation = store.seed(status=S.PENDING, unread_count=3)
    store.rows[conversation.id]["typing_operator"] = True

    response = await async_client.post(
        f"/api/desk/conversations/{conversation.id}/messages",
        json={"operatorId": "op-1", "operatorName": "Arta", "content": "Si mund të ndihmoj?"},
    )

    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "active"
    assert body["operatorName"] == "Arta"
    assert body["unreadCount"] == 0
    assert body["lastMessage"] == "Si mund të ndihmoj?"
    message = store.messages_for(conversation.id, MessageRole.OPERATOR)[0]
    assert message["operator_name"] == "Arta"
    assert store.conversation(conversation.id).typing.operator is False


@pytest.mark.asyncio
async def test_operator_message_on_ended_conflicts(async_client: AsyncClient, store: MemoryStore) -> None:
    conversation = store.seed(status=S.ENDED)

    response = await async_client.post(
        f"/api/desk/conversations/{conversation.id}/messages",
        json={"operatorId": "op-1", "content": "Hi"},
    )

    assert response.status_code == 409


@pytest.mark.asyncio
async def test_leave_hands_back_to_assistant(async_client: AsyncClient, store: MemoryStore) -> None:
    conversation = store.seed(status=S.ACTIVE, operator=OperatorRef(id="op-1"))

    response = await async_client.post(f"/api/desk/conversations/{conversation.id}/leave")

    assert response.json()["status"] == "ai"
    assert response.json()["operatorId"] is None
    assert store.conversation(conversation.id).last_message == ASSISTANT_RESUMED_TEXT


@pytest.mark.asyncio
async def test_leave_without_operator_conflicts(async_client: AsyncClient, store: MemoryStore) -> None:
    conversation = store.seed()

    response = await async_client.post(f"/api/desk/conversations/{conversation.id}/leave")

    assert response.status_code == 409
    assert response.json()["kind"] == "rejected"


@pytest.mark.asyncio
async def test_close_and_archive(async_client: AsyncClient, store: MemoryStore) -> None:
    conversation = store.seed(status=S.ACTIVE, operator=OperatorRef(id="op-1"))

    closed = await async_client.post(f"/api/desk/conversations/{conversation.id}/close")
    archived = await async_client.post(f"/api/desk/conversations/{conversation.id}/archive")
    reopened = await async_client.post(
        f"/api/desk/conversations/{conversation.id}/join", json={"operatorId": "op-1"}
    )

    assert closed.json()["status"] == "ended"
    assert closed.json()["endedBy"] == "operator"
    assert archived.json()["status"] == "archived"
    assert reopened.status_code == 409


@pytest.mark.asyncio
async def test_visitor_typing_is_visible_to_operator(async_client: AsyncClient, store: MemoryStore) -> None:
    conversation = store.seed()
    await async_client.post(f"/api/widget/conversations/{conversation.id}/typing", json={"typing": True})

    fresh = await async_client.get(f"/api/desk/conversations/{conversation.id}")
    store.advance(seconds=6)
    stale = await async_client.get(f"/api/desk/conversations/{conversation.id}")

    assert fresh.json()["visitorTyping"] is True
    assert stale.json()["visitorTyping"] is False


@pytest.mark.asyncio
async def test_summary_uses_history(
    async_client: AsyncClient, store: MemoryStore, assistant: FakeAssistant
) -> None:
    conversation = store.seed()
    for text in ("Sa kushton?", "20 euro."):
        await store.append_message(conversation.id, MessageRole.USER, text)

    response = await async_client.post(f"/api/desk/conversations/{conversation.id}/summary")

    assert response.json() == {
        "conversationId": conversation.id,
        "summary": "2 messages about pricing",
    }
    assert [m.content for m in assistant.summary_history] == ["Sa kushton?", "20 euro."]
