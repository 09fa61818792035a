"""Pruebas de validación y migración de filas de conversación."""

import pytest

from chatdesk.models.conversation import (
    ClientParams,
    Conversation,
    ConversationStatus,
    Message,
    MessageRole,
    SchemaError,
)


def test_flag_requires_pending_status() -> None:
    with pytest.raises(SchemaError):
        Conversation.from_row(
            {
                "schema_version": 1,
                "id": "c",
                "visitor_id": "v",
                "status": "ai",
                "handoff_confirmation_pending": True,
            }
        )


def test_newer_schema_is_rejected() -> None:
    with pytest.raises(SchemaError):
        Conversation.from_row({"schema_version": 2, "id": "c", "visitor_id": "v"})


def test_flat_row_builds_operator_and_typing() -> None:
    conversation = Conversation.from_row(
        {
            "schema_version": 1,
            "id": "c",
            "visitor_id": "v",
            "status": "active",
            "operator_id": "op-1",
            "operator_name": "Arta",
            "typing_operator": True,
            "typing_updated_at": "2024-05-01T12:00:00+00:00",
            "last_message": None,
            "client_params": None,
        }
    )

    assert conversation.operator is not None
    assert conversation.operator.name == "Arta"
    assert conversation.typing.operator is True
    assert conversation.last_message == ""
    assert conversation.client_params == {}
    assert Conversation.from_row(conversation.to_row()) == conversation


def test_legacy_document_is_migrated() -> None:
    legacy = {
        "id": "c",
        "externalId": "abc",
        "visitorId": "v",
        "status": "active",
        "handoffConfirmationPending": True,
        "agent": {"id": 7, "name": "Arta"},
        "typing": {"visitor": True, "agent": False, "lastUpdate": "2024-05-01T12:00:00+00:00"},
        "lastMessage": "Hi",
        "unreadCount": 2,
        "userId": "u-1",
        "shopId": "s-1",
    }

    conversation = Conversation.from_row(legacy)

    assert conversation.external_id == "abc"
    assert conversation.status is ConversationStatus.ACTIVE
    assert conversation.handoff_confirmation_pending is False
    assert conversation.operator is not None
    assert conversation.operator.id == "7"
    assert conversation.typing.visitor is True
    assert conversation.unread_count == 2
    assert conversation.client_params == {"userId": "u-1", "shopId": "s-1"}


def test_legacy_agent_role_maps_to_operator() -> None:
    message = Message.from_row(
        {
            "id": "m",
            "conversationId": "c",
            "role": "agent",
            "content": "Hi",
            "timestamp": "2024-05-01T12:00:00+00:00",
        }
    )

    assert message.role is MessageRole.OPERATOR
    assert message.conversation_id == "c"


def test_client_params_keep_extras_and_drop_empty() -> None:
    params = ClientParams.model_validate({"userId": "u-1", "shopId": None, "plan": "pro"})

    assert params.to_storage() == {"userId": "u-1", "plan": "pro"}
