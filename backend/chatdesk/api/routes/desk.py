"""Rutas del escritorio de operadores: tomar, responder y cerrar conversaciones.

La autenticación de operadores queda fuera de este servicio; el proxy que
expone `/desk` es responsable de ella.
"""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field

from chatdesk.api.deps import get_services
from chatdesk.core.logging import get_logger, log_event
from chatdesk.models.conversation import (
    Conversation,
    ConversationStatus,
    MessageRole,
    OperatorRef,
    Party,
)
from chatdesk.services.container import ChatServices

router = APIRouter(prefix="/desk", tags=["desk"])

logger = get_logger(__name__)


class DeskModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class OperatorPayload(DeskModel):
    """Operador que actúa sobre la conversación."""

    operator_id: str = Field(..., alias="operatorId", min_length=1)
    operator_name: str | None = Field(default=None, alias="operatorName")


class OperatorMessagePayload(OperatorPayload):
    content: str = Field(..., min_length=1, description="Texto que verá el visitante.")


class TypingPayload(DeskModel):
    typing: bool


class DeskConversation(DeskModel):
    """Vista de la conversación para el operador."""

    conversation_id: str = Field(..., alias="conversationId")
    status: str
    handoff_confirmation_pending: bool = Field(..., alias="handoffConfirmationPending")
    operator_id: str | None = Field(default=None, alias="operatorId")
    operator_name: str | None = Field(default=None, alias="operatorName")
    visitor_typing: bool = Field(default=False, alias="visitorTyping")
    unread_count: int = Field(default=0, alias="unreadCount")
    last_message: str = Field(default="", alias="lastMessage")
    last_message_at: datetime | None = Field(default=None, alias="lastMessageAt")
    title: str | None = None
    confidence_score: float | None = Field(default=None, alias="confidenceScore")
    ended_by: str | None = Field(default=None, alias="endedBy")


class SummaryResponse(DeskModel):
    conversation_id: str = Field(..., alias="conversationId")
    summary: str


def _view(conversation: Conversation, *, visitor_typing: bool = False) -> DeskConversation:
    return DeskConversation(
        conversation_id=conversation.id,
        status=conversation.status.value,
        handoff_confirmation_pending=conversation.handoff_confirmation_pending,
        operator_id=conversation.operator.id if conversation.operator else None,
        operator_name=conversation.operator.name if conversation.operator else None,
        visitor_typing=visitor_typing,
        unread_count=conversation.unread_count,
        last_message=conversation.last_message,
        last_message_at=conversation.last_message_at,
        title=conversation.title,
        confidence_score=conversation.confidence_score,
        ended_by=conversation.ended_by,
    )


@router.get("/conversations/{conversation_id}", response_model=DeskConversation)
async def get_desk_conversation(
    conversation_id: str,
    services: ChatServices = Depends(get_services),
) -> DeskConversation:
    conversation = await services.state_machine.get(conversation_id)
    now = await services.store.server_now()
    return _view(
        conversation,
        visitor_typing=services.presence.is_typing(conversation, Party.VISITOR, now),
    )


@router.post("/conversations/{conversation_id}/join", response_model=DeskConversation)
async def join_conversation(
    conversation_id: str,
    payload: OperatorPayload,
    services: ChatServices = Depends(get_services),
) -> DeskConversation:
    """El operador toma la conversación; el asistente deja de responder."""
    conversation = await services.state_machine.get(conversation_id)
    operator = OperatorRef(id=payload.operator_id, name=payload.operator_name)
    conversation = await services.state_machine.operator_join(conversation, operator)
    return _view(conversation)


@router.post("/conversations/{conversation_id}/leave", response_model=DeskConversation)
async def leave_conversation(
    conversation_id: str,
    services: ChatServices = Depends(get_services),
) -> DeskConversation:
    conversation = await services.state_machine.get(conversation_id)
    conversation = await services.state_machine.operator_leave(conversation)
    return _view(conversation)


@router.post(
    "/conversations/{conversation_id}/messages",
    response_model=DeskConversation,
    status_code=status.HTTP_201_CREATED,
)
async def post_operator_message(
    conversation_id: str,
    payload: OperatorMessagePayload,
    services: ChatServices = Depends(get_services),
) -> DeskConversation:
    """Envía un mensaje del operador; si aún no la había tomado, la toma primero."""
    state_machine = services.state_machine
    conversation = await state_machine.get(conversation_id)
    if conversation.is_terminal:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Conversation is {conversation.status.value}",
        )
    if conversation.status is not ConversationStatus.ACTIVE:
        operator = OperatorRef(id=payload.operator_id, name=payload.operator_name)
        conversation = await state_machine.operator_join(conversation, operator)

    await state_machine.record_message(
        conversation.id,
        MessageRole.OPERATOR,
        payload.content,
        operator_name=payload.operator_name,
        unread="reset",
    )
    if conversation.typing.operator:
        await services.presence.set_typing(conversation.id, Party.OPERATOR, False)
    log_event(
        logger,
        "desk.operator_message",
        conversation_id=conversation.id,
        operator_id=payload.operator_id,
    )
    return _view(await state_machine.get(conversation.id))


@router.post(
    "/conversations/{conversation_id}/typing",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def post_operator_typing(
    conversation_id: str,
    payload: TypingPayload,
    services: ChatServices = Depends(get_services),
) -> None:
    await services.presence.set_typing(conversation_id, Party.OPERATOR, payload.typing)


@router.post("/conversations/{conversation_id}/close", response_model=DeskConversation)
async def close_conversation(
    conversation_id: str,
    services: ChatServices = Depends(get_services),
) -> DeskConversation:
    conversation = await services.state_machine.get(conversation_id)
    conversation = await services.state_machine.end(conversation, ended_by="operator")
    return _view(conversation)


@router.post("/conversations/{conversation_id}/archive", response_model=DeskConversation)
async def archive_conversation(
    conversation_id: str,
    services: ChatServices = Depends(get_services),
) -> DeskConversation:
    conversation = await services.state_machine.get(conversation_id)
    conversation = await services.state_machine.archive(conversation)
    return _view(conversation)


@router.post("/conversations/{conversation_id}/summary", response_model=SummaryResponse)
async def summarize_conversation(
    conversation_id: str,
    limit: int = Query(100, ge=1, le=500, description="Mensajes a considerar."),
    services: ChatServices = Depends(get_services),
) -> SummaryResponse:
    """Resumen del historial para el operador que toma la conversación."""
    conversation = await services.state_machine.get(conversation_id)
    history = await services.store.list_messages(conversation.id, limit=limit)
    summary = await services.assistant.summarize(history)
    return SummaryResponse(
        conversation_id=conversation.id,
        summary=summary or "Could not generate summary.",
    )
