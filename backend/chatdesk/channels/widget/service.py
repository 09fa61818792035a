"""Servicios del canal del widget embebido."""

from __future__ import annotations

import json
from collections.abc import AsyncGenerator

from fastapi import HTTPException, Request, status

from chatdesk.core.errors import (
    ChatdeskError,
    DomainRejected,
    IdentityIssuanceFailure,
)
from chatdesk.core.logging import get_logger, log_event
from chatdesk.models.conversation import (
    ClientParams,
    Conversation,
    ConversationStatus,
    MessageRole,
    Party,
)
from chatdesk.services.container import ChatServices

from . import schemas

logger = get_logger("chatdesk.channels.widget")

SESSION_FAILED = "Could not start the chat session. Please try again later."
KEEPALIVE_SECONDS = 15.0


async def start_session(
    services: ChatServices, payload: schemas.SessionRequest
) -> schemas.SessionResponse:
    """Arranca o reanuda la sesión; los fallos se reportan con `success=false`."""
    client_params = ClientParams.model_validate(payload.params or {}).to_storage()
    try:
        result = await services.bootstrapper.bootstrap(
            payload.chat_id, payload.origin, client_params
        )
    except DomainRejected as exc:
        return schemas.SessionResponse(success=False, message=exc.message)
    except IdentityIssuanceFailure as exc:
        logger.error(
            "widget.identity_failed",
            extra={"chat_id": payload.chat_id, "error": exc.message},
        )
        return schemas.SessionResponse(success=False, message=SESSION_FAILED)
    except ChatdeskError as exc:
        logger.exception(
            "widget.bootstrap_failed",
            extra={"chat_id": payload.chat_id, "error": exc.message},
        )
        return schemas.SessionResponse(success=False, message=SESSION_FAILED)

    return schemas.SessionResponse(
        success=True,
        message="Session ready.",
        conversation_id=result.conversation_id,
        visitor_id=result.visitor_id,
        token=result.token,
        welcome_message=result.welcome_message,
        resumed=result.resumed,
    )


async def load_owned(
    services: ChatServices, conversation_id: str, visitor_id: str | None
) -> Conversation:
    conversation = await services.state_machine.get(conversation_id)
    if visitor_id is not None and conversation.visitor_id != visitor_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Conversation belongs to another visitor",
        )
    return conversation


async def respond(
    services: ChatServices,
    payload: schemas.RespondRequest,
    *,
    visitor_id: str | None = None,
) -> schemas.RespondResponse:
    """Registra el mensaje del visitante y obtiene la respuesta que corresponda."""
    if not payload.conversation_id:
        turn = await services.assistant.reply(payload.message, thread_id=payload.thread_id)
        return schemas.RespondResponse(
            response=turn.text, thread_id=turn.thread_id, confidence=turn.confidence
        )

    state_machine = services.state_machine
    conversation = await load_owned(services, payload.conversation_id, visitor_id)
    if conversation.is_terminal:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Conversation is {conversation.status.value}",
        )

    await state_machine.record_message(
        conversation.id, MessageRole.USER, payload.message, unread="increment"
    )
    if conversation.typing.visitor:
        await services.presence.set_typing(conversation.id, Party.VISITOR, False)
    if conversation.status is ConversationStatus.INACTIVE:
        conversation = await state_machine.resume(conversation)

    if conversation.status is ConversationStatus.ACTIVE:
        log_event(logger, "widget.operator_mode", conversation_id=conversation.id)
        return schemas.RespondResponse(
            response=None,
            thread_id=payload.thread_id or conversation.thread_id,
            status=conversation.status.value,
        )

    result = await services.negotiator.negotiate(
        conversation, payload.message, thread_id=payload.thread_id
    )
    await state_machine.record_message(conversation.id, MessageRole.AI, result.reply)
    services.negotiator.schedule_title(result.conversation)
    return schemas.RespondResponse(
        response=result.reply,
        thread_id=result.thread_id,
        confidence=result.confidence,
        status=result.status.value,
    )


async def snapshot(
    services: ChatServices,
    conversation_id: str,
    *,
    limit: int = 50,
    visitor_id: str | None = None,
) -> schemas.ConversationSnapshot:
    """Estado actual tras aplicar la revisión de inactividad de esta conversación."""
    await load_owned(services, conversation_id, visitor_id)
    conversation = await services.sweeper.check_conversation(conversation_id)
    messages = await services.store.list_messages(conversation_id, limit=limit)
    now = await services.store.server_now()
    return schemas.ConversationSnapshot(
        conversation_id=conversation.id,
        status=conversation.status.value,
        handoff_confirmation_pending=conversation.handoff_confirmation_pending,
        operator_name=conversation.operator.name if conversation.operator else None,
        operator_typing=services.presence.is_typing(conversation, Party.OPERATOR, now),
        title=conversation.title,
        ended_by=conversation.ended_by,
        messages=[
            schemas.MessageOut(
                id=m.id,
                role=m.role.value,
                content=m.content,
                timestamp=m.timestamp,
                operator_name=m.operator_name,
            )
            for m in messages
        ],
    )


async def set_typing(
    services: ChatServices,
    conversation_id: str,
    typing: bool,
    *,
    visitor_id: str | None = None,
) -> None:
    await load_owned(services, conversation_id, visitor_id)
    await services.presence.set_typing(conversation_id, Party.VISITOR, typing)


async def close(
    services: ChatServices, conversation_id: str, *, visitor_id: str | None = None
) -> schemas.StatusResponse:
    conversation = await load_owned(services, conversation_id, visitor_id)
    conversation = await services.state_machine.end(conversation, ended_by="visitor")
    return schemas.StatusResponse(conversation_id=conversation.id, status=conversation.status.value)


async def reactivate(
    services: ChatServices, conversation_id: str, *, visitor_id: str | None = None
) -> schemas.StatusResponse:
    """Botón "reiniciar chat": vuelve al asistente y libera al operador."""
    conversation = await load_owned(services, conversation_id, visitor_id)
    conversation = await services.state_machine.resume(conversation, keep_operator=False)
    return schemas.StatusResponse(conversation_id=conversation.id, status=conversation.status.value)


async def stream_events(
    services: ChatServices, conversation_id: str, request: Request
) -> AsyncGenerator[bytes, None]:
    """Eventos de la conversación como Server-Sent Events."""
    subscription = services.events.subscribe(conversation_id)
    try:
        yield b"retry: 3000\n\n"
        while not subscription.closed:
            if await request.is_disconnected():
                break
            event = await subscription.get(timeout=KEEPALIVE_SECONDS)
            if event is None:
                yield b": keep-alive\n\n"
                continue
            data = json.dumps(event.as_dict(), ensure_ascii=False, default=str)
            yield f"event: {event.kind}\ndata: {data}\n\n".encode("utf-8")
    finally:
        subscription.cancel()
