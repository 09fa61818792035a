"""Endpoints del widget embebido."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import StreamingResponse

from chatdesk.api.deps import get_services, http_error
from chatdesk.core.errors import ChatdeskError
from chatdesk.core.logging import get_logger
from chatdesk.services.container import ChatServices

from . import schemas, service
from .deps import get_visitor_id

router = APIRouter(prefix="/widget", tags=["widget"])

logger = get_logger("chatdesk.channels.widget")


@router.post(
    "/session",
    response_model=schemas.SessionResponse,
    response_model_exclude_none=True,
    summary="Arranca o reanuda la sesión del widget",
)
async def post_session(
    payload: schemas.SessionRequest,
    services: ChatServices = Depends(get_services),
) -> schemas.SessionResponse:
    """Verifica el dominio, resuelve la conversación y emite el token del visitante."""
    return await service.start_session(services, payload)


@router.post(
    "/respond",
    response_model=schemas.RespondResponse,
    response_model_exclude_none=True,
    summary="Procesa un mensaje del visitante",
)
async def post_respond(
    payload: schemas.RespondRequest,
    services: ChatServices = Depends(get_services),
    visitor_id: str | None = Depends(get_visitor_id),
) -> schemas.RespondResponse:
    try:
        return await service.respond(services, payload, visitor_id=visitor_id)
    except HTTPException:
        raise
    except ChatdeskError as exc:
        raise http_error(exc) from exc
    except Exception as exc:
        logger.exception(
            "widget.respond_failed",
            extra={"conversation_id": payload.conversation_id, "error": str(exc)},
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc) or "Unknown error"
        ) from exc


@router.get(
    "/conversations/{conversation_id}",
    response_model=schemas.ConversationSnapshot,
    summary="Estado y mensajes recientes de la conversación",
)
async def get_conversation(
    conversation_id: str,
    limit: int = Query(50, ge=1, le=200, description="Número máximo de mensajes."),
    services: ChatServices = Depends(get_services),
    visitor_id: str | None = Depends(get_visitor_id),
) -> schemas.ConversationSnapshot:
    """Aplica la revisión de inactividad antes de devolver el estado."""
    return await service.snapshot(services, conversation_id, limit=limit, visitor_id=visitor_id)


@router.post(
    "/conversations/{conversation_id}/typing",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Actualiza el indicador de escritura del visitante",
)
async def post_typing(
    conversation_id: str,
    payload: schemas.TypingRequest,
    services: ChatServices = Depends(get_services),
    visitor_id: str | None = Depends(get_visitor_id),
) -> None:
    await service.set_typing(services, conversation_id, payload.typing, visitor_id=visitor_id)


@router.post(
    "/conversations/{conversation_id}/close",
    response_model=schemas.StatusResponse,
    summary="El visitante termina la conversación",
)
async def post_close(
    conversation_id: str,
    services: ChatServices = Depends(get_services),
    visitor_id: str | None = Depends(get_visitor_id),
) -> schemas.StatusResponse:
    return await service.close(services, conversation_id, visitor_id=visitor_id)


@router.post(
    "/conversations/{conversation_id}/reactivate",
    response_model=schemas.StatusResponse,
    summary="Reinicia una conversación inactiva con el asistente",
)
async def post_reactivate(
    conversation_id: str,
    services: ChatServices = Depends(get_services),
    visitor_id: str | None = Depends(get_visitor_id),
) -> schemas.StatusResponse:
    return await service.reactivate(services, conversation_id, visitor_id=visitor_id)


@router.get(
    "/conversations/{conversation_id}/events",
    summary="Stream SSE de cambios de la conversación",
)
async def get_events(
    conversation_id: str,
    request: Request,
    services: ChatServices = Depends(get_services),
    visitor_id: str | None = Depends(get_visitor_id),
) -> StreamingResponse:
    await service.load_owned(services, conversation_id, visitor_id)
    return StreamingResponse(
        service.stream_events(services, conversation_id, request),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
