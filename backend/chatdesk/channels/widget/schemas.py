"""Esquemas de datos para el canal del widget embebido.

Los campos viajan en camelCase, igual que el script de embebido.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class WidgetModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class SessionRequest(WidgetModel):
    """Payload del arranque del iframe."""

    chat_id: str = Field(..., alias="chatId", min_length=1, description="Identificador estable del chat en la página anfitriona.")
    origin: str = Field(..., min_length=1, description="URL de la página que embebe el widget.")
    params: dict[str, Any] | None = Field(
        default=None,
        description="Parámetros opacos (userId, userName, shopId).",
    )


class SessionResponse(WidgetModel):
    success: bool
    message: str
    conversation_id: str | None = Field(default=None, alias="conversationId")
    visitor_id: str | None = Field(default=None, alias="visitorId")
    token: str | None = None
    welcome_message: str | None = Field(default=None, alias="welcomeMessage")
    resumed: bool | None = None


class RespondRequest(WidgetModel):
    message: str = Field(..., min_length=1)
    thread_id: str | None = Field(default=None, alias="threadId")
    conversation_id: str | None = Field(default=None, alias="conversationId")


class RespondResponse(WidgetModel):
    response: str | None
    thread_id: str | None = Field(default=None, alias="threadId")
    confidence: int | None = None
    status: str | None = None


class MessageOut(WidgetModel):
    id: str
    role: str
    content: str
    timestamp: datetime
    operator_name: str | None = Field(default=None, alias="operatorName")


class ConversationSnapshot(WidgetModel):
    """Estado que el widget consulta periódicamente."""

    conversation_id: str = Field(..., alias="conversationId")
    status: str
    handoff_confirmation_pending: bool = Field(default=False, alias="handoffConfirmationPending")
    operator_name: str | None = Field(default=None, alias="operatorName")
    operator_typing: bool = Field(default=False, alias="operatorTyping")
    title: str | None = None
    ended_by: str | None = Field(default=None, alias="endedBy")
    messages: list[MessageOut] = Field(default_factory=list)


class TypingRequest(WidgetModel):
    typing: bool


class StatusResponse(WidgetModel):
    conversation_id: str = Field(..., alias="conversationId")
    status: str
