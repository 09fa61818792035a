"""Contrato del almacén de conversaciones.

Toda mutación es parcial (sólo las columnas indicadas) para que escritores
concurrentes sobre columnas distintas no se pisen. Las marcas de tiempo las
asigna el servidor: `SERVER_TIMESTAMP` en un patch se resuelve con el reloj
del almacén, nunca con el del proceso.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Any, Literal

from chatdesk.core.errors import ChatdeskError, ErrorKind
from chatdesk.models.conversation import (
    Conversation,
    ConversationStatus,
    Message,
    MessageRole,
    NewConversation,
    WidgetSettings,
)

UnreadChange = Literal["increment", "reset"]


class StorageError(ChatdeskError):
    """Errores de persistencia para servicios externos."""


class DuplicateConversation(StorageError):
    """Ya existe una conversación abierta con el mismo `external_id`."""

    kind = ErrorKind.REJECTED


class UnsupportedSchema(StorageError):
    """La fila leída no tiene una forma que el servicio sepa interpretar."""

    kind = ErrorKind.REJECTED


class _ServerTimestamp:
    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP: Any = _ServerTimestamp()


class ConversationStore(ABC):
    """Operaciones que el núcleo necesita del almacén de documentos."""

    @abstractmethod
    async def server_now(self) -> datetime:
        """Hora actual según el reloj del almacén."""

    @abstractmethod
    async def get_widget_settings(self) -> WidgetSettings | None:
        """Configuración del widget o `None` si no existe."""

    @abstractmethod
    async def find_conversation_by_external_id(
        self, external_id: str, *, include_terminal: bool = False
    ) -> Conversation | None:
        """Conversación más reciente para `external_id` (sólo abiertas por defecto)."""

    @abstractmethod
    async def create_conversation(self, data: NewConversation) -> Conversation:
        """Crea la conversación; lanza `DuplicateConversation` si ya hay una abierta."""

    @abstractmethod
    async def get_conversation(self, conversation_id: str) -> Conversation | None: ...

    @abstractmethod
    async def update_conversation(
        self, conversation_id: str, patch: dict[str, Any]
    ) -> Conversation:
        """Aplica un patch parcial de columnas y devuelve el estado resultante."""

    @abstractmethod
    async def append_message(
        self,
        conversation_id: str,
        role: MessageRole,
        content: str,
        *,
        operator_name: str | None = None,
        update_preview: bool = True,
        unread: UnreadChange | None = None,
    ) -> Message:
        """Agrega un mensaje con marca del servidor y, en la misma escritura,
        actualiza `last_message`/`last_message_at` y el contador de no leídos."""

    @abstractmethod
    async def list_messages(self, conversation_id: str, *, limit: int = 50) -> list[Message]:
        """Últimos `limit` mensajes en orden cronológico."""

    @abstractmethod
    async def find_stale_conversations(
        self,
        statuses: Iterable[ConversationStatus],
        *,
        before: datetime,
        limit: int = 1000,
    ) -> list[Conversation]:
        """Conversaciones en `statuses` cuyo último mensaje es anterior a `before`."""

    @abstractmethod
    async def set_status_many(
        self,
        conversation_ids: Sequence[str],
        status: ConversationStatus,
        *,
        from_statuses: Iterable[ConversationStatus],
        before: datetime | None = None,
    ) -> list[str]:
        """Cambia el estado de varias conversaciones en una sola escritura atómica,
        sólo para las que sigan en `from_statuses` y, con `before`, cuyo último
        mensaje siga siendo anterior a esa marca. Retorna los ids que cambiaron."""

    @abstractmethod
    async def end_conversations(
        self,
        conversation_ids: Sequence[str],
        *,
        text: str,
        ended_by: str,
        before: datetime | None = None,
    ) -> list[str]:
        """Cierra conversaciones en una escritura atómica.

        Por cada conversación abierta cuyo `last_message` no sea ya `text` (y,
        con `before`, cuyo último mensaje siga siendo anterior a esa marca):
        estado `ended`, `last_message=text`, marca del servidor, bandera de
        handoff limpia y un mensaje `system` con `text`. Retorna los ids cerrados.
        """
