"""Modelos tipados de conversaciones y mensajes del widget.

Las filas del almacén se validan al leerse (`Conversation.from_row`). Las filas
sin `schema_version` provienen del esquema anterior (documentos camelCase con
`agent` y `typing` anidados) y se migran; versiones más nuevas se rechazan.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

SCHEMA_VERSION = 1


class SchemaError(ValueError):
    """La fila no corresponde a una forma conocida del esquema."""


class ConversationStatus(str, Enum):
    AI = "ai"
    PENDING = "pending"
    ACTIVE = "active"
    INACTIVE = "inactive"
    ENDED = "ended"
    ARCHIVED = "archived"


TERMINAL_STATUSES = frozenset({ConversationStatus.ENDED, ConversationStatus.ARCHIVED})
OPEN_STATUSES = frozenset(set(ConversationStatus) - TERMINAL_STATUSES)


class MessageRole(str, Enum):
    USER = "user"
    AI = "ai"
    OPERATOR = "operator"
    SYSTEM = "system"


class Party(str, Enum):
    """Quién escribe: el visitante o el operador."""

    VISITOR = "visitor"
    OPERATOR = "operator"


class TypingState(BaseModel):
    """Presencia efímera; ver `conversations.presence` para la caducidad."""

    visitor: bool = False
    operator: bool = False
    last_update: datetime | None = None


class OperatorRef(BaseModel):
    id: str
    name: str | None = None


class ClientParams(BaseModel):
    """Parámetros opacos que la página anfitriona pasa al widget."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    user_id: Any = Field(default=None, alias="userId")
    user_name: Any = Field(default=None, alias="userName")
    shop_id: Any = Field(default=None, alias="shopId")

    def to_storage(self) -> dict[str, Any]:
        return {k: v for k, v in self.model_dump(by_alias=True).items() if v is not None}


class Conversation(BaseModel):
    """Estado persistido de una conversación."""

    model_config = ConfigDict(extra="ignore")

    schema_version: int = SCHEMA_VERSION
    id: str
    external_id: str | None = None
    visitor_id: str
    status: ConversationStatus = ConversationStatus.AI
    handoff_confirmation_pending: bool = False
    operator: OperatorRef | None = None
    last_message: str = ""
    last_message_at: datetime | None = None
    typing: TypingState = Field(default_factory=TypingState)
    unread_count: int = 0
    title: str | None = None
    confidence_score: float | None = None
    thread_id: str | None = None
    client_params: dict[str, Any] = Field(default_factory=dict)
    ended_by: str | None = None
    created_at: datetime | None = None

    @model_validator(mode="after")
    def _handoff_flag_only_while_pending(self) -> Conversation:
        if self.handoff_confirmation_pending and self.status is not ConversationStatus.PENDING:
            raise ValueError("handoff_confirmation_pending requires status 'pending'")
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Conversation:
        """Valida una fila plana del almacén, migrando el esquema heredado."""
        if not isinstance(row, dict):
            raise SchemaError(f"Fila de conversación inesperada: {row!r}")
        version = row.get("schema_version")
        if version is None:
            row = _migrate_legacy_conversation(row)
        elif not isinstance(version, int) or version > SCHEMA_VERSION:
            raise SchemaError(f"schema_version no soportada: {version!r}")

        data = dict(row)
        data["schema_version"] = SCHEMA_VERSION
        if data.get("operator") is None and data.get("operator_id"):
            data["operator"] = {"id": data["operator_id"], "name": data.get("operator_name")}
        if "typing" not in data:
            data["typing"] = {
                "visitor": bool(data.get("typing_visitor")),
                "operator": bool(data.get("typing_operator")),
                "last_update": data.get("typing_updated_at"),
            }
        if data.get("client_params") is None:
            data["client_params"] = {}
        if data.get("last_message") is None:
            data["last_message"] = ""
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise SchemaError(str(exc)) from exc

    def to_row(self) -> dict[str, Any]:
        """Representación plana usada por el almacén."""
        return {
            "schema_version": self.schema_version,
            "id": self.id,
            "external_id": self.external_id,
            "visitor_id": self.visitor_id,
            "status": self.status.value,
            "handoff_confirmation_pending": self.handoff_confirmation_pending,
            "operator_id": self.operator.id if self.operator else None,
            "operator_name": self.operator.name if self.operator else None,
            "last_message": self.last_message,
            "last_message_at": self.last_message_at,
            "typing_visitor": self.typing.visitor,
            "typing_operator": self.typing.operator,
            "typing_updated_at": self.typing.last_update,
            "unread_count": self.unread_count,
            "title": self.title,
            "confidence_score": self.confidence_score,
            "thread_id": self.thread_id,
            "client_params": self.client_params,
            "ended_by": self.ended_by,
            "created_at": self.created_at,
        }


class NewConversation(BaseModel):
    """Datos mínimos para crear una conversación; el almacén asigna id y fechas."""

    external_id: str
    visitor_id: str
    client_params: dict[str, Any] = Field(default_factory=dict)
    status: ConversationStatus = ConversationStatus.AI


class Message(BaseModel):
    """Mensaje inmutable de una conversación."""

    model_config = ConfigDict(extra="ignore")

    id: str
    conversation_id: str
    role: MessageRole
    content: str
    timestamp: datetime
    operator_name: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Message:
        if not isinstance(row, dict):
            raise SchemaError(f"Fila de mensaje inesperada: {row!r}")
        data = dict(row)
        if "conversationId" in data and "conversation_id" not in data:
            data["conversation_id"] = data.pop("conversationId")
        if data.get("role") == "agent":
            data["role"] = MessageRole.OPERATOR.value
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise SchemaError(str(exc)) from exc


class WidgetSettings(BaseModel):
    allowed_domains: list[str] = Field(default_factory=lambda: ["*"])
    welcome_message: str | None = None


_LEGACY_KEYS = {
    "externalId": "external_id",
    "visitorId": "visitor_id",
    "lastMessage": "last_message",
    "lastMessageAt": "last_message_at",
    "unreadCount": "unread_count",
    "handoffConfirmationPending": "handoff_confirmation_pending",
    "confidenceScore": "confidence_score",
    "threadId": "thread_id",
    "endedBy": "ended_by",
    "createdAt": "created_at",
}


def _migrate_legacy_conversation(row: dict[str, Any]) -> dict[str, Any]:
    migrated: dict[str, Any] = {}
    for key, value in row.items():
        migrated[_LEGACY_KEYS.get(key, key)] = value

    agent = migrated.pop("agent", None)
    if isinstance(agent, dict) and agent.get("id"):
        migrated.setdefault("operator_id", str(agent["id"]))
        migrated.setdefault("operator_name", agent.get("name"))

    typing = migrated.pop("typing", None)
    if isinstance(typing, dict):
        migrated.setdefault("typing_visitor", bool(typing.get("visitor")))
        migrated.setdefault("typing_operator", bool(typing.get("operator", typing.get("agent"))))
        migrated.setdefault("typing_updated_at", typing.get("lastUpdate") or typing.get("last_update"))

    client_params = {
        key: migrated.pop(key)
        for key in ("userId", "userName", "shopId")
        if migrated.get(key) is not None
    }
    if client_params and not migrated.get("client_params"):
        migrated["client_params"] = client_params

    # El esquema anterior no garantizaba la invariante de la bandera.
    if migrated.get("status") != ConversationStatus.PENDING.value:
        migrated["handoff_confirmation_pending"] = False
    return migrated
