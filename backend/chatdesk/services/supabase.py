"""Almacén de conversaciones sobre Supabase/PostgREST.

Las escrituras que tocan varias filas (mensaje + conversación, cierre en bloque)
se hacen con funciones RPC definidas en `backend/supabase/chatdesk.sql`, que
corren dentro de una transacción de Postgres.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Any

import httpx

from chatdesk.core.errors import ConversationNotFound
from chatdesk.core.logging import get_logger
from chatdesk.models.conversation import (
    Conversation,
    ConversationStatus,
    Message,
    MessageRole,
    NewConversation,
    SchemaError,
    WidgetSettings,
)

from .storage import (
    SERVER_TIMESTAMP,
    ConversationStore,
    DuplicateConversation,
    StorageError,
    UnreadChange,
    UnsupportedSchema,
)

logger = get_logger(__name__)

_CONVERSATIONS = "/rest/v1/conversations"
_MESSAGES = "/rest/v1/messages"
_WIDGET_SETTINGS = "/rest/v1/widget_settings"


def _in_filter(values: Iterable[str]) -> str:
    return f"in.({','.join(values)})"


def _serialize(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, ConversationStatus | MessageRole):
        return value.value
    return value


class SupabaseConversationStore(ConversationStore):
    """Pequeña capa de acceso a Supabase REST para conversaciones y mensajes."""

    def __init__(
        self,
        base_url: str | None,
        service_role: str | None,
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/") if base_url else None
        self._service_role = service_role
        self._timeout = timeout
        self._transport = transport

    async def server_now(self) -> datetime:
        response = await self._request("POST", "/rest/v1/rpc/chatdesk_now", json={})
        value = response.json()
        if isinstance(value, list) and value:
            value = value[0]
        if isinstance(value, dict):
            value = next(iter(value.values()), None)
        try:
            return datetime.fromisoformat(str(value))
        except ValueError as exc:
            raise StorageError(f"Respuesta inesperada de chatdesk_now: {value!r}") from exc

    async def get_widget_settings(self) -> WidgetSettings | None:
        params = {"select": "allowed_domains,welcome_message", "id": "eq.widget", "limit": "1"}
        rows = self._json_list(await self._request("GET", _WIDGET_SETTINGS, params=params))
        if not rows:
            return None
        row = rows[0]
        return WidgetSettings(
            allowed_domains=row.get("allowed_domains") or ["*"],
            welcome_message=row.get("welcome_message") or None,
        )

    async def find_conversation_by_external_id(
        self, external_id: str, *, include_terminal: bool = False
    ) -> Conversation | None:
        params = {
            "select": "*",
            "external_id": f"eq.{external_id}",
            "order": "created_at.desc",
            "limit": "1",
        }
        if not include_terminal:
            params["status"] = "not.in.(ended,archived)"
        rows = self._json_list(await self._request("GET", _CONVERSATIONS, params=params))
        return self._conversation(rows[0]) if rows else None

    async def create_conversation(self, data: NewConversation) -> Conversation:
        payload = {
            "schema_version": 1,
            "external_id": data.external_id,
            "visitor_id": data.visitor_id,
            "status": data.status.value,
            "client_params": data.client_params,
            "last_message": "",
            "unread_count": 0,
        }
        response = await self._request(
            "POST", _CONVERSATIONS, json=[payload], prefer="return=representation"
        )
        rows = self._json_list(response)
        if not rows:
            raise StorageError("Supabase no devolvió la conversación creada")
        return self._conversation(rows[0])

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        params = {"select": "*", "id": f"eq.{conversation_id}", "limit": "1"}
        rows = self._json_list(await self._request("GET", _CONVERSATIONS, params=params))
        return self._conversation(rows[0]) if rows else None

    async def update_conversation(
        self, conversation_id: str, patch: dict[str, Any]
    ) -> Conversation:
        if not patch:
            raise StorageError("No se proporcionaron datos para actualizar la conversación")
        body = dict(patch)
        if any(value is SERVER_TIMESTAMP for value in body.values()):
            now = await self.server_now()
            body = {k: (now if v is SERVER_TIMESTAMP else v) for k, v in body.items()}
        response = await self._request(
            "PATCH",
            _CONVERSATIONS,
            params={"id": f"eq.{conversation_id}"},
            json={k: _serialize(v) for k, v in body.items()},
            prefer="return=representation",
        )
        rows = self._json_list(response)
        if not rows:
            raise ConversationNotFound(conversation_id)
        return self._conversation(rows[0])

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
        payload = {
            "p_conversation_id": conversation_id,
            "p_role": role.value,
            "p_content": content,
            "p_operator_name": operator_name,
            "p_update_preview": update_preview,
            "p_unread": unread,
        }
        response = await self._request("POST", "/rest/v1/rpc/chatdesk_append_message", json=payload)
        rows = self._json_list(response)
        if not rows:
            raise ConversationNotFound(conversation_id)
        return self._message(rows[0])

    async def list_messages(self, conversation_id: str, *, limit: int = 50) -> list[Message]:
        params = {
            "select": "id,conversation_id,role,content,timestamp,operator_name",
            "conversation_id": f"eq.{conversation_id}",
            "order": "timestamp.desc",
            "limit": str(limit),
        }
        rows = self._json_list(await self._request("GET", _MESSAGES, params=params))
        return [self._message(row) for row in reversed(rows)]

    async def find_stale_conversations(
        self,
        statuses: Iterable[ConversationStatus],
        *,
        before: datetime,
        limit: int = 1000,
    ) -> list[Conversation]:
        params = {
            "select": "*",
            "status": _in_filter(status.value for status in statuses),
            "last_message_at": f"lt.{before.isoformat()}",
            "order": "last_message_at.asc",
            "limit": str(limit),
        }
        rows = self._json_list(await self._request("GET", _CONVERSATIONS, params=params))
        conversations: list[Conversation] = []
        for row in rows:
            try:
                conversations.append(self._conversation(row))
            except UnsupportedSchema:
                logger.warning("supabase.row_skipped", extra={"conversation_id": row.get("id")})
        return conversations

    async def set_status_many(
        self,
        conversation_ids: Sequence[str],
        status: ConversationStatus,
        *,
        from_statuses: Iterable[ConversationStatus],
        before: datetime | None = None,
    ) -> list[str]:
        if not conversation_ids:
            return []
        params = {
            "id": _in_filter(conversation_ids),
            "status": _in_filter(s.value for s in from_statuses),
            "select": "id",
        }
        if before is not None:
            params["last_message_at"] = f"lt.{before.isoformat()}"
        response = await self._request(
            "PATCH",
            _CONVERSATIONS,
            params=params,
            json={"status": status.value},
            prefer="return=representation",
        )
        return [str(row["id"]) for row in self._json_list(response) if row.get("id")]

    async def end_conversations(
        self,
        conversation_ids: Sequence[str],
        *,
        text: str,
        ended_by: str,
        before: datetime | None = None,
    ) -> list[str]:
        if not conversation_ids:
            return []
        payload = {
            "p_ids": list(conversation_ids),
            "p_text": text,
            "p_ended_by": ended_by,
            "p_before": _serialize(before),
        }
        response = await self._request(
            "POST", "/rest/v1/rpc/chatdesk_end_conversations", json=payload
        )
        value = response.json()
        if not isinstance(value, list):
            raise StorageError(f"Respuesta inesperada de chatdesk_end_conversations: {value!r}")
        return [str(conversation_id) for conversation_id in value]

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        json: Any = None,
        prefer: str | None = None,
    ) -> httpx.Response:
        if not self._base_url or not self._service_role:
            raise StorageError("Supabase no está configurado (SUPABASE_URL/SERVICE_ROLE)")
        url = f"{self._base_url}{path}"
        headers = self._headers(prefer, has_body=json is not None)
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.request(
                    method,
                    url,
                    params=params,
                    json=json,
                    headers=headers,
                )
        except httpx.RequestError as exc:
            logger.exception("supabase.request_failed", extra={"path": path, "error": str(exc)})
            raise StorageError(f"Error al conectar a Supabase: {exc}") from exc
        if response.status_code == 409:
            raise DuplicateConversation(f"Supabase respondió 409: {response.text}")
        if response.status_code >= 400:
            logger.error(
                "supabase.response_error",
                extra={"path": path, "status": response.status_code, "body": response.text},
            )
            raise StorageError(f"Supabase respondió {response.status_code}: {response.text}")
        return response

    def _headers(self, prefer: str | None, *, has_body: bool) -> dict[str, str]:
        headers: dict[str, str] = {
            "Accept": "application/json",
            "apikey": self._service_role or "",
            "Authorization": f"Bearer {self._service_role}",
        }
        if prefer:
            headers["Prefer"] = prefer
        if has_body:
            headers["Content-Type"] = "application/json"
        return headers

    @staticmethod
    def _json_list(response: httpx.Response) -> list[dict[str, Any]]:
        payload = response.json() or []
        if not isinstance(payload, list):
            raise StorageError("Respuesta inesperada de Supabase")
        return [row for row in payload if isinstance(row, dict)]

    @staticmethod
    def _conversation(row: dict[str, Any]) -> Conversation:
        try:
            return Conversation.from_row(row)
        except SchemaError as exc:
            raise UnsupportedSchema(str(exc)) from exc

    @staticmethod
    def _message(row: dict[str, Any]) -> Message:
        try:
            return Message.from_row(row)
        except SchemaError as exc:
            raise UnsupportedSchema(str(exc)) from exc
