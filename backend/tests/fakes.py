"""Dobles en memoria de los colaboradores externos."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime, timedelta, timezone
from typing import Any

from chatdesk.assistants.classifier import IntentClassifier, UserIntent
from chatdesk.assistants.client import (
    AssistantTurn,
    AssistantUnavailable,
    ConversationAssistant,
    parse_confidence,
)
from chatdesk.core.errors import ConversationNotFound, IdentityIssuanceFailure
from chatdesk.core.security import sign_jwt
from chatdesk.models.conversation import (
    TERMINAL_STATUSES,
    Conversation,
    ConversationStatus,
    Message,
    MessageRole,
    NewConversation,
    WidgetSettings,
)
from chatdesk.services.identity import IdentityIssuer
from chatdesk.services.storage import (
    SERVER_TIMESTAMP,
    ConversationStore,
    DuplicateConversation,
    StorageError,
    UnreadChange,
)

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
TEST_JWT_SECRET = "test-jwt-secret"


class MemoryStore(ConversationStore):
    """Almacén con reloj manual y fallos inyectables por llamada."""

    def __init__(self, now: datetime = T0) -> None:
        self.now = now
        self.rows: dict[str, dict[str, Any]] = {}
        self.messages: list[dict[str, Any]] = []
        self.widget_settings: WidgetSettings | None = None
        self.fail_settings = False
        self.fail_end_calls: set[int] = set()
        self.fail_status_calls: set[int] = set()
        self.end_calls = 0
        self.status_calls = 0
        self._seq = 0

    def advance(self, **delta: float) -> datetime:
        self.now += timedelta(**delta)
        return self.now

    def _next_id(self, prefix: str) -> str:
        self._seq += 1
        return f"{prefix}-{self._seq}"

    def seed(self, **fields: Any) -> Conversation:
        """Inserta una conversación directamente, con los campos dados."""
        row = Conversation(
            id=fields.pop("id", None) or self._next_id("conv"),
            visitor_id=fields.pop("visitor_id", "visitor-seed"),
            last_message_at=fields.pop("last_message_at", self.now),
            created_at=fields.pop("created_at", self.now),
            **fields,
        ).to_row()
        self.rows[row["id"]] = row
        return Conversation.from_row(row)

    def conversation(self, conversation_id: str) -> Conversation:
        return Conversation.from_row(self.rows[conversation_id])

    def messages_for(self, conversation_id: str, role: MessageRole | None = None) -> list[dict[str, Any]]:
        return [
            m
            for m in self.messages
            if m["conversation_id"] == conversation_id and (role is None or m["role"] == role.value)
        ]

    async def server_now(self) -> datetime:
        return self.now

    async def get_widget_settings(self) -> WidgetSettings | None:
        if self.fail_settings:
            raise StorageError("settings unavailable")
        return self.widget_settings

    async def find_conversation_by_external_id(
        self, external_id: str, *, include_terminal: bool = False
    ) -> Conversation | None:
        for row in reversed(list(self.rows.values())):
            if row["external_id"] != external_id:
                continue
            if not include_terminal and ConversationStatus(row["status"]) in TERMINAL_STATUSES:
                continue
            return Conversation.from_row(row)
        return None

    async def create_conversation(self, data: NewConversation) -> Conversation:
        if await self.find_conversation_by_external_id(data.external_id):
            raise DuplicateConversation(f"open conversation for {data.external_id}")
        return self.seed(
            external_id=data.external_id,
            visitor_id=data.visitor_id,
            status=data.status,
            client_params=data.client_params,
        )

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        row = self.rows.get(conversation_id)
        return Conversation.from_row(row) if row else None

    async def update_conversation(
        self, conversation_id: str, patch: dict[str, Any]
    ) -> Conversation:
        row = self.rows.get(conversation_id)
        if row is None:
            raise ConversationNotFound(conversation_id)
        for key, value in patch.items():
            if value is SERVER_TIMESTAMP:
                value = self.now
            elif isinstance(value, ConversationStatus):
                value = value.value
            row[key] = value
        return Conversation.from_row(row)

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
        row = self.rows.get(conversation_id)
        if row is None:
            raise ConversationNotFound(conversation_id)
        message = {
            "id": self._next_id("msg"),
            "conversation_id": conversation_id,
            "role": role.value,
            "content": content,
            "timestamp": self.now,
            "operator_name": operator_name,
        }
        self.messages.append(message)
        if update_preview:
            row["last_message"] = content
            row["last_message_at"] = max(row["last_message_at"] or self.now, self.now)
        if unread == "increment":
            row["unread_count"] += 1
        elif unread == "reset":
            row["unread_count"] = 0
        return Message.from_row(message)

    async def list_messages(self, conversation_id: str, *, limit: int = 50) -> list[Message]:
        rows = self.messages_for(conversation_id)[-limit:]
        return [Message.from_row(m) for m in rows]

    async def find_stale_conversations(
        self,
        statuses: Iterable[ConversationStatus],
        *,
        before: datetime,
        limit: int = 1000,
    ) -> list[Conversation]:
        wanted = {s.value for s in statuses}
        stale = [
            row
            for row in self.rows.values()
            if row["status"] in wanted and row["last_message_at"] < before
        ]
        stale.sort(key=lambda row: row["last_message_at"])
        return [Conversation.from_row(row) for row in stale[:limit]]

    async def set_status_many(
        self,
        conversation_ids: Sequence[str],
        status: ConversationStatus,
        *,
        from_statuses: Iterable[ConversationStatus],
        before: datetime | None = None,
    ) -> list[str]:
        self.status_calls += 1
        if self.status_calls in self.fail_status_calls:
            raise StorageError("batch write failed")
        allowed = {s.value for s in from_statuses}
        changed = []
        for conversation_id in conversation_ids:
            row = self.rows.get(conversation_id)
            if row and row["status"] in allowed and self._idle_since(row, before):
                row["status"] = status.value
                changed.append(conversation_id)
        return changed

    async def end_conversations(
        self,
        conversation_ids: Sequence[str],
        *,
        text: str,
        ended_by: str,
        before: datetime | None = None,
    ) -> list[str]:
        self.end_calls += 1
        if self.end_calls in self.fail_end_calls:
            raise StorageError("batch write failed")
        targets = [
            self.rows[cid]
            for cid in conversation_ids
            if cid in self.rows
            and ConversationStatus(self.rows[cid]["status"]) not in TERMINAL_STATUSES
            and self.rows[cid]["last_message"] != text
            and self._idle_since(self.rows[cid], before)
        ]
        for row in targets:
            row.update(
                status=ConversationStatus.ENDED.value,
                last_message=text,
                last_message_at=self.now,
                handoff_confirmation_pending=False,
                ended_by=ended_by,
            )
            self.messages.append(
                {
                    "id": self._next_id("msg"),
                    "conversation_id": row["id"],
                    "role": MessageRole.SYSTEM.value,
                    "content": text,
                    "timestamp": self.now,
                    "operator_name": None,
                }
            )
        return [row["id"] for row in targets]

    @staticmethod
    def _idle_since(row: dict[str, Any], before: datetime | None) -> bool:
        return before is None or row["last_message_at"] < before


class FakeIdentityIssuer(IdentityIssuer):
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.created: list[str] = []

    async def create_visitor(self) -> str:
        if self.fail:
            raise IdentityIssuanceFailure("auth unavailable")
        visitor_id = f"visitor-{len(self.created) + 1}"
        self.created.append(visitor_id)
        return visitor_id

    async def issue_token(self, visitor_id: str) -> str:
        if self.fail:
            raise IdentityIssuanceFailure("auth unavailable")
        return sign_jwt(
            {"sub": visitor_id, "role": "authenticated", "aud": "authenticated", "exp": 4102444800},
            TEST_JWT_SECRET,
        )


class FakeAssistant(ConversationAssistant):
    """Responde con textos encolados (o uno por defecto) y registra las llamadas."""

    def __init__(self, *replies: str, title: str = "Pyetje për çmimin", fail: bool = False) -> None:
        self.replies = list(replies)
        self.title = title
        self.fail = fail
        self.calls: list[dict[str, Any]] = []
        self.title_calls = 0
        self.title_history: list[Message] | None = None
        self.summary_history: list[Message] | None = None

    async def reply(
        self,
        message: str,
        *,
        thread_id: str | None = None,
        conversation_id: str | None = None,
    ) -> AssistantTurn:
        self.calls.append(
            {"message": message, "thread_id": thread_id, "conversation_id": conversation_id}
        )
        if self.fail:
            raise AssistantUnavailable("assistant down")
        raw = self.replies.pop(0) if self.replies else "Si mund të ndihmoj? [[CONFIDENCE:90]]"
        text, confidence = parse_confidence(raw)
        return AssistantTurn(text=text, thread_id=f"resp-{len(self.calls)}", confidence=confidence)

    async def generate_title(self, history: Sequence[Message]) -> str:
        self.title_calls += 1
        self.title_history = list(history)
        if self.title == "!fail":
            raise AssistantUnavailable("title failed")
        return self.title

    async def summarize(self, history: Sequence[Message]) -> str:
        self.summary_history = list(history)
        return f"{len(history)} messages about pricing"


class FakeClassifier(IntentClassifier):
    def __init__(self, intent: UserIntent = UserIntent.OTHER) -> None:
        self.intent = intent
        self.messages: list[str] = []

    async def classify(self, message: str) -> UserIntent:
        self.messages.append(message)
        return self.intent
