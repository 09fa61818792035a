"""Dueño del campo `status` de las conversaciones.

Cada operación valida el estado leído contra la tabla de transiciones y escribe
sólo las columnas que le corresponden. No hay bloqueos: el último escritor de
`status` gana.
"""

from __future__ import annotations

from typing import Any

from chatdesk.core.errors import ConversationNotFound, InvalidTransition
from chatdesk.core.logging import get_logger, log_event
from chatdesk.models.conversation import (
    TERMINAL_STATUSES,
    Conversation,
    ConversationStatus,
    Message,
    MessageRole,
    OperatorRef,
)
from chatdesk.services.events import ConversationEvent, EventBus
from chatdesk.services.storage import SERVER_TIMESTAMP, ConversationStore, UnreadChange

logger = get_logger(__name__)

S = ConversationStatus

TRANSITIONS: dict[ConversationStatus, frozenset[ConversationStatus]] = {
    S.AI: frozenset({S.PENDING, S.ACTIVE, S.INACTIVE, S.ENDED, S.ARCHIVED}),
    S.PENDING: frozenset({S.AI, S.PENDING, S.ACTIVE, S.ENDED, S.ARCHIVED}),
    S.ACTIVE: frozenset({S.AI, S.INACTIVE, S.ENDED, S.ARCHIVED}),
    S.INACTIVE: frozenset({S.AI, S.ACTIVE, S.ENDED, S.ARCHIVED}),
    S.ENDED: frozenset({S.ARCHIVED}),
    S.ARCHIVED: frozenset(),
}


def can_transition(current: ConversationStatus, target: ConversationStatus) -> bool:
    return target in TRANSITIONS[current]


class ConversationStateMachine:
    def __init__(
        self,
        store: ConversationStore,
        events: EventBus,
        *,
        ended_text: str,
        assistant_resumed_text: str,
    ) -> None:
        self.store = store
        self.events = events
        self.ended_text = ended_text
        self.assistant_resumed_text = assistant_resumed_text

    async def get(self, conversation_id: str) -> Conversation:
        conversation = await self.store.get_conversation(conversation_id)
        if conversation is None:
            raise ConversationNotFound(conversation_id)
        return conversation

    async def offer_handoff(self, conversation: Conversation) -> Conversation:
        """`ai -> pending`: el asistente ofreció pasar con un colega."""
        self._require(conversation, S.PENDING, {S.AI}, "offer_handoff")
        return await self._apply(
            conversation, S.PENDING, {"handoff_confirmation_pending": True}, "offer_handoff"
        )

    async def confirm_handoff(self, conversation: Conversation) -> Conversation:
        """El visitante aceptó: queda en `pending` esperando un operador."""
        self._require_offer(conversation, S.PENDING, "confirm_handoff")
        return await self._apply(
            conversation, S.PENDING, {"handoff_confirmation_pending": False}, "confirm_handoff"
        )

    async def decline_handoff(self, conversation: Conversation) -> Conversation:
        self._require_offer(conversation, S.AI, "decline_handoff")
        return await self._apply(
            conversation, S.AI, {"handoff_confirmation_pending": False}, "decline_handoff"
        )

    async def operator_join(
        self, conversation: Conversation, operator: OperatorRef
    ) -> Conversation:
        if (
            conversation.status is S.ACTIVE
            and conversation.operator is not None
            and conversation.operator.id == operator.id
        ):
            return conversation
        self._require(conversation, S.ACTIVE, {S.AI, S.PENDING, S.INACTIVE}, "operator_join")
        patch = {
            "operator_id": operator.id,
            "operator_name": operator.name,
            "handoff_confirmation_pending": False,
        }
        return await self._apply(conversation, S.ACTIVE, patch, "operator_join")

    async def operator_leave(self, conversation: Conversation) -> Conversation:
        """`active -> ai` y aviso en el chat de que retoma el asistente."""
        self._require(conversation, S.AI, {S.ACTIVE}, "operator_leave")
        updated = await self._apply(
            conversation,
            S.AI,
            {"operator_id": None, "operator_name": None},
            "operator_leave",
        )
        await self.record_message(updated.id, MessageRole.SYSTEM, self.assistant_resumed_text)
        return updated

    async def mark_inactive(self, conversation: Conversation) -> Conversation:
        self._require(conversation, S.INACTIVE, {S.AI, S.ACTIVE}, "mark_inactive")
        return await self._apply(conversation, S.INACTIVE, {}, "mark_inactive")

    async def resume(
        self, conversation: Conversation, *, keep_operator: bool = True
    ) -> Conversation:
        """`inactive -> active` si sigue asignado un operador, si no `-> ai`.

        Con `keep_operator=False` (botón "reiniciar chat") se libera al operador
        y siempre vuelve el asistente. La marca de actividad se renueva para que
        el barrido no la vuelva a marcar inactiva de inmediato.
        """
        patch: dict[str, Any] = {"last_message_at": SERVER_TIMESTAMP}
        if keep_operator and conversation.operator is not None:
            target = S.ACTIVE
        else:
            target = S.AI
            patch.update(operator_id=None, operator_name=None)
        self._require(conversation, target, {S.INACTIVE}, "resume")
        return await self._apply(conversation, target, patch, "resume")

    async def end(self, conversation: Conversation, *, ended_by: str) -> Conversation:
        """Cierra la conversación con un único mensaje de sistema.

        Repetir el cierre (o cerrar una ya cerrada) no escribe nada.
        """
        if conversation.status is S.ENDED or conversation.last_message == self.ended_text:
            return conversation
        self._require(conversation, S.ENDED, set(S) - TERMINAL_STATUSES, "end")
        closed = await self.store.end_conversations(
            [conversation.id], text=self.ended_text, ended_by=ended_by
        )
        updated = await self.get(conversation.id)
        if closed:
            self._announce(conversation, updated, "end", ended_by=ended_by)
            self._publish_message_event(updated.id, MessageRole.SYSTEM, self.ended_text)
        return updated

    async def archive(self, conversation: Conversation) -> Conversation:
        self._require(
            conversation, S.ARCHIVED, set(S) - {S.ARCHIVED}, "archive"
        )
        return await self._apply(
            conversation, S.ARCHIVED, {"handoff_confirmation_pending": False}, "archive"
        )

    async def record_message(
        self,
        conversation_id: str,
        role: MessageRole,
        content: str,
        *,
        operator_name: str | None = None,
        unread: UnreadChange | None = None,
    ) -> Message:
        """Agrega un mensaje y lo notifica a los suscriptores de la conversación."""
        message = await self.store.append_message(
            conversation_id,
            role,
            content,
            operator_name=operator_name,
            unread=unread,
        )
        self.events.publish(
            ConversationEvent(
                conversation_id,
                "message",
                {
                    "id": message.id,
                    "role": message.role.value,
                    "content": message.content,
                    "operatorName": message.operator_name,
                    "timestamp": message.timestamp.isoformat(),
                },
            )
        )
        return message

    def _require(
        self,
        conversation: Conversation,
        target: ConversationStatus,
        sources: set[ConversationStatus],
        transition: str,
    ) -> None:
        current = conversation.status
        if current not in sources or not can_transition(current, target):
            raise InvalidTransition(current.value, target.value, reason=transition)

    def _require_offer(
        self, conversation: Conversation, target: ConversationStatus, transition: str
    ) -> None:
        self._require(conversation, target, {S.PENDING}, transition)
        if not conversation.handoff_confirmation_pending:
            raise InvalidTransition(
                conversation.status.value,
                target.value,
                reason=f"{transition} requires a pending handoff offer",
            )

    async def _apply(
        self,
        conversation: Conversation,
        target: ConversationStatus,
        patch: dict[str, Any],
        transition: str,
    ) -> Conversation:
        updated = await self.store.update_conversation(
            conversation.id, {"status": target.value, **patch}
        )
        self._announce(conversation, updated, transition)
        return updated

    def _announce(
        self,
        before: Conversation,
        after: Conversation,
        transition: str,
        **extra: Any,
    ) -> None:
        log_event(
            logger,
            "conversation.transition",
            conversation_id=after.id,
            transition=transition,
            from_status=before.status.value,
            to_status=after.status.value,
            **extra,
        )
        self.events.publish(
            ConversationEvent(
                after.id,
                "status",
                {
                    "status": after.status.value,
                    "previousStatus": before.status.value,
                    "transition": transition,
                    "handoffConfirmationPending": after.handoff_confirmation_pending,
                    "operator": after.operator.model_dump() if after.operator else None,
                },
            )
        )

    def _publish_message_event(self, conversation_id: str, role: MessageRole, content: str) -> None:
        self.events.publish(
            ConversationEvent(conversation_id, "message", {"role": role.value, "content": content})
        )
