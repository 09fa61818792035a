"""Indicadores de escritura del visitante y del operador."""

from __future__ import annotations

from datetime import datetime, timedelta

from chatdesk.models.conversation import Conversation, Party, TypingState
from chatdesk.services.events import ConversationEvent, EventBus
from chatdesk.services.storage import SERVER_TIMESTAMP, ConversationStore

_COLUMNS = {Party.VISITOR: "typing_visitor", Party.OPERATOR: "typing_operator"}


def is_fresh(record: TypingState, now: datetime, ttl: timedelta = timedelta(seconds=5)) -> bool:
    if record.last_update is None:
        return False
    return now - record.last_update <= ttl


def is_typing(
    record: TypingState,
    party: Party,
    now: datetime,
    ttl: timedelta = timedelta(seconds=5),
) -> bool:
    """Una marca sin refrescar dentro de `ttl` cuenta como 'no escribe'."""
    if not is_fresh(record, now, ttl):
        return False
    return record.visitor if party is Party.VISITOR else record.operator


class TypingPresenceTracker:
    """Escribe sólo la bandera de una parte; nunca toca `status`."""

    def __init__(self, store: ConversationStore, events: EventBus, *, ttl_seconds: float = 5.0) -> None:
        self.store = store
        self.events = events
        self.ttl = timedelta(seconds=ttl_seconds)

    async def set_typing(self, conversation_id: str, party: Party, typing: bool) -> Conversation:
        conversation = await self.store.update_conversation(
            conversation_id,
            {_COLUMNS[party]: typing, "typing_updated_at": SERVER_TIMESTAMP},
        )
        self.events.publish(
            ConversationEvent(conversation_id, "typing", {"party": party.value, "typing": typing})
        )
        return conversation

    def is_typing(self, conversation: Conversation, party: Party, now: datetime) -> bool:
        return is_typing(conversation.typing, party, now, self.ttl)
