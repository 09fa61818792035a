"""Pruebas de los indicadores de escritura."""

from datetime import timedelta

import pytest

from chatdesk.conversations.presence import TypingPresenceTracker, is_typing
from chatdesk.models.conversation import ConversationStatus, Party, TypingState
from chatdesk.services.events import EventBus
from fakes import T0, MemoryStore


def test_stale_typing_record_counts_as_not_typing() -> None:
    record = TypingState(visitor=True, operator=False, last_update=T0)

    assert is_typing(record, Party.VISITOR, T0 + timedelta(seconds=4))
    assert not is_typing(record, Party.VISITOR, T0 + timedelta(seconds=6))
    assert not is_typing(record, Party.OPERATOR, T0 + timedelta(seconds=1))


def test_record_without_timestamp_is_not_typing() -> None:
    assert not is_typing(TypingState(visitor=True), Party.VISITOR, T0)


@pytest.mark.asyncio
async def test_set_typing_touches_only_one_party(store: MemoryStore) -> None:
    events = EventBus()
    tracker = TypingPresenceTracker(store, events, ttl_seconds=5)
    conversation = store.seed(status=ConversationStatus.INACTIVE)
    store.rows[conversation.id]["typing_operator"] = True
    subscription = events.subscribe(conversation.id)

    updated = await tracker.set_typing(conversation.id, Party.VISITOR, True)

    assert updated.typing.visitor is True
    assert updated.typing.operator is True
    assert updated.typing.last_update == store.now
    assert updated.status is ConversationStatus.INACTIVE
    assert tracker.is_typing(updated, Party.VISITOR, store.now)
    assert not tracker.is_typing(updated, Party.VISITOR, store.now + timedelta(seconds=10))
    event = await subscription.get(timeout=0.1)
    assert event is not None
    assert event.payload == {"party": "visitor", "typing": True}
