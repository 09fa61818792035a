"""Pruebas del bus de eventos en memoria."""

import pytest

from chatdesk.services.events import ConversationEvent, EventBus


@pytest.mark.asyncio
async def test_subscription_receives_only_its_conversation() -> None:
    bus = EventBus()
    mine = bus.subscribe("conv-1")
    everything = bus.subscribe()

    delivered = bus.publish(ConversationEvent("conv-2", "status", {"status": "ai"}))
    bus.publish(ConversationEvent("conv-1", "typing", {"typing": True}))

    assert delivered == 1
    event = await mine.get(timeout=0.1)
    assert event is not None
    assert event.as_dict() == {"conversationId": "conv-1", "kind": "typing", "typing": True}
    assert (await everything.get(timeout=0.1)).conversation_id == "conv-2"


@pytest.mark.asyncio
async def test_full_queue_drops_instead_of_blocking() -> None:
    bus = EventBus(queue_size=1)
    subscription = bus.subscribe("conv-1")

    assert bus.publish(ConversationEvent("conv-1", "message")) == 1
    assert bus.publish(ConversationEvent("conv-1", "message")) == 0
    assert subscription.queue.qsize() == 1


@pytest.mark.asyncio
async def test_cancel_ends_iteration_and_unsubscribes() -> None:
    bus = EventBus()
    subscription = bus.subscribe("conv-1")
    bus.publish(ConversationEvent("conv-1", "status"))

    subscription.cancel()
    received = [event async for event in subscription]

    assert [e.kind for e in received] == ["status"]
    assert bus.subscriber_count == 0
    assert await subscription.get(timeout=0.01) is None


@pytest.mark.asyncio
async def test_get_times_out_with_none() -> None:
    subscription = EventBus().subscribe()

    assert await subscription.get(timeout=0.01) is None
