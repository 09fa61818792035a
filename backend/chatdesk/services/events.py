"""Bus en memoria para notificar cambios de conversaciones a suscriptores."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

from chatdesk.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(slots=True, frozen=True)
class ConversationEvent:
    """Cambio observable de una conversación (transición, mensaje, typing)."""

    conversation_id: str
    kind: str
    payload: dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        return {"conversationId": self.conversation_id, "kind": self.kind, **self.payload}


class Subscription:
    """Handle cancelable; se consume con `async for`."""

    def __init__(self, bus: EventBus, conversation_id: str | None, maxsize: int) -> None:
        self._bus = bus
        self.conversation_id = conversation_id
        self.queue: asyncio.Queue[ConversationEvent | None] = asyncio.Queue(maxsize=maxsize)
        self.closed = False

    def matches(self, event: ConversationEvent) -> bool:
        return self.conversation_id is None or self.conversation_id == event.conversation_id

    def cancel(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._bus._remove(self)
        try:
            self.queue.put_nowait(None)
        except asyncio.QueueFull:
            # El consumidor verá `closed` al vaciar la cola.
            pass

    async def get(self, timeout: float | None = None) -> ConversationEvent | None:
        """Siguiente evento; `None` si se canceló o venció `timeout`."""
        if self.closed and self.queue.empty():
            return None
        try:
            return await asyncio.wait_for(self.queue.get(), timeout)
        except asyncio.TimeoutError:
            return None

    def __aiter__(self) -> AsyncIterator[ConversationEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[ConversationEvent]:
        while True:
            event = await self.queue.get()
            if event is None:
                return
            yield event
            if self.closed and self.queue.empty():
                return


class EventBus:
    """Publicación sin bloqueo: una cola llena descarta el evento para ese suscriptor."""

    def __init__(self, *, queue_size: int = 100) -> None:
        self._queue_size = queue_size
        self._subscriptions: list[Subscription] = []

    def subscribe(self, conversation_id: str | None = None) -> Subscription:
        subscription = Subscription(self, conversation_id, self._queue_size)
        self._subscriptions.append(subscription)
        return subscription

    def publish(self, event: ConversationEvent) -> int:
        """Entrega el evento a los suscriptores interesados; retorna cuántos lo recibieron."""
        delivered = 0
        for subscription in list(self._subscriptions):
            if not subscription.matches(event):
                continue
            try:
                subscription.queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(
                    "events.dropped",
                    extra={"conversation_id": event.conversation_id, "kind": event.kind},
                )
                continue
            delivered += 1
        return delivered

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def _remove(self, subscription: Subscription) -> None:
        try:
            self._subscriptions.remove(subscription)
        except ValueError:
            pass
