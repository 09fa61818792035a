"""Negociación del paso de la conversación del asistente a un operador."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

from chatdesk.assistants.classifier import IntentClassifier, UserIntent
from chatdesk.assistants.client import ConversationAssistant
from chatdesk.core.logging import get_logger, log_event
from chatdesk.models.conversation import Conversation, ConversationStatus
from chatdesk.services.events import ConversationEvent

from .state_machine import ConversationStateMachine

logger = get_logger(__name__)

_OUTER_QUOTES = "\"'“”"


def _unquote(text: str) -> str:
    return text.strip().strip(_OUTER_QUOTES).strip()


@dataclass(slots=True)
class NegotiationResult:
    reply: str
    conversation: Conversation
    thread_id: str | None = None
    confidence: int | None = None

    @property
    def status(self) -> ConversationStatus:
        return self.conversation.status


class HandoffNegotiator:
    """Decide quién contesta el mensaje del visitante y ajusta el estado."""

    def __init__(
        self,
        state_machine: ConversationStateMachine,
        assistant: ConversationAssistant,
        classifier: IntentClassifier,
        *,
        handoff_offer_text: str,
        connecting_text: str,
        title_history_turns: int = 6,
    ) -> None:
        self.state_machine = state_machine
        self.assistant = assistant
        self.classifier = classifier
        self.handoff_offer_text = handoff_offer_text
        self.connecting_text = connecting_text
        self.title_history_turns = title_history_turns
        self._background: set[asyncio.Task[None]] = set()
        self._titling: set[str] = set()

    def is_handoff_offer(self, reply: str) -> bool:
        """La respuesta debe ser la frase canónica tal cual, solo sin comillas externas."""
        return _unquote(reply) == _unquote(self.handoff_offer_text)

    async def negotiate(
        self,
        conversation: Conversation,
        message: str,
        *,
        thread_id: str | None = None,
    ) -> NegotiationResult:
        thread_id = thread_id or conversation.thread_id

        if conversation.handoff_confirmation_pending:
            intent = await self.classifier.classify(message)
            log_event(
                logger,
                "handoff.classified",
                conversation_id=conversation.id,
                intent=intent.value,
            )
            if intent is UserIntent.POSITIVE:
                conversation = await self.state_machine.confirm_handoff(conversation)
                return NegotiationResult(
                    reply=self.connecting_text,
                    conversation=conversation,
                    thread_id=thread_id,
                )
            conversation = await self.state_machine.decline_handoff(conversation)

        turn = await self.assistant.reply(
            message, thread_id=thread_id, conversation_id=conversation.id
        )

        patch: dict[str, object] = {}
        if turn.thread_id and turn.thread_id != conversation.thread_id:
            patch["thread_id"] = turn.thread_id
        if turn.confidence is not None:
            patch["confidence_score"] = turn.confidence
        if patch:
            conversation = await self.state_machine.store.update_conversation(
                conversation.id, patch
            )

        if conversation.status is ConversationStatus.AI and self.is_handoff_offer(turn.text):
            conversation = await self.state_machine.offer_handoff(conversation)

        return NegotiationResult(
            reply=turn.text,
            conversation=conversation,
            thread_id=turn.thread_id or thread_id,
            confidence=turn.confidence,
        )

    async def wait_background(self) -> None:
        """Espera las tareas de título pendientes (apagado y tests)."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    def schedule_title(self, conversation: Conversation) -> None:
        """Genera el título en segundo plano si falta y no hay otra tarea en curso.

        Se llama después de guardar la respuesta del asistente para que el
        historial incluya el turno actual.
        """
        if conversation.title or conversation.id in self._titling:
            return
        self._titling.add(conversation.id)
        task = asyncio.create_task(self._generate_title(conversation.id))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        task.add_done_callback(lambda _: self._titling.discard(conversation.id))

    async def _generate_title(self, conversation_id: str) -> None:
        try:
            history = await self.state_machine.store.list_messages(
                conversation_id, limit=self.title_history_turns
            )
            title = await self.assistant.generate_title(history)
            if not title:
                return
            await self.state_machine.store.update_conversation(conversation_id, {"title": title})
        except Exception:
            logger.exception("handoff.title_failed", extra={"conversation_id": conversation_id})
            return
        self.state_machine.events.publish(
            ConversationEvent(conversation_id, "title", {"title": title})
        )
