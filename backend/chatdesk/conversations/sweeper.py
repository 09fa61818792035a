"""Cierre por inactividad de conversaciones.

Una sola regla (`evaluate`) alimenta a los dos conductores: la revisión de una
conversación que dispara el widget al consultar su estado y el barrido masivo
del cron/scheduler. La hora siempre es la del almacén.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from chatdesk.core.errors import InvalidTransition, SweepWriteFailure
from chatdesk.core.logging import get_logger, log_event
from chatdesk.models.conversation import (
    OPEN_STATUSES,
    Conversation,
    ConversationStatus,
)
from chatdesk.services.events import ConversationEvent
from chatdesk.services.storage import StorageError

from .state_machine import ConversationStateMachine

logger = get_logger("chatdesk.sweeper")

IDLE_STATUSES = frozenset({ConversationStatus.AI, ConversationStatus.ACTIVE})


class SweepAction(str, Enum):
    NONE = "none"
    INACTIVE = "inactive"
    ENDED = "ended"


@dataclass(slots=True, frozen=True)
class SweepPolicy:
    inactive_after: timedelta = timedelta(minutes=5)
    ended_after: timedelta = timedelta(hours=3)
    ended_text: str = "Biseda përfundoi."


@dataclass(slots=True)
class SweepReport:
    inactive: int = 0
    ended: int = 0
    failed_chunks: int = 0

    @property
    def total(self) -> int:
        return self.inactive + self.ended


def evaluate(conversation: Conversation, now: datetime, policy: SweepPolicy) -> SweepAction:
    """Acción que corresponde a la conversación en el instante `now`."""
    if conversation.is_terminal:
        return SweepAction.NONE
    last_activity = conversation.last_message_at or conversation.created_at
    if last_activity is None:
        return SweepAction.NONE
    idle = now - last_activity
    if idle > policy.ended_after:
        if conversation.last_message == policy.ended_text:
            return SweepAction.NONE
        return SweepAction.ENDED
    if conversation.status in IDLE_STATUSES and idle > policy.inactive_after:
        return SweepAction.INACTIVE
    return SweepAction.NONE


def _chunks(items: Sequence[str], size: int) -> list[Sequence[str]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


class IdleSweeper:
    def __init__(
        self,
        state_machine: ConversationStateMachine,
        policy: SweepPolicy,
        *,
        chunk_size: int = 100,
        scan_limit: int = 1000,
    ) -> None:
        self.state_machine = state_machine
        self.store = state_machine.store
        self.policy = policy
        self.chunk_size = chunk_size
        self.scan_limit = scan_limit

    async def check_conversation(self, conversation_id: str) -> Conversation:
        """Aplica la regla a una conversación y retorna su estado resultante."""
        conversation = await self.state_machine.get(conversation_id)
        now = await self.store.server_now()
        action = evaluate(conversation, now, self.policy)
        try:
            if action is SweepAction.ENDED:
                return await self.state_machine.end(conversation, ended_by="client-check")
            if action is SweepAction.INACTIVE:
                return await self.state_machine.mark_inactive(conversation)
        except InvalidTransition as exc:
            # Otro escritor cambió el estado entre la lectura y la escritura.
            logger.info(
                "sweeper.check_skipped",
                extra={"conversation_id": conversation_id, "error": exc.message},
            )
            return await self.state_machine.get(conversation_id)
        return conversation

    async def sweep(self, now: datetime | None = None) -> SweepReport:
        """Barrido masivo; cada bloque es una escritura atómica independiente."""
        if now is None:
            now = await self.store.server_now()
        report = SweepReport()

        ended_cutoff = now - self.policy.ended_after
        stale = await self.store.find_stale_conversations(
            OPEN_STATUSES, before=ended_cutoff, limit=self.scan_limit
        )
        to_end = [c.id for c in stale if evaluate(c, now, self.policy) is SweepAction.ENDED]
        for chunk in _chunks(to_end, self.chunk_size):
            try:
                closed = await self.store.end_conversations(
                    chunk, text=self.policy.ended_text, ended_by="sweep", before=ended_cutoff
                )
            except StorageError as exc:
                self._chunk_failed("end", chunk, exc)
                report.failed_chunks += 1
                continue
            report.ended += len(closed)
            self._publish(closed, ConversationStatus.ENDED)

        inactive_cutoff = now - self.policy.inactive_after
        idle = await self.store.find_stale_conversations(
            IDLE_STATUSES, before=inactive_cutoff, limit=self.scan_limit
        )
        to_idle = [c.id for c in idle if evaluate(c, now, self.policy) is SweepAction.INACTIVE]
        for chunk in _chunks(to_idle, self.chunk_size):
            try:
                changed = await self.store.set_status_many(
                    chunk,
                    ConversationStatus.INACTIVE,
                    from_statuses=IDLE_STATUSES,
                    before=inactive_cutoff,
                )
            except StorageError as exc:
                self._chunk_failed("inactive", chunk, exc)
                report.failed_chunks += 1
                continue
            report.inactive += len(changed)
            self._publish(changed, ConversationStatus.INACTIVE)

        log_event(
            logger,
            "sweeper.completed",
            inactive=report.inactive,
            ended=report.ended,
            failed_chunks=report.failed_chunks,
        )
        return report

    def _chunk_failed(self, phase: str, chunk: Sequence[str], exc: StorageError) -> None:
        failure = SweepWriteFailure(f"Sweep chunk ({phase}) failed: {exc.message}")
        logger.error(
            "sweeper.chunk_failed",
            extra={"phase": phase, "size": len(chunk), "error": failure.message},
        )

    def _publish(self, conversation_ids: Sequence[str], status: ConversationStatus) -> None:
        for conversation_id in conversation_ids:
            self.state_machine.events.publish(
                ConversationEvent(
                    conversation_id,
                    "status",
                    {"status": status.value, "transition": "sweep"},
                )
            )


class SweepScheduler:
    """Lazo asyncio que ejecuta `sweep` cada `interval_seconds`."""

    def __init__(self, sweeper: IdleSweeper, *, interval_seconds: float) -> None:
        self.sweeper = sweeper
        self.interval_seconds = interval_seconds
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())
        logger.info("sweeper.scheduler_started", extra={"interval": self.interval_seconds})

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("sweeper.scheduler_stopped")

    async def _run(self) -> None:
        while True:
            try:
                await self.sweeper.sweep()
            except Exception:
                logger.exception("sweeper.tick_failed")
            await asyncio.sleep(self.interval_seconds)
