"""Ensambla los componentes del servicio a partir de `Settings`."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from functools import partial

from chatdesk.assistants import registry
from chatdesk.assistants.classifier import IntentClassifier, OpenAIIntentClassifier
from chatdesk.assistants.client import ConversationAssistant, OpenAIAssistant
from chatdesk.conversations.bootstrap import SessionBootstrapper
from chatdesk.conversations.handoff import HandoffNegotiator
from chatdesk.conversations.presence import TypingPresenceTracker
from chatdesk.conversations.state_machine import ConversationStateMachine
from chatdesk.conversations.sweeper import IdleSweeper, SweepPolicy, SweepScheduler
from chatdesk.core.config import Settings

from .events import EventBus
from .identity import IdentityIssuer, SupabaseIdentityIssuer
from .openai import get_openai_client
from .storage import ConversationStore
from .supabase import SupabaseConversationStore


@dataclass(slots=True)
class ChatServices:
    """Grafo de dependencias que consumen los routers."""

    store: ConversationStore
    identity: IdentityIssuer
    events: EventBus
    assistant: ConversationAssistant
    state_machine: ConversationStateMachine
    bootstrapper: SessionBootstrapper
    negotiator: HandoffNegotiator
    sweeper: IdleSweeper
    presence: TypingPresenceTracker
    scheduler: SweepScheduler
    cron_secret: str | None = None
    visitor_jwt_secret: str | None = None
    scheduler_enabled: bool = False


def assemble_services(
    settings: Settings,
    *,
    store: ConversationStore,
    identity: IdentityIssuer,
    assistant: ConversationAssistant,
    classifier: IntentClassifier,
    events: EventBus | None = None,
) -> ChatServices:
    """Conecta los componentes del núcleo con los colaboradores dados."""
    events = events or EventBus()
    state_machine = ConversationStateMachine(
        store,
        events,
        ended_text=settings.conversation_ended_text,
        assistant_resumed_text=settings.assistant_resumed_text,
    )
    sweeper = IdleSweeper(
        state_machine,
        SweepPolicy(
            inactive_after=timedelta(minutes=settings.inactive_after_minutes),
            ended_after=timedelta(minutes=settings.ended_after_minutes),
            ended_text=settings.conversation_ended_text,
        ),
        chunk_size=settings.sweep_chunk_size,
    )
    return ChatServices(
        store=store,
        identity=identity,
        events=events,
        assistant=assistant,
        state_machine=state_machine,
        bootstrapper=SessionBootstrapper(
            store, identity, default_welcome_message=settings.default_welcome_message
        ),
        negotiator=HandoffNegotiator(
            state_machine,
            assistant,
            classifier,
            handoff_offer_text=settings.handoff_offer_text,
            connecting_text=settings.handoff_connecting_text,
            title_history_turns=settings.title_history_turns,
        ),
        sweeper=sweeper,
        presence=TypingPresenceTracker(store, events, ttl_seconds=settings.typing_ttl_seconds),
        scheduler=SweepScheduler(sweeper, interval_seconds=settings.sweep_interval_seconds),
        cron_secret=settings.cron_secret,
        visitor_jwt_secret=settings.supabase_jwt_secret,
        scheduler_enabled=settings.sweep_scheduler_enabled,
    )


def build_services(settings: Settings) -> ChatServices:
    """Servicios de producción: Supabase para datos e identidad, OpenAI para lenguaje."""
    client_factory = partial(get_openai_client, settings.openai_api_key)
    return assemble_services(
        settings,
        store=SupabaseConversationStore(settings.supabase_url, settings.supabase_service_role),
        identity=SupabaseIdentityIssuer(
            settings.supabase_url,
            settings.supabase_anon or settings.supabase_service_role,
            settings.supabase_jwt_secret,
            token_ttl_seconds=settings.visitor_token_ttl_seconds,
        ),
        assistant=OpenAIAssistant(
            client_factory,
            registry.resolve_assistant(registry.AssistantRole.SUPPORT),
            timeout=settings.assistant_timeout_seconds,
        ),
        classifier=OpenAIIntentClassifier(
            client_factory,
            model=registry.resolve_assistant(registry.AssistantRole.CLASSIFIER).model,
            timeout=settings.classifier_timeout_seconds,
        ),
    )
