"""Arranque de sesiones del widget: dominio, identidad y conversación."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from chatdesk.core.errors import ConfigurationMissing, DomainRejected
from chatdesk.core.logging import get_logger, log_event
from chatdesk.models.conversation import Conversation, NewConversation, WidgetSettings
from chatdesk.services.identity import IdentityIssuer
from chatdesk.services.storage import ConversationStore, DuplicateConversation, StorageError

from .allowlist import hostname_from_origin, is_allowed

logger = get_logger(__name__)


@dataclass(slots=True)
class BootstrapResult:
    conversation_id: str
    visitor_id: str
    token: str
    welcome_message: str
    resumed: bool = False


class SessionBootstrapper:
    """Resuelve o crea la conversación de un `chat_id` y emite su token."""

    def __init__(
        self,
        store: ConversationStore,
        identity: IdentityIssuer,
        *,
        default_welcome_message: str,
    ) -> None:
        self.store = store
        self.identity = identity
        self.default_welcome_message = default_welcome_message

    async def load_widget_settings(self) -> WidgetSettings:
        """Configuración del widget; si falta se permite todo con el saludo por defecto."""
        try:
            widget_settings = await self.store.get_widget_settings()
            if widget_settings is None:
                raise ConfigurationMissing("Widget settings are not configured")
        except (ConfigurationMissing, StorageError) as exc:
            logger.warning("bootstrap.settings_missing", extra={"error": str(exc)})
            return WidgetSettings(
                allowed_domains=["*"], welcome_message=self.default_welcome_message
            )
        return widget_settings

    async def bootstrap(
        self,
        chat_id: str,
        origin: str,
        client_params: dict[str, Any] | None = None,
    ) -> BootstrapResult:
        widget_settings = await self.load_widget_settings()
        hostname = hostname_from_origin(origin)
        if not is_allowed(hostname, widget_settings.allowed_domains):
            log_event(logger, "bootstrap.domain_rejected", chat_id=chat_id, hostname=hostname)
            raise DomainRejected(hostname)

        resumed = True
        conversation = await self.store.find_conversation_by_external_id(chat_id)
        if conversation is None:
            conversation, resumed = await self._create(chat_id, client_params or {})

        token = await self.identity.issue_token(conversation.visitor_id)
        log_event(
            logger,
            "bootstrap.completed",
            chat_id=chat_id,
            conversation_id=conversation.id,
            resumed=resumed,
        )
        return BootstrapResult(
            conversation_id=conversation.id,
            visitor_id=conversation.visitor_id,
            token=token,
            welcome_message=widget_settings.welcome_message or self.default_welcome_message,
            resumed=resumed,
        )

    async def _create(
        self, chat_id: str, client_params: dict[str, Any]
    ) -> tuple[Conversation, bool]:
        previous = await self.store.find_conversation_by_external_id(
            chat_id, include_terminal=True
        )
        minted = previous is None
        visitor_id = previous.visitor_id if previous else await self.identity.create_visitor()

        try:
            conversation = await self.store.create_conversation(
                NewConversation(
                    external_id=chat_id,
                    visitor_id=visitor_id,
                    client_params=client_params,
                )
            )
        except DuplicateConversation:
            winner = await self.store.find_conversation_by_external_id(chat_id)
            if winner is None:
                raise
            if minted and winner.visitor_id != visitor_id:
                logger.warning(
                    "bootstrap.identity_orphaned",
                    extra={"chat_id": chat_id, "visitor_id": visitor_id},
                )
            return winner, True

        log_event(
            logger,
            "conversation.created",
            conversation_id=conversation.id,
            chat_id=chat_id,
            visitor_reused=not minted,
        )
        return conversation, False
