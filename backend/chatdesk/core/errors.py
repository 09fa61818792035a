"""Taxonomía de errores del ciclo de vida de conversaciones."""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Clase de fallo; los routers la traducen a códigos HTTP."""

    NOT_FOUND = "not_found"
    REJECTED = "rejected"
    TRANSIENT = "transient"


class ChatdeskError(Exception):
    """Base de los errores del dominio."""

    kind: ErrorKind = ErrorKind.TRANSIENT

    def __init__(self, message: str = "", *, kind: ErrorKind | None = None) -> None:
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind


class DomainRejected(ChatdeskError):
    """El origen del widget no está en la lista de dominios permitidos."""

    kind = ErrorKind.REJECTED

    def __init__(self, hostname: str | None) -> None:
        super().__init__(f"Domain {hostname or '<invalid>'} is not allowed.")
        self.hostname = hostname


class ConfigurationMissing(ChatdeskError):
    """No hay configuración del widget; el llamador degrada a permitir todo."""

    kind = ErrorKind.NOT_FOUND


class IdentityIssuanceFailure(ChatdeskError):
    """No fue posible crear la identidad anónima o su token."""


class ClassifierFailure(ChatdeskError):
    """El clasificador de intención falló o devolvió algo no interpretable."""


class SweepWriteFailure(ChatdeskError):
    """Falló la escritura de un bloque del barrido; se reintenta en el siguiente tick."""


class InvalidTransition(ChatdeskError):
    """Cambio de estado no permitido para el estado actual."""

    kind = ErrorKind.REJECTED

    def __init__(self, current: str, target: str, *, reason: str | None = None) -> None:
        detail = f"Transition {current} -> {target} is not allowed"
        if reason:
            detail = f"{detail}: {reason}"
        super().__init__(detail)
        self.current = current
        self.target = target


class ConversationNotFound(ChatdeskError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, conversation_id: str) -> None:
        super().__init__(f"Conversation {conversation_id} not found")
        self.conversation_id = conversation_id
