"""Roles de asistente del widget y su configuración en OpenAI.

`support` contesta al visitante mientras la conversación está en modo `ai`;
`classifier` sólo interpreta la respuesta a la oferta de handoff.
"""
from collections.abc import Callable
from enum import Enum

from .manager import AssistantConfig, get_classifier_assistant, get_support_assistant


class AssistantRole(str, Enum):
    SUPPORT = "support"
    CLASSIFIER = "classifier"


_RESOLVERS: dict[AssistantRole, Callable[[], AssistantConfig]] = {
    AssistantRole.SUPPORT: get_support_assistant,
    AssistantRole.CLASSIFIER: get_classifier_assistant,
}


def resolve_assistant(role: AssistantRole | str) -> AssistantConfig:
    """Configuración vigente para `role`; se lee de `settings` en cada llamada."""
    try:
        resolver = _RESOLVERS[AssistantRole(role)]
    except ValueError as exc:
        raise ValueError(f"Unknown assistant role '{role}'") from exc
    return resolver()
