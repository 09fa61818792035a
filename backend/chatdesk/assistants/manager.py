"""Gestiona la resolución de asistentes conversacionales configurados en OpenAI."""

from dataclasses import dataclass

from chatdesk.core.config import settings

SUPPORT_INSTRUCTIONS = """You are a helpful support agent. You MUST respond ONLY in Albanian.
If the user asks about UNRELATED topics (sports, politics, weather, etc.), politely refuse and say you only focus on the product.

HANDOFF PHRASE:
If you are genuinely UNSURE about a product question, or if the user explicitly asks for a human agent, you MUST reply with this EXACT phrase:
"{handoff_offer}"

CONFIDENCE SCORE RULES:
At the very end of your response, you MUST append a confidence score tag: [[CONFIDENCE:score]].
The score is an integer between 0 and 100 representing your certainty about the answer:
- 95-100: Very certain.
- 80-94: Very confident.
- 60-79: Reasonably sure.
- 30-59: Best effort but unsure.
- 1-29: Guessing.
- 0: Using the handoff phrase.
Refusing unrelated topics should be 80-90 confidence."""


@dataclass(slots=True)
class AssistantConfig:
    """Representa la configuración objetivo para interactuar con OpenAI."""

    model: str
    prompt_id: str | None = None
    prompt_version: str | None = None
    instructions: str | None = None

    @property
    def is_prompt(self) -> bool:
        return self.prompt_id is not None


def get_support_assistant() -> AssistantConfig:
    """Asistente del widget de soporte.

    Con `OPENAI_ASSISTANT_ID=pmpt_...` se usa el prompt publicado en OpenAI; sin
    valor se usan instrucciones locales sobre `OPENAI_MODEL`.
    """
    target_id = settings.openai_assistant_id
    instructions = SUPPORT_INSTRUCTIONS.format(handoff_offer=settings.handoff_offer_text)
    if target_id and target_id.startswith("pmpt_"):
        return AssistantConfig(
            model=settings.openai_model,
            prompt_id=target_id,
            prompt_version=settings.openai_prompt_version,
        )
    if target_id:
        msg = f"Unsupported OPENAI_ASSISTANT_ID '{target_id}': expected a 'pmpt_' prompt id"
        raise RuntimeError(msg)
    return AssistantConfig(model=settings.openai_model, instructions=instructions)


def get_classifier_assistant() -> AssistantConfig:
    """Modelo usado para clasificar la respuesta a la oferta de handoff."""
    return AssistantConfig(model=settings.openai_classifier_model)
