"""Clasificación de la respuesta del visitante a la oferta de handoff."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Callable
from enum import Enum

from openai import AsyncOpenAI

from chatdesk.core.errors import ClassifierFailure
from chatdesk.core.logging import get_logger

logger = get_logger(__name__)

CLASSIFIER_PROMPT = """You are a helpful assistant that classifies user responses to a specific question: "Do you want me to connect you with support?".

Classify the user's response into one of three categories:
- POSITIVE: The user wants to be connected (e.g., "Yes", "Please", "Okay", "Sure", "Po", "Po te lutem").
- NEGATIVE: The user does NOT want to be connected (e.g., "No", "No thanks", "Jo", "Jo faleminderit").
- OTHER: The user is saying something else, asking a new question, or the response is unrelated (e.g., "How much is it?", "What time is it?").

Respond ONLY with the category name: POSITIVE, NEGATIVE, or OTHER."""


class UserIntent(str, Enum):
    POSITIVE = "POSITIVE"
    NEGATIVE = "NEGATIVE"
    OTHER = "OTHER"


def parse_intent(label: str | None) -> UserIntent:
    """Sólo POSITIVE/NEGATIVE exactos cuentan; todo lo demás es OTHER."""
    normalized = (label or "").strip().strip(".").upper()
    try:
        return UserIntent(normalized)
    except ValueError:
        return UserIntent.OTHER


class IntentClassifier(ABC):
    @abstractmethod
    async def classify(self, message: str) -> UserIntent:
        """Nunca lanza: cualquier fallo se reporta como OTHER."""


class OpenAIIntentClassifier(IntentClassifier):
    """Clasificador determinista (temperature 0) con tiempo máximo acotado."""

    def __init__(
        self, client_factory: Callable[[], AsyncOpenAI], *, model: str, timeout: float = 5.0
    ) -> None:
        self._client = client_factory
        self._model = model
        self._timeout = timeout

    async def classify(self, message: str) -> UserIntent:
        try:
            label = await asyncio.wait_for(self._request_label(message), self._timeout)
        except asyncio.TimeoutError:
            logger.warning("classifier.timeout", extra={"timeout": self._timeout})
            return UserIntent.OTHER
        except ClassifierFailure as exc:
            logger.warning("classifier.failed", extra={"error": exc.message})
            return UserIntent.OTHER
        return parse_intent(label)

    async def _request_label(self, message: str) -> str:
        try:
            completion = await self._client().chat.completions.create(
                model=self._model,
                messages=[
                    {"role": "system", "content": CLASSIFIER_PROMPT},
                    {"role": "user", "content": message},
                ],
                temperature=0,
                max_tokens=10,
            )
        except Exception as exc:
            raise ClassifierFailure(str(exc)) from exc
        choices = completion.choices or []
        if not choices or not choices[0].message.content:
            raise ClassifierFailure("Respuesta vacía del clasificador")
        return choices[0].message.content
