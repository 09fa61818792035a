"""Cliente del asistente conversacional sobre la API Responses de OpenAI."""

from __future__ import annotations

import asyncio
import re
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

from openai import AsyncOpenAI

from chatdesk.core.errors import ChatdeskError
from chatdesk.core.logging import get_logger
from chatdesk.models.conversation import Message, MessageRole

from .manager import AssistantConfig

logger = get_logger(__name__)

_CONFIDENCE_TAG = re.compile(r"\[\[CONFIDENCE:\s*(\d+)\s*\]\]", re.IGNORECASE)

TITLE_PROMPT = """You are an AI assistant helping to label support conversations.
Generate a short, descriptive title (3-6 words) for this conversation based on the user's issue or main topic.
If there is not enough context to determine a specific topic (e.g. just greetings like "Hi", "Hello", or unclear messages), return an empty string.
Do not include quotes in the output.
Examples:
- "Login Issue on Mobile"
- "Refund Request for Order #123"
- "" (for "Hello")"""

SUMMARY_PROMPT = """You are an AI assistant helping human agents understand past conversations with users quickly.
Summarize the following conversation history, focusing on the user's problem, needs, and any solutions that have already been attempted."""

_ROLE_LABELS = {
    MessageRole.USER: "User",
    MessageRole.AI: "AI",
    MessageRole.OPERATOR: "Agent",
    MessageRole.SYSTEM: "System",
}


class AssistantUnavailable(ChatdeskError):
    """El asistente no respondió a tiempo o devolvió un error."""


@dataclass(slots=True)
class AssistantTurn:
    """Respuesta ya limpia del asistente."""

    text: str
    thread_id: str | None = None
    confidence: int | None = None


def parse_confidence(text: str) -> tuple[str, int | None]:
    """Separa la etiqueta `[[CONFIDENCE:n]]` del texto visible.

    Se eliminan todas las apariciones; el valor reportado es el de la primera.
    """
    match = _CONFIDENCE_TAG.search(text)
    if not match:
        return text.strip(), None
    confidence = max(0, min(100, int(match.group(1))))
    return _CONFIDENCE_TAG.sub("", text).strip(), confidence


def format_history(messages: Sequence[Message]) -> str:
    return "\n".join(f"{_ROLE_LABELS[m.role]}: {m.content}" for m in messages)


class ConversationAssistant(ABC):
    """Operaciones de lenguaje que usa el núcleo de conversaciones."""

    @abstractmethod
    async def reply(
        self,
        message: str,
        *,
        thread_id: str | None = None,
        conversation_id: str | None = None,
    ) -> AssistantTurn: ...

    @abstractmethod
    async def generate_title(self, history: Sequence[Message]) -> str:
        """Título de 3 a 6 palabras; cadena vacía si no hay contexto suficiente."""

    @abstractmethod
    async def summarize(self, history: Sequence[Message]) -> str: ...


class OpenAIAssistant(ConversationAssistant):
    """Implementación con `responses.create` encadenando `previous_response_id`."""

    def __init__(
        self,
        client_factory: Callable[[], AsyncOpenAI],
        config: AssistantConfig,
        *,
        timeout: float = 30.0,
    ) -> None:
        self._client = client_factory
        self._config = config
        self._timeout = timeout

    async def reply(
        self,
        message: str,
        *,
        thread_id: str | None = None,
        conversation_id: str | None = None,
    ) -> AssistantTurn:
        request_kwargs: dict[str, Any] = {
            "input": [
                {"role": "user", "content": [{"type": "input_text", "text": message}]}
            ],
            "store": True,
        }
        if self._config.is_prompt:
            request_kwargs["prompt"] = self._prompt_payload(conversation_id)
            request_kwargs["text"] = {"format": {"type": "text"}}
        else:
            request_kwargs["model"] = self._config.model
            if self._config.instructions:
                request_kwargs["instructions"] = self._config.instructions
        if conversation_id:
            request_kwargs["metadata"] = {"conversation_id": conversation_id}
        if thread_id:
            request_kwargs["previous_response_id"] = thread_id

        try:
            response = await asyncio.wait_for(
                self._client().responses.create(**request_kwargs), self._timeout
            )
        except asyncio.TimeoutError as exc:
            logger.warning(
                "assistant.reply_timeout",
                extra={"conversation_id": conversation_id, "timeout": self._timeout},
            )
            raise AssistantUnavailable("El asistente no respondió a tiempo") from exc
        except Exception as exc:
            logger.exception(
                "assistant.reply_failed",
                extra={"conversation_id": conversation_id, "error": str(exc)},
            )
            raise AssistantUnavailable(str(exc)) from exc

        response_dict = response.model_dump()
        fragments: list[str] = []
        for item in response_dict.get("output") or []:
            if item.get("type") != "message":
                continue
            for content in item.get("content") or []:
                if content.get("type") == "output_text" and content.get("text"):
                    fragments.append(content["text"].strip())
        if not fragments:
            raise AssistantUnavailable("El asistente no devolvió texto")

        text, confidence = parse_confidence("\n".join(fragments))
        return AssistantTurn(
            text=text,
            thread_id=response_dict.get("id") or thread_id,
            confidence=confidence,
        )

    async def generate_title(self, history: Sequence[Message]) -> str:
        content = await self._complete(TITLE_PROMPT, history, temperature=0.5)
        title = content.strip()
        if title in {'""', "''"}:
            return ""
        return title.strip('"').strip()

    async def summarize(self, history: Sequence[Message]) -> str:
        summary = await self._complete(SUMMARY_PROMPT, history)
        return summary.strip()

    async def _complete(
        self,
        system_prompt: str,
        history: Sequence[Message],
        *,
        temperature: float | None = None,
    ) -> str:
        kwargs: dict[str, Any] = {
            "model": self._config.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": f"Conversation History:\n{format_history(history)}"},
            ],
        }
        if temperature is not None:
            kwargs["temperature"] = temperature
        try:
            completion = await asyncio.wait_for(
                self._client().chat.completions.create(**kwargs), self._timeout
            )
        except asyncio.TimeoutError as exc:
            raise AssistantUnavailable("El asistente no respondió a tiempo") from exc
        except Exception as exc:
            raise AssistantUnavailable(str(exc)) from exc
        choices = completion.choices or []
        if not choices:
            return ""
        return choices[0].message.content or ""

    def _prompt_payload(self, conversation_id: str | None) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self._config.prompt_id,
            "variables": {"conversation_id": conversation_id or ""},
        }
        if self._config.prompt_version:
            payload["version"] = self._config.prompt_version
        return payload
