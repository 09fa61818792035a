"""Cliente centralizado para interactuar con OpenAI."""

from functools import lru_cache

from openai import AsyncOpenAI


@lru_cache(maxsize=4)
def get_openai_client(api_key: str | None) -> AsyncOpenAI:
    """Crea un cliente asíncrono reutilizable por API key."""
    if not api_key:
        msg = "OPENAI_API_KEY is not configured"
        raise RuntimeError(msg)
    return AsyncOpenAI(api_key=api_key)
