"""Verificación del origen del widget contra la lista de dominios permitidos."""

from __future__ import annotations

import re
from collections.abc import Iterable
from functools import lru_cache
from urllib.parse import urlsplit

ALLOW_ALL = "*"


@lru_cache(maxsize=256)
def _compile(pattern: str) -> re.Pattern[str]:
    # `*` equivale a cualquier subcadena; el resto se compara literal.
    regex = re.escape(pattern).replace(r"\*", ".*")
    return re.compile(regex, re.IGNORECASE)


def is_allowed(hostname: str | None, patterns: Iterable[str] | None) -> bool:
    """True si `hostname` coincide completo con algún patrón.

    Una lista vacía o con `*` permite cualquier origen, incluso uno ilegible.
    """
    cleaned = [p.strip() for p in (patterns or []) if p and p.strip()]
    if not cleaned or ALLOW_ALL in cleaned:
        return True
    if not hostname:
        return False
    host = hostname.strip().rstrip(".")
    return any(_compile(pattern).fullmatch(host) for pattern in cleaned)


def hostname_from_origin(origin: str | None) -> str | None:
    """Extrae el hostname de una URL (`https://a.b:8080/x`) o de un host suelto."""
    if not origin:
        return None
    candidate = origin.strip()
    if not candidate:
        return None
    if "://" not in candidate:
        candidate = f"//{candidate}"
    try:
        hostname = urlsplit(candidate).hostname
    except ValueError:
        return None
    return hostname or None
