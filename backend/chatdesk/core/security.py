"""Helpers de firma: secreto compartido del cron y tokens HS256 de visitantes."""

from __future__ import annotations

import hmac
from typing import Any

import jwt

JWT_ALGORITHM = "HS256"
JWT_AUDIENCE = "authenticated"


class SignatureError(Exception):
    """Excepción genérica para firmas o secretos inválidos."""


def verify_bearer_secret(expected: str | None, authorization: str | None) -> None:
    """Valida `Authorization: Bearer <secreto>` contra el secreto configurado.

    Sin secreto configurado la validación se omite (endpoint abierto).
    """
    if not expected:
        return
    token = parse_bearer(authorization)
    if token is None or not hmac.compare_digest(token, expected):
        raise SignatureError("Invalid shared secret")


def parse_bearer(authorization: str | None) -> str | None:
    if not authorization:
        return None
    if authorization.lower().startswith("bearer "):
        return authorization.split(" ", 1)[1].strip() or None
    return None


def sign_jwt(claims: dict[str, Any], secret: str) -> str:
    """Firma `claims` como JWT HS256 compatible con Supabase."""
    return jwt.encode(claims, secret, algorithm=JWT_ALGORITHM)


def verify_jwt(token: str | None, secret: str) -> dict[str, Any] | None:
    """Verifica firma, algoritmo, audiencia y expiración; `None` si no es válido."""
    if not token:
        return None
    try:
        return jwt.decode(token, secret, algorithms=[JWT_ALGORITHM], audience=JWT_AUDIENCE)
    except jwt.PyJWTError:
        return None


def mask_secret(value: str | None) -> str | None:
    """Enmascara secretos para logging seguro."""
    if not value:
        return value
    if len(value) <= 4:
        return "***"
    return f"{value[:2]}***{value[-2:]}"
