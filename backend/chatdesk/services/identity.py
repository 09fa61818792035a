"""Emisión de identidades anónimas y tokens de corta duración para visitantes."""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from typing import Any

import httpx

from chatdesk.core.errors import IdentityIssuanceFailure
from chatdesk.core.logging import get_logger
from chatdesk.core.security import JWT_AUDIENCE, sign_jwt

logger = get_logger(__name__)


class IdentityIssuer(ABC):
    """Crea visitantes anónimos y firma tokens ligados a ellos."""

    @abstractmethod
    async def create_visitor(self) -> str:
        """Registra una identidad anónima nueva y retorna su id."""

    @abstractmethod
    async def issue_token(self, visitor_id: str) -> str:
        """Token de corta duración cuyo `sub` es `visitor_id`."""


class SupabaseIdentityIssuer(IdentityIssuer):
    """Usa el sign-up anónimo de Supabase Auth y firma con el JWT secret del proyecto."""

    def __init__(
        self,
        base_url: str | None,
        api_key: str | None,
        jwt_secret: str | None,
        *,
        token_ttl_seconds: int = 3600,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/") if base_url else None
        self._api_key = api_key
        self._jwt_secret = jwt_secret
        self._ttl = token_ttl_seconds
        self._timeout = timeout
        self._transport = transport

    async def create_visitor(self) -> str:
        if not self._base_url or not self._api_key:
            raise IdentityIssuanceFailure("Supabase Auth no está configurado (SUPABASE_URL/ANON)")
        headers = {
            "apikey": self._api_key,
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self._base_url}/auth/v1/signup", json={}, headers=headers
                )
        except httpx.RequestError as exc:
            logger.exception("identity.signup_request_failed", extra={"error": str(exc)})
            raise IdentityIssuanceFailure(f"Error al conectar a Supabase Auth: {exc}") from exc

        if response.status_code >= 400:
            logger.error(
                "identity.signup_rejected",
                extra={"status": response.status_code, "body": response.text},
            )
            raise IdentityIssuanceFailure(
                f"Supabase Auth respondió {response.status_code}: {response.text}"
            )

        visitor_id = _extract_user_id(response.json())
        if not visitor_id:
            raise IdentityIssuanceFailure("Supabase Auth no devolvió el id del usuario anónimo")
        return visitor_id

    async def issue_token(self, visitor_id: str) -> str:
        if not self._jwt_secret:
            raise IdentityIssuanceFailure("SUPABASE_JWT_SECRET no está configurado")
        issued_at = int(time.time())
        claims = {
            "sub": visitor_id,
            "role": "authenticated",
            "aud": JWT_AUDIENCE,
            "is_anonymous": True,
            "iat": issued_at,
            "exp": issued_at + self._ttl,
        }
        return sign_jwt(claims, self._jwt_secret)


def _extract_user_id(payload: Any) -> str | None:
    if not isinstance(payload, dict):
        return None
    user = payload.get("user")
    if isinstance(user, dict) and user.get("id"):
        return str(user["id"])
    # Algunas versiones de GoTrue devuelven el usuario en la raíz.
    if payload.get("id"):
        return str(payload["id"])
    return None
