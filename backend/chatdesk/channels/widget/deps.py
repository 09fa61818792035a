"""Dependencias comunes para el canal del widget."""

from fastapi import Depends, Header, HTTPException, status

from chatdesk.api.deps import get_services
from chatdesk.core.security import parse_bearer, verify_jwt
from chatdesk.services.container import ChatServices


async def get_visitor_id(
    authorization: str | None = Header(default=None),
    services: ChatServices = Depends(get_services),
) -> str | None:
    """`sub` del token del visitante emitido en `/widget/session`.

    Sin secreto configurado no se exige token (entornos de desarrollo).
    """
    secret = services.visitor_jwt_secret
    if not secret:
        return None
    claims = verify_jwt(parse_bearer(authorization), secret)
    if not claims or not claims.get("sub"):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid visitor token")
    return str(claims["sub"])
