"""Dependencias compartidas por los routers."""

from fastapi import HTTPException, Request, status

from chatdesk.core.errors import ChatdeskError, ErrorKind
from chatdesk.services.container import ChatServices

STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.REJECTED: status.HTTP_409_CONFLICT,
    ErrorKind.TRANSIENT: status.HTTP_502_BAD_GATEWAY,
}


def get_services(request: Request) -> ChatServices:
    """Servicios ensamblados en el arranque de la app."""
    return request.app.state.services


def http_error(exc: ChatdeskError) -> HTTPException:
    """Traduce un error del dominio a la respuesta HTTP correspondiente."""
    return HTTPException(status_code=STATUS_BY_KIND[exc.kind], detail=exc.message or str(exc))
