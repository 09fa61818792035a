"""Disparador del barrido de inactividad para un scheduler externo."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Header, HTTPException, status
from fastapi.responses import JSONResponse

from chatdesk.api.deps import get_services
from chatdesk.core.logging import get_logger
from chatdesk.core.security import SignatureError, verify_bearer_secret
from chatdesk.services.container import ChatServices
from chatdesk.services.storage import StorageError

router = APIRouter(prefix="/cron", tags=["cron"])

logger = get_logger(__name__)


@router.api_route("/sweep", methods=["GET", "POST"], summary="Ejecuta el barrido de inactividad")
async def run_sweep(
    authorization: str | None = Header(default=None),
    services: ChatServices = Depends(get_services),
) -> Any:
    """Idempotente: una segunda ejecución sobre el mismo estado no cambia nada."""
    try:
        verify_bearer_secret(services.cron_secret, authorization)
    except SignatureError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized") from exc

    try:
        report = await services.sweeper.sweep()
    except StorageError as exc:
        logger.exception("cron.sweep_failed", extra={"error": exc.message})
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"success": False, "message": exc.message},
        )

    return {
        "success": True,
        "inactive": report.inactive,
        "ended": report.ended,
        "failedChunks": report.failed_chunks,
        "message": f"Marked {report.inactive} chats as inactive and {report.ended} as ended.",
    }
