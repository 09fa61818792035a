"""Endpoint de salud mínimo para validaciones rápidas."""
from fastapi import APIRouter, Depends

from chatdesk.api.deps import get_services
from chatdesk.services.container import ChatServices

router = APIRouter(prefix="/health", tags=["health"])


@router.get("", summary="Estado del servicio")
def healthcheck(services: ChatServices = Depends(get_services)) -> dict[str, str | int | bool]:
    """Retorna un payload indicando que la API está viva."""
    return {
        "status": "ok",
        "scheduler": services.scheduler.running,
        "subscribers": services.events.subscriber_count,
    }
