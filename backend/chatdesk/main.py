"""Punto de entrada principal para la aplicación FastAPI."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from chatdesk.api.deps import STATUS_BY_KIND
from chatdesk.api.routes.cron import router as cron_router
from chatdesk.api.routes.desk import router as desk_router
from chatdesk.api.routes.health import router as health_router
from chatdesk.channels.widget.router import router as widget_router
from chatdesk.core.config import settings
from chatdesk.core.errors import ChatdeskError
from chatdesk.core.logging import configure_logging, get_logger, resolve_log_level
from chatdesk.core.middleware import RequestLoggingMiddleware
from chatdesk.services.container import ChatServices, build_services

log = get_logger("chatdesk")


def _configure_logging() -> None:
    default_log_level = logging.DEBUG if settings.environment != "production" else logging.INFO
    log_level = resolve_log_level(settings.log_level, default=default_log_level)
    per_logger_files: dict[str, str] = {}
    if settings.log_file_path:
        log_dir = Path(settings.log_file_path).parent
        per_logger_files = {
            "chatdesk.request": str(log_dir / "request.log"),
            "chatdesk.sweeper": str(log_dir / "sweeper.log"),
        }

    configure_logging(
        level=log_level,
        log_file=settings.log_file_path,
        per_logger_files=per_logger_files,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    services: ChatServices = app.state.services
    if services.scheduler_enabled:
        services.scheduler.start()
    try:
        yield
    finally:
        await services.scheduler.stop()
        await services.negotiator.wait_background()


async def _chatdesk_error_handler(request: Request, exc: ChatdeskError) -> JSONResponse:
    status_code = STATUS_BY_KIND[exc.kind]
    if status_code >= 500:
        log.warning(
            "request.domain_error",
            extra={"path": request.url.path, "error": exc.message, "kind": exc.kind.value},
        )
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message or str(exc), "kind": exc.kind.value},
    )


def create_app(services: ChatServices | None = None) -> FastAPI:
    """Crea y configura la instancia de FastAPI.

    `services` permite inyectar colaboradores (almacén, identidad, asistente);
    sin valor se construyen desde `settings`.
    """
    _configure_logging()

    app = FastAPI(title="Chatdesk API", version="0.1.0", root_path="/api", lifespan=lifespan)
    app.state.services = services or build_services(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # El widget se embebe en dominios de terceros
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_middleware(RequestLoggingMiddleware)
    app.add_exception_handler(ChatdeskError, _chatdesk_error_handler)

    app.include_router(health_router)
    app.include_router(widget_router)
    app.include_router(desk_router)
    app.include_router(cron_router)

    @app.get("/info", tags=["info"])
    def info() -> dict[str, str | None]:  # pragma: no cover - ruta simple de apoyo
        return {
            "environment": settings.environment,
            "assistant_id": settings.openai_assistant_id,
        }

    return app


app = create_app()
