"""Punto de entrada principal para la aplicación FastAPI."""

import logging
from pathlib import Path

import uvicorn
from fastapi import FastAPI

from app.api.routes.health import SERVICE_NAME
from app.api.routes.health import router as health_router
from app.channels.kommo.router import router as kommo_router
from app.channels.line.router import router as line_router
from app.core.config import settings
from app.core.logging import configure_logging, get_logger, resolve_log_level
from app.core.middleware import RequestLoggingMiddleware
from app.core.security import mask_secret


def create_app() -> FastAPI:
    """Crea y configura la instancia de FastAPI."""
    default_log_level = logging.DEBUG if settings.environment != "production" else logging.INFO
    log_level = resolve_log_level(settings.log_level, default=default_log_level)
    per_logger_files: dict[str, str] = {}
    if settings.log_file_path:
        log_dir = Path(settings.log_file_path).parent
        per_logger_files = {
            "app.request": str(log_dir / "request.log"),
            "app.channels.line": str(log_dir / "line.log"),
            "app.channels.kommo": str(log_dir / "kommo.log"),
        }

    configure_logging(
        level=log_level,
        service=SERVICE_NAME,
        log_file=settings.log_file_path,
        per_logger_files=per_logger_files,
    )

    app = FastAPI(title="LINE-Kommo bridge", version="0.1.0")

    # Sin CORSMiddleware global: el webhook de Kommo responde su propio preflight en JSON
    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(health_router)
    app.include_router(line_router)
    app.include_router(kommo_router)

    get_logger("app").info(
        "app.configured",
        extra={
            "environment": settings.environment,
            "line_secret": mask_secret(settings.line_channel_secret),
            "kommo_subdomain": settings.kommo_subdomain,
        },
    )
    return app


app = create_app()


def run() -> None:  # pragma: no cover - arranque manual
    """Arranca uvicorn en el puerto configurado."""
    uvicorn.run("app.main:app", host="0.0.0.0", port=settings.port, log_config=None)
