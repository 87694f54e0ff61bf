"""Endpoints de salud mínimos para validaciones rápidas."""
from datetime import datetime, timezone

from fastapi import APIRouter
from fastapi.responses import PlainTextResponse

from app.core.config import settings

SERVICE_NAME = "line-kommo-bridge"

router = APIRouter(tags=["health"])


@router.get("/", response_class=PlainTextResponse, include_in_schema=False)
def root() -> str:
    return "LINE-Kommo bridge is running"


@router.get("/status", summary="Estado del servicio")
def status() -> dict[str, object]:
    """Indica que la API está viva y qué integraciones tienen credenciales."""
    return {
        "ok": True,
        "service": SERVICE_NAME,
        "timestamp": datetime.now(timezone.utc).isoformat(timespec="seconds"),
        "environment": settings.environment,
        "line_configured": bool(settings.line_channel_access_token),
        "kommo_configured": bool(settings.kommo_base_url),
    }
