"""Dependencias reutilizables para rutas de LINE."""

from fastapi import Header, HTTPException, Request, status

from app.core.config import settings
from app.core.logging import get_logger
from app.core.security import verify_line_signature
from app.services.crm_sync import CrmSyncService, get_crm_sync_service
from app.services.line import LineMessagingClient, get_line_client

logger = get_logger("app.channels.line")


async def verified_body(
    request: Request,
    x_line_signature: str | None = Header(default=None),
) -> bytes:
    """Retorna el cuerpo bruto sólo si la firma coincide con esos mismos bytes."""
    body = await request.body()
    if not verify_line_signature(settings.line_channel_secret, body, x_line_signature):
        logger.warning("line.signature_invalid", extra={"body_size": len(body)})
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_signature")
    return body


def crm_sync_service() -> CrmSyncService:
    return get_crm_sync_service()


def line_client() -> LineMessagingClient:
    return get_line_client()
