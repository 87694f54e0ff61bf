"""Endpoint del webhook de LINE Messaging API."""

import json

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
from pydantic import ValidationError

from app.core.logging import get_logger, log_event
from app.core.tasks import run_detached
from app.services.crm_sync import CrmSyncService
from app.services.line import LineMessagingClient

from . import service
from .deps import crm_sync_service, line_client, verified_body
from .schemas import LineWebhookPayload, WebhookAck

logger = get_logger("app.channels.line")

router = APIRouter(prefix="/line", tags=["line"])


@router.post("/webhook", response_model=WebhookAck, summary="Webhook de recepción LINE")
async def line_webhook(
    background_tasks: BackgroundTasks,
    body: bytes = Depends(verified_body),
    sync: CrmSyncService = Depends(crm_sync_service),
    line: LineMessagingClient = Depends(line_client),
) -> WebhookAck:
    """Confirma la recepción de inmediato y sincroniza con Kommo en segundo plano.

    LINE reintenta las entregas que no responden a tiempo, por eso el trabajo
    contra Kommo nunca bloquea esta respuesta.
    """
    try:
        payload = LineWebhookPayload.model_validate(json.loads(body))
    except (ValueError, RecursionError, ValidationError) as exc:
        logger.warning("line.payload_invalid", extra={"error": str(exc)})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid_json") from exc

    log_event(logger, "line.webhook_accepted", events=len(payload.events))
    if payload.events:
        run_detached(
            background_tasks,
            "line.process_events",
            service.process_events,
            payload.events,
            sync=sync,
            line=line,
        )
    return WebhookAck(ok=True, events=len(payload.events))
