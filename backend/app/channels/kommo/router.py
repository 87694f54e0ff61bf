"""Webhook de Kommo: relay de respuestas del operador hacia LINE."""

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import JSONResponse

from app.core.logging import get_logger, log_event
from app.core.tasks import run_detached
from app.repositories.kommo import KommoRepository
from app.services.line import LineMessagingClient

from . import extraction, service
from .deps import kommo_repository, line_client
from .schemas import RelayResult

logger = get_logger("app.channels.kommo")

router = APIRouter(tags=["kommo"])

# El webhook también puede llegar desde un widget embebido en el navegador
CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET,HEAD,POST,OPTIONS",
    "Access-Control-Allow-Headers": "*",
}

WEBHOOK_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]


def _reply(result: RelayResult) -> JSONResponse:
    return JSONResponse(result.to_response(), status_code=200, headers=CORS_HEADERS)


async def _read_payload(request: Request) -> dict[str, str]:
    payload: dict[str, str] = dict(request.query_params)
    body = await request.body()
    payload.update(extraction.parse_body(body, request.headers.get("content-type")))
    return payload


@router.api_route("/kommo/webhook", methods=WEBHOOK_METHODS, summary="Webhook de Kommo")
@router.api_route("/crm/webhook", methods=WEBHOOK_METHODS, include_in_schema=False)
async def kommo_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    repository: KommoRepository = Depends(kommo_repository),
    line: LineMessagingClient = Depends(line_client),
) -> JSONResponse:
    """Siempre responde 200 con JSON: Kommo desactiva webhooks que fallan."""
    if request.method == "OPTIONS":
        return _reply(RelayResult())

    try:
        payload = await _read_payload(request)
    except (ValueError, RecursionError) as exc:
        logger.warning("kommo.payload_invalid", extra={"error": str(exc)})
        return _reply(RelayResult.skip("invalid_payload"))

    try:
        plan = await service.plan_relay(payload, repository=repository)
        if plan.should_push:
            run_detached(
                background_tasks,
                "kommo.push_reply",
                line.push_message,
                plan.result.line_user_id,
                plan.text,
            )
            log_event(
                logger,
                "kommo.reply_scheduled",
                chat_user_id=plan.result.line_user_id,
                lead_id=plan.result.lead_id,
                contact_id=plan.result.contact_id,
            )
    except Exception:
        logger.exception("kommo.webhook_failed", extra={"keys": sorted(payload)[:20]})
        return _reply(RelayResult.skip("error"))
    return _reply(plan.result)
