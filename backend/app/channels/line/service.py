"""Procesamiento de eventos entrantes de LINE hacia Kommo."""

from __future__ import annotations

from datetime import datetime, timezone

from app.core.logging import get_logger, log_event
from app.services.crm_sync import CrmSyncError, CrmSyncService, SyncOutcome
from app.services.line import LineMessagingClient

from .schemas import LineEvent

logger = get_logger("app.channels.line")


def _event_time(event: LineEvent) -> datetime | None:
    if not event.timestamp:
        return None
    return datetime.fromtimestamp(event.timestamp / 1000, tz=timezone.utc)


async def handle_event(
    event: LineEvent,
    *,
    sync: CrmSyncService,
    line: LineMessagingClient,
) -> SyncOutcome | None:
    """Sincroniza un evento de texto; otros tipos se ignoran con un log."""
    if not event.is_text_message:
        log_event(
            logger,
            "line.event_skipped",
            event_type=event.type,
            message_type=event.message.type if event.message else None,
        )
        return None

    chat_user_id = event.source.chat_user_id if event.source else None
    if not chat_user_id:
        logger.warning("line.event_without_source", extra={"event_type": event.type})
        return None

    text = event.message.text or ""  # type: ignore[union-attr]
    log_event(logger, "line.message_received", chat_user_id=chat_user_id, length=len(text))

    profile = await line.get_profile(chat_user_id)
    display_name = profile.get("displayName") if profile else None

    outcome = await sync.sync_message(
        chat_user_id,
        text,
        display_name=display_name,
        sent_at=_event_time(event),
    )
    log_event(
        logger,
        "line.message_synced",
        chat_user_id=chat_user_id,
        contact_id=outcome.contact_id,
        lead_id=outcome.lead_id,
        contact_created=outcome.contact_created,
        lead_created=outcome.lead_created,
        note_added=outcome.note_added,
    )
    return outcome


async def process_events(
    events: list[LineEvent],
    *,
    sync: CrmSyncService,
    line: LineMessagingClient,
) -> list[SyncOutcome]:
    """Procesa los eventos en orden; la falla de uno no detiene a los demás."""
    outcomes: list[SyncOutcome] = []
    for index, event in enumerate(events):
        try:
            outcome = await handle_event(event, sync=sync, line=line)
        except CrmSyncError as exc:
            logger.error(
                "line.event_failed",
                extra={"index": index, "webhook_event_id": event.webhook_event_id, "error": str(exc)},
            )
            continue
        except Exception:
            logger.exception(
                "line.event_crashed",
                extra={"index": index, "webhook_event_id": event.webhook_event_id},
            )
            continue
        if outcome is not None:
            outcomes.append(outcome)
    return outcomes
