"""Relay de respuestas escritas en Kommo hacia el chat de LINE."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

from app.core.logging import get_logger, log_event
from app.models.crm import CrmContact, CrmLead
from app.repositories.kommo import KommoRepository, KommoRepositoryError
from app.services import identity
from app.services.crm_sync import NOTE_MARKER

from . import extraction
from .schemas import RelayResult

logger = get_logger("app.channels.kommo")


@dataclass(slots=True)
class RelayPlan:
    """Decisión del webhook: la respuesta para Kommo y, si aplica, qué enviar."""

    result: RelayResult
    text: str | None = None

    @property
    def should_push(self) -> bool:
        return self.result.sent and bool(self.result.line_user_id) and bool(self.text)


async def _load_contact(repository: KommoRepository, contact_id: int) -> CrmContact | None:
    try:
        return await repository.get_contact(contact_id)
    except KommoRepositoryError as exc:
        logger.error("kommo.contact_load_failed", extra={"contact_id": contact_id, "error": str(exc)})
        return None


async def _load_lead(repository: KommoRepository, lead_id: int) -> CrmLead | None:
    try:
        return await repository.get_lead(lead_id, with_contacts=True)
    except KommoRepositoryError as exc:
        logger.error("kommo.lead_load_failed", extra={"lead_id": lead_id, "error": str(exc)})
        return None


async def resolve_chat_user(
    repository: KommoRepository,
    *,
    lead_id: int | None,
    contact_id: int | None,
) -> tuple[str | None, int | None]:
    """Retorna `(id de LINE, id del contacto usado)`.

    Con id de contacto se consulta directo; si no alcanza y hay lead, se usa su
    primer contacto vinculado y al final las etiquetas/nombre del propio lead.
    """
    contact = await _load_contact(repository, contact_id) if contact_id else None
    chat_user_id = identity.resolve_contact(contact)
    if chat_user_id or not lead_id:
        return chat_user_id, contact_id

    lead = await _load_lead(repository, lead_id)
    if lead is None:
        return None, contact_id

    if contact is None and lead.contact_ids:
        contact_id = lead.contact_ids[0]
        contact = await _load_contact(repository, contact_id)
        chat_user_id = identity.resolve_contact(contact)

    return chat_user_id or identity.resolve_lead(lead), contact_id


async def plan_relay(
    payload: Mapping[str, str],
    *,
    repository: KommoRepository,
) -> RelayPlan:
    """Decide si el webhook trae una respuesta para el usuario de LINE."""
    raw_lead_id = extraction.extract_value(payload, extraction.LEAD_ID_RULES)
    raw_contact_id = extraction.extract_value(payload, extraction.CONTACT_ID_RULES)
    lead_id = int(raw_lead_id) if raw_lead_id else None
    contact_id = int(raw_contact_id) if raw_contact_id else None

    text_match = extraction.extract_first(payload, extraction.TEXT_RULES)
    text = text_match.value if text_match else None
    log_event(
        logger,
        "kommo.webhook_parsed",
        keys=len(payload),
        lead_id=lead_id,
        contact_id=contact_id,
        text_rule=text_match.rule if text_match else None,
    )

    if not text:
        return RelayPlan(RelayResult.skip("no_text", lead_id=lead_id, contact_id=contact_id))
    if text.startswith(NOTE_MARKER):
        log_event(logger, "kommo.echo_ignored", lead_id=lead_id)
        return RelayPlan(RelayResult.skip("echo", lead_id=lead_id, contact_id=contact_id))

    chat_user_id, contact_id = await resolve_chat_user(
        repository,
        lead_id=lead_id,
        contact_id=contact_id,
    )
    if not chat_user_id:
        logger.warning(
            "kommo.chat_user_unresolved",
            extra={"lead_id": lead_id, "contact_id": contact_id},
        )
        return RelayPlan(RelayResult.skip("no_identifier", lead_id=lead_id, contact_id=contact_id))

    result = RelayResult(
        sent=True,
        line_user_id=chat_user_id,
        lead_id=lead_id,
        contact_id=contact_id,
    )
    return RelayPlan(result=result, text=text)
