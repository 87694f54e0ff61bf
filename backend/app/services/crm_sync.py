"""Sincroniza mensajes de LINE con contactos, leads y notas de Kommo."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache
from weakref import WeakValueDictionary

from app.core.config import settings
from app.core.logging import get_logger, log_event
from app.models.crm import CrmContact, CrmLead
from app.repositories.kommo import KommoRepository, KommoRepositoryError, get_kommo_repository
from app.services import identity

logger = get_logger(__name__)

# Prefijo de las notas que crea el puente; permite ignorar su eco en webhooks de Kommo
NOTE_MARKER = "[LINE]"


class CrmSyncError(RuntimeError):
    """Errores de alto nivel al sincronizar con Kommo."""


@dataclass(slots=True)
class SyncOutcome:
    """Resultado de procesar un mensaje entrante."""

    chat_user_id: str
    contact_id: int
    lead_id: int
    contact_created: bool = False
    lead_created: bool = False
    note_added: bool = False


def build_note_text(
    chat_user_id: str,
    text: str,
    display_name: str | None,
    sent_at: datetime | None = None,
) -> str:
    moment = (sent_at or datetime.now(timezone.utc)).astimezone(timezone.utc)
    who = display_name or identity.DEFAULT_DISPLAY_NAME
    header = f"{NOTE_MARKER} {who} ({chat_user_id}) · {moment:%Y-%m-%d %H:%M:%S} UTC"
    return f"{header}\n{text}"


class CrmSyncService:
    """Orquesta contacto → lead abierto → nota para cada mensaje de LINE.

    La resolución de contacto y lead se serializa por id de LINE dentro del
    proceso, de modo que dos mensajes simultáneos del mismo usuario no creen
    contactos duplicados. Entre procesos distintos no hay coordinación.
    """

    def __init__(
        self,
        repository: KommoRepository | None = None,
        *,
        closed_status_ids: tuple[int, ...] | None = None,
        search_limit: int | None = None,
        lead_name_max_length: int | None = None,
    ) -> None:
        self._repo = repository or get_kommo_repository()
        self._closed_status_ids = tuple(closed_status_ids or settings.kommo_closed_status_ids)
        self._search_limit = search_limit or settings.kommo_search_limit
        self._lead_name_max_length = lead_name_max_length or settings.lead_name_max_length
        self._locks: WeakValueDictionary[str, asyncio.Lock] = WeakValueDictionary()

    def _lock_for(self, chat_user_id: str) -> asyncio.Lock:
        lock = self._locks.get(chat_user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[chat_user_id] = lock
        return lock

    async def find_contact(self, chat_user_id: str) -> CrmContact | None:
        """Busca el contacto del usuario y completa la etiqueta si le falta."""
        try:
            candidates = await self._repo.list_contacts(chat_user_id, limit=self._search_limit)
        except KommoRepositoryError as exc:
            raise CrmSyncError(str(exc)) from exc

        contact = next((c for c in candidates if identity.matches(c, chat_user_id)), None)
        if contact is None:
            return None
        if not identity.has_identity_tag(contact, chat_user_id):
            await self._backfill_identity(contact, chat_user_id)
        return contact

    async def _backfill_identity(self, contact: CrmContact, chat_user_id: str) -> None:
        tags = [tag for tag in identity.contact_tags(chat_user_id) if tag not in contact.tags]
        name = None if contact.name else identity.build_contact_name(chat_user_id, None)
        try:
            await self._repo.patch_contact(contact.id, name=name, tags_to_add=tags)
        except KommoRepositoryError as exc:
            # El contacto sigue siendo utilizable aunque no se haya etiquetado
            logger.warning(
                "crm.contact_backfill_failed",
                extra={"contact_id": contact.id, "error": str(exc)},
            )
            return
        contact.tags.extend(tags)
        if name:
            contact.name = name
        log_event(logger, "crm.contact_backfilled", contact_id=contact.id, chat_user_id=chat_user_id)

    async def ensure_contact(
        self,
        chat_user_id: str,
        display_name: str | None = None,
    ) -> tuple[CrmContact, bool]:
        """Retorna `(contacto, creado)`."""
        existing = await self.find_contact(chat_user_id)
        if existing is not None:
            log_event(logger, "crm.contact_reused", contact_id=existing.id, chat_user_id=chat_user_id)
            return existing, False

        name = identity.build_contact_name(chat_user_id, display_name)
        try:
            created = await self._repo.create_contact(name, identity.contact_tags(chat_user_id))
        except KommoRepositoryError as exc:
            raise CrmSyncError(str(exc)) from exc
        log_event(logger, "crm.contact_created", contact_id=created.id, chat_user_id=chat_user_id)
        return created, True

    async def find_open_lead(self, contact_id: int) -> CrmLead | None:
        try:
            leads = await self._repo.list_leads(contact_id, newest_first=True)
        except KommoRepositoryError as exc:
            raise CrmSyncError(str(exc)) from exc
        return next((lead for lead in leads if not lead.is_closed(self._closed_status_ids)), None)

    async def ensure_open_lead(
        self,
        contact: CrmContact,
        chat_user_id: str,
        *,
        text: str | None = None,
        display_name: str | None = None,
    ) -> tuple[CrmLead, bool]:
        """Reutiliza el lead abierto más reciente o crea uno nuevo."""
        lead = await self.find_open_lead(contact.id)
        if lead is not None:
            log_event(logger, "crm.lead_reused", lead_id=lead.id, contact_id=contact.id)
            return lead, False

        name = identity.build_lead_name(
            chat_user_id,
            text,
            display_name,
            max_length=self._lead_name_max_length,
        )
        try:
            created = await self._repo.create_lead(
                name,
                contact.id,
                identity.contact_tags(chat_user_id),
            )
        except KommoRepositoryError as exc:
            raise CrmSyncError(str(exc)) from exc
        log_event(logger, "crm.lead_created", lead_id=created.id, contact_id=contact.id)
        return created, True

    async def append_note(
        self,
        lead_id: int,
        chat_user_id: str,
        text: str,
        *,
        display_name: str | None = None,
        sent_at: datetime | None = None,
    ) -> None:
        note = build_note_text(chat_user_id, text, display_name, sent_at)
        try:
            await self._repo.create_note(lead_id, note)
        except KommoRepositoryError as exc:
            raise CrmSyncError(str(exc)) from exc
        log_event(logger, "crm.note_added", lead_id=lead_id, chat_user_id=chat_user_id)

    async def sync_message(
        self,
        chat_user_id: str,
        text: str,
        *,
        display_name: str | None = None,
        sent_at: datetime | None = None,
    ) -> SyncOutcome:
        """Procesa un mensaje completo. Falla si no hay contacto o lead."""
        async with self._lock_for(chat_user_id):
            contact, contact_created = await self.ensure_contact(chat_user_id, display_name)
            lead, lead_created = await self.ensure_open_lead(
                contact,
                chat_user_id,
                text=text,
                display_name=display_name,
            )

        outcome = SyncOutcome(
            chat_user_id=chat_user_id,
            contact_id=contact.id,
            lead_id=lead.id,
            contact_created=contact_created,
            lead_created=lead_created,
        )
        try:
            await self.append_note(
                lead.id,
                chat_user_id,
                text,
                display_name=display_name,
                sent_at=sent_at,
            )
        except CrmSyncError as exc:
            logger.error(
                "crm.note_failed",
                extra={"lead_id": lead.id, "chat_user_id": chat_user_id, "error": str(exc)},
            )
        else:
            outcome.note_added = True
        return outcome


@lru_cache(maxsize=1)
def get_crm_sync_service() -> CrmSyncService:
    """Instancia compartida; sus locks por usuario deben ser únicos por proceso."""
    return CrmSyncService()
