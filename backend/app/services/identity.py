"""Correlación entre identificadores de LINE y registros de Kommo.

Kommo no tiene un campo estructurado para el id de LINE, así que se usan dos
portadores:

* la etiqueta `LINE_UID_<id>`, autoritativa porque sobrevive a ediciones del
  nombre hechas por un operador;
* el nombre del contacto `"<displayName> [<id>]"`, legible para humanos y
  usado sólo como respaldo para contactos creados antes de las etiquetas.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable

from app.models.crm import CrmContact, CrmLead

MARKER_TAG = "LINE"
IDENTITY_TAG_PREFIX = "LINE_UID_"
DEFAULT_DISPLAY_NAME = "LINE user"
DEFAULT_LEAD_TITLE = "New request from LINE"

_TAG_PATTERN = re.compile(rf"^{IDENTITY_TAG_PREFIX}(\S+)$", re.IGNORECASE)

# Ids de usuario (U), grupo (C) o sala (R); al menos un dígito para no confundir palabras
_DELIMITED_ID = r"[UCR](?=[0-9a-f]*\d)[0-9a-f]{3,}"
_NAME_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(rf"\[({_DELIMITED_ID})\]"),
    re.compile(rf"\(({_DELIMITED_ID})\)"),
    re.compile(rf"\bLINE[\s:_-]+({_DELIMITED_ID})\b"),
    re.compile(r"\b([UCR][0-9a-f]{32})\b"),
)

_WHITESPACE = re.compile(r"\s+")


def identity_tag(chat_user_id: str) -> str:
    return f"{IDENTITY_TAG_PREFIX}{chat_user_id}"


def contact_tags(chat_user_id: str) -> list[str]:
    """Etiquetas con las que se crea un contacto nuevo."""
    return [MARKER_TAG, identity_tag(chat_user_id)]


def build_contact_name(chat_user_id: str, display_name: str | None) -> str:
    name = _WHITESPACE.sub(" ", display_name or "").strip() or DEFAULT_DISPLAY_NAME
    return f"{name} [{chat_user_id}]"


def build_lead_name(
    chat_user_id: str,
    text: str | None,
    display_name: str | None,
    *,
    max_length: int,
) -> str:
    """Nombre del lead: primer mensaje (o nombre visible) + sufijo con el id."""
    suffix = f" [{chat_user_id}]"
    base = _WHITESPACE.sub(" ", text or "").strip()
    if not base:
        base = _WHITESPACE.sub(" ", display_name or "").strip() or DEFAULT_LEAD_TITLE
    room = max(max_length - len(suffix), 1)
    if len(base) > room:
        base = base[: room - 1].rstrip() + "…"
    return f"{base}{suffix}"


def id_from_tags(tags: Iterable[str]) -> str | None:
    for tag in tags:
        match = _TAG_PATTERN.match(tag.strip()) if tag else None
        if match:
            return match.group(1)
    return None


def id_from_text(text: str | None) -> str | None:
    if not text:
        return None
    for pattern in _NAME_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(1)
    return None


def _contact_from_tags(contact: CrmContact) -> str | None:
    return id_from_tags(contact.tags)


def _contact_from_names(contact: CrmContact) -> str | None:
    for value in (contact.name, contact.first_name, contact.last_name):
        found = id_from_text(value)
        if found:
            return found
    return None


ContactStrategy = Callable[[CrmContact], str | None]

# Orden de precedencia: la etiqueta siempre gana sobre el nombre
CONTACT_STRATEGIES: tuple[ContactStrategy, ...] = (_contact_from_tags, _contact_from_names)


def resolve_contact(contact: CrmContact | None) -> str | None:
    """Id de LINE asociado al contacto, o `None` si no hay ninguno reconocible."""
    if contact is None:
        return None
    for strategy in CONTACT_STRATEGIES:
        found = strategy(contact)
        if found:
            return found
    return None


def resolve_lead(lead: CrmLead | None) -> str | None:
    if lead is None:
        return None
    return id_from_tags(lead.tags) or id_from_text(lead.name)


def has_identity_tag(contact: CrmContact, chat_user_id: str) -> bool:
    return id_from_tags(contact.tags) == chat_user_id


def matches(contact: CrmContact, chat_user_id: str) -> bool:
    """La búsqueda de Kommo es difusa; sólo cuenta una coincidencia exacta del id."""
    return resolve_contact(contact) == chat_user_id
