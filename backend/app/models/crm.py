"""Modelos de registros de Kommo tal como los usa el puente."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


def _embedded(payload: dict[str, Any], key: str) -> list[dict[str, Any]]:
    embedded = payload.get("_embedded")
    if not isinstance(embedded, dict):
        return []
    items = embedded.get(key)
    if not isinstance(items, list):
        return []
    return [item for item in items if isinstance(item, dict)]


def _tag_names(payload: dict[str, Any]) -> list[str]:
    return [str(tag["name"]) for tag in _embedded(payload, "tags") if tag.get("name")]


class CrmContact(BaseModel):
    """Contacto de Kommo que representa a un usuario de LINE."""

    id: int
    name: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    tags: list[str] = Field(default_factory=list)

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> "CrmContact":
        return cls(
            id=int(payload["id"]),
            name=payload.get("name"),
            first_name=payload.get("first_name"),
            last_name=payload.get("last_name"),
            tags=_tag_names(payload),
        )


class CrmLead(BaseModel):
    """Lead de Kommo con sus contactos vinculados."""

    id: int
    name: str | None = None
    status_id: int | None = None
    is_deleted: bool = False
    contact_ids: list[int] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> "CrmLead":
        contact_ids = [
            int(contact["id"]) for contact in _embedded(payload, "contacts") if contact.get("id")
        ]
        status = payload.get("status_id")
        return cls(
            id=int(payload["id"]),
            name=payload.get("name"),
            status_id=int(status) if status is not None else None,
            is_deleted=bool(payload.get("is_deleted")),
            contact_ids=contact_ids,
            tags=_tag_names(payload),
        )

    def is_closed(self, closed_status_ids: tuple[int, ...] | list[int]) -> bool:
        """Un lead borrado o en estado terminal no se reutiliza."""
        return self.is_deleted or self.status_id in closed_status_ids
