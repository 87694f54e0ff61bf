"""Repositorio para contactos, leads y notas vía Kommo REST v4."""

from __future__ import annotations

from functools import lru_cache
from typing import Any, Iterable

import httpx

from app.core.config import settings
from app.core.logging import get_logger
from app.models.crm import CrmContact, CrmLead
from app.services.kommo_auth import KommoAuthError, TokenProvider, build_token_provider

logger = get_logger(__name__)

API_PREFIX = "/api/v4"


class KommoRepositoryError(RuntimeError):
    """Errores derivados de llamadas a Kommo."""


def _tags_payload(tags: Iterable[str]) -> list[dict[str, str]]:
    return [{"name": tag} for tag in tags if tag]


class KommoRepository:
    """Pequeña capa de acceso a la API de Kommo para las entidades del puente."""

    def __init__(
        self,
        *,
        base_url: str | None = None,
        token_provider: TokenProvider | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        base = base_url or settings.kommo_base_url
        self._base_url = base.rstrip("/") if base else None
        self._timeout = timeout or settings.http_timeout_seconds
        self._transport = transport
        self._token_provider = (
            token_provider
            if token_provider is not None
            else build_token_provider(settings, transport=transport)
        )

    @property
    def configured(self) -> bool:
        return bool(self._base_url and self._token_provider)

    async def list_contacts(self, query: str, *, limit: int = 10) -> list[CrmContact]:
        """Búsqueda libre de Kommo (nombre, teléfonos, etc.)."""
        response = await self._request(
            "GET",
            "/contacts",
            params={"query": query, "limit": str(limit)},
        )
        return [CrmContact.from_api(row) for row in self._embedded_list(response, "contacts")]

    async def create_contact(self, name: str, tags: Iterable[str] = ()) -> CrmContact:
        tag_list = list(tags)
        payload = [{"name": name, "_embedded": {"tags": _tags_payload(tag_list)}}]
        response = await self._request("POST", "/contacts", json=payload)
        rows = self._embedded_list(response, "contacts")
        if not rows or not rows[0].get("id"):
            raise KommoRepositoryError("Kommo no devolvió el contacto creado")
        return CrmContact(id=int(rows[0]["id"]), name=name, tags=tag_list)

    async def patch_contact(
        self,
        contact_id: int,
        *,
        name: str | None = None,
        tags_to_add: Iterable[str] = (),
    ) -> CrmContact:
        """Actualiza nombre y agrega etiquetas sin tocar las existentes.

        El contacto retornado sólo refleja los campos enviados.
        """
        tag_list = list(tags_to_add)
        patch: dict[str, Any] = {}
        if name:
            patch["name"] = name
        if tag_list:
            patch["tags_to_add"] = _tags_payload(tag_list)
        if not patch:
            raise KommoRepositoryError("Nada que actualizar en el contacto")
        response = await self._request("PATCH", f"/contacts/{contact_id}", json=patch)
        data = self._json(response) or {}
        return CrmContact(id=int(data.get("id") or contact_id), name=name, tags=tag_list)

    async def get_contact(self, contact_id: int | str) -> CrmContact | None:
        response = await self._request("GET", f"/contacts/{contact_id}")
        data = self._json(response)
        return CrmContact.from_api(data) if data and data.get("id") else None

    async def list_leads(
        self,
        contact_id: int,
        *,
        limit: int = 50,
        newest_first: bool = True,
    ) -> list[CrmLead]:
        params = {
            "filter[contacts][id][]": str(contact_id),
            "limit": str(limit),
            "with": "contacts",
        }
        if newest_first:
            params["order[created_at]"] = "desc"
        response = await self._request("GET", "/leads", params=params)
        return [CrmLead.from_api(row) for row in self._embedded_list(response, "leads")]

    async def create_lead(
        self,
        name: str,
        contact_id: int,
        tags: Iterable[str] = (),
    ) -> CrmLead:
        tag_list = list(tags)
        payload = [
            {
                "name": name,
                "_embedded": {
                    "contacts": [{"id": contact_id}],
                    "tags": _tags_payload(tag_list),
                },
            }
        ]
        response = await self._request("POST", "/leads", json=payload)
        rows = self._embedded_list(response, "leads")
        if not rows or not rows[0].get("id"):
            raise KommoRepositoryError("Kommo no devolvió el lead creado")
        return CrmLead(id=int(rows[0]["id"]), name=name, contact_ids=[contact_id], tags=tag_list)

    async def get_lead(self, lead_id: int | str, *, with_contacts: bool = True) -> CrmLead | None:
        params = {"with": "contacts"} if with_contacts else None
        response = await self._request("GET", f"/leads/{lead_id}", params=params)
        data = self._json(response)
        return CrmLead.from_api(data) if data and data.get("id") else None

    async def create_note(self, lead_id: int, text: str) -> None:
        payload = [{"entity_id": lead_id, "note_type": "common", "params": {"text": text}}]
        await self._request("POST", "/leads/notes", json=payload)

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        json: Any = None,
    ) -> httpx.Response:
        if not self._base_url or self._token_provider is None:
            logger.warning("kommo.not_configured", extra={"path": path})
            raise KommoRepositoryError("Kommo no está configurado (KOMMO_SUBDOMAIN/credenciales)")

        headers = await self._headers(has_body=json is not None)
        url = f"{self._base_url}{API_PREFIX}{path}"
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.request(
                    method,
                    url,
                    params=params,
                    json=json,
                    headers=headers,
                )
        except httpx.RequestError as exc:
            logger.exception("kommo.request_failed", extra={"path": path, "error": str(exc)})
            raise KommoRepositoryError(f"Error al conectar a Kommo: {exc}") from exc
        if response.status_code >= 400:
            logger.error(
                "kommo.response_error",
                extra={
                    "method": method,
                    "path": path,
                    "status": response.status_code,
                    "body": response.text,
                },
            )
            raise KommoRepositoryError(f"Kommo respondió {response.status_code}: {response.text}")
        return response

    async def _headers(self, *, has_body: bool) -> dict[str, str]:
        try:
            token = await self._token_provider.get_valid_token()  # type: ignore[union-attr]
        except KommoAuthError as exc:
            raise KommoRepositoryError(str(exc)) from exc
        headers = {"Accept": "application/json", "Authorization": f"Bearer {token}"}
        if has_body:
            headers["Content-Type"] = "application/json"
        return headers

    @staticmethod
    def _json(response: httpx.Response) -> dict[str, Any] | None:
        # 204 es la forma en que Kommo indica "sin resultados"
        if response.status_code == 204 or not response.content:
            return None
        try:
            payload = response.json()
        except ValueError as exc:
            raise KommoRepositoryError("Respuesta inesperada de Kommo") from exc
        if not isinstance(payload, dict):
            raise KommoRepositoryError("Respuesta inesperada de Kommo")
        return payload

    @classmethod
    def _embedded_list(cls, response: httpx.Response, key: str) -> list[dict[str, Any]]:
        payload = cls._json(response) or {}
        embedded = payload.get("_embedded") or {}
        rows = embedded.get(key) if isinstance(embedded, dict) else None
        if not isinstance(rows, list):
            return []
        return [row for row in rows if isinstance(row, dict)]


@lru_cache(maxsize=1)
def get_kommo_repository() -> KommoRepository:
    """Repositorio compartido; conserva el caché de token del proveedor OAuth."""
    return KommoRepository()
