"""Fixtures compartidas para las pruebas."""

from __future__ import annotations

import json
import re
from typing import Any

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from app.channels.kommo import deps as kommo_deps
from app.channels.line import deps as line_deps
from app.core.config import settings
from app.main import app
from app.repositories.kommo import KommoRepository, get_kommo_repository
from app.services.crm_sync import CrmSyncService, get_crm_sync_service
from app.services.kommo_auth import StaticTokenProvider
from app.services.line import LineMessagingClient, get_line_client

LINE_SECRET = "test-channel-secret"
KOMMO_BASE_URL = "https://acme.kommo.com"
LINE_BASE_URL = "https://api.line.me/v2/bot"


class FakeUpstream:
    """Simula las APIs de LINE y Kommo detrás de un `httpx.MockTransport`."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.profiles: dict[str, dict[str, Any]] = {}
        self.contacts: dict[int, dict[str, Any]] = {}
        self.leads: dict[int, dict[str, Any]] = {}
        self.notes: list[dict[str, Any]] = []
        self.pushes: list[dict[str, Any]] = []
        self.failures: dict[tuple[str, str], int] = {}
        self._next_id = 1000

    # --- helpers de preparación -------------------------------------------------

    def add_contact(self, contact_id: int, name: str, tags: list[str] | None = None) -> None:
        self.contacts[contact_id] = {
            "id": contact_id,
            "name": name,
            "_embedded": {"tags": [{"name": tag} for tag in tags or []]},
        }

    def add_lead(
        self,
        lead_id: int,
        contact_id: int,
        *,
        name: str = "Lead",
        status_id: int = 100,
        tags: list[str] | None = None,
    ) -> None:
        self.leads[lead_id] = {
            "id": lead_id,
            "name": name,
            "status_id": status_id,
            "is_deleted": False,
            "_embedded": {
                "contacts": [{"id": contact_id}],
                "tags": [{"name": tag} for tag in tags or []],
            },
        }

    def fail(self, method: str, path: str, status: int = 500) -> None:
        self.failures[(method, path)] = status

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    # --- despacho ---------------------------------------------------------------

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status = self.failures.get((request.method, request.url.path))
        if status:
            return httpx.Response(status, json={"title": "Upstream failure"})
        if request.url.host == "api.line.me":
            return self._line(request)
        return self._kommo(request)

    def _new_id(self) -> int:
        self._next_id += 1
        return self._next_id

    def _line(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if request.method == "GET" and path.startswith("/v2/bot/profile/"):
            profile = self.profiles.get(path.rsplit("/", 1)[-1])
            if profile is None:
                return httpx.Response(404, json={"message": "Not found"})
            return httpx.Response(200, json=profile)
        if request.method == "POST" and path == "/v2/bot/message/push":
            self.pushes.append(json.loads(request.content))
            return httpx.Response(200, json={})
        return httpx.Response(404)

    def _kommo(self, request: httpx.Request) -> httpx.Response:
        method, path = request.method, request.url.path
        body = json.loads(request.content) if request.content else None

        if method == "GET" and path == "/api/v4/contacts":
            query = request.url.params.get("query", "")
            found = [
                contact
                for contact in self.contacts.values()
                if query in (contact.get("name") or "")
                or any(query in tag["name"] for tag in contact["_embedded"]["tags"])
            ]
            if not found:
                return httpx.Response(204)
            return httpx.Response(200, json={"_embedded": {"contacts": found}})

        if method == "POST" and path == "/api/v4/contacts":
            new_id = self._new_id()
            item = body[0]
            self.contacts[new_id] = {"id": new_id, "name": item["name"], "_embedded": item["_embedded"]}
            return httpx.Response(200, json={"_embedded": {"contacts": [{"id": new_id, "request_id": "0"}]}})

        match = re.fullmatch(r"/api/v4/contacts/(\d+)", path)
        if match:
            contact = self.contacts.get(int(match.group(1)))
            if contact is None:
                return httpx.Response(204)
            if method == "PATCH":
                contact["_embedded"]["tags"].extend(body.get("tags_to_add", []))
                if body.get("name"):
                    contact["name"] = body["name"]
                return httpx.Response(200, json={"id": contact["id"]})
            return httpx.Response(200, json=contact)

        if method == "GET" and path == "/api/v4/leads":
            contact_id = int(request.url.params["filter[contacts][id][]"])
            found = sorted(
                (
                    lead
                    for lead in self.leads.values()
                    if any(c["id"] == contact_id for c in lead["_embedded"]["contacts"])
                ),
                key=lambda lead: lead["id"],
                reverse=True,
            )
            if not found:
                return httpx.Response(204)
            return httpx.Response(200, json={"_embedded": {"leads": found}})

        if method == "POST" and path == "/api/v4/leads":
            new_id = self._new_id()
            item = body[0]
            self.leads[new_id] = {
                "id": new_id,
                "name": item["name"],
                "status_id": 100,
                "is_deleted": False,
                "_embedded": item["_embedded"],
            }
            return httpx.Response(200, json={"_embedded": {"leads": [{"id": new_id, "request_id": "0"}]}})

        if method == "POST" and path == "/api/v4/leads/notes":
            self.notes.extend(body)
            return httpx.Response(200, json={"_embedded": {"notes": [{"id": self._new_id()}]}})

        match = re.fullmatch(r"/api/v4/leads/(\d+)", path)
        if match and method == "GET":
            lead = self.leads.get(int(match.group(1)))
            return httpx.Response(200, json=lead) if lead else httpx.Response(204)

        return httpx.Response(404)


@pytest.fixture(autouse=True)
def _test_settings(monkeypatch: pytest.MonkeyPatch):
    """Credenciales ficticias y caches limpios en cada prueba."""
    monkeypatch.setattr(settings, "line_channel_secret", LINE_SECRET)
    monkeypatch.setattr(settings, "line_channel_access_token", "line-token")
    monkeypatch.setattr(settings, "kommo_subdomain", "acme")
    monkeypatch.setattr(settings, "kommo_access_token", None)
    monkeypatch.setattr(settings, "kommo_api_key", "kommo-key")
    monkeypatch.setattr(settings, "kommo_client_id", None)
    monkeypatch.setattr(settings, "kommo_client_secret", None)
    for cached in (get_line_client, get_kommo_repository, get_crm_sync_service):
        cached.cache_clear()
    yield
    app.dependency_overrides.clear()


@pytest.fixture(name="upstream")
def fixture_upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture(name="kommo_repository")
def fixture_kommo_repository(upstream: FakeUpstream) -> KommoRepository:
    return KommoRepository(
        base_url=KOMMO_BASE_URL,
        token_provider=StaticTokenProvider("kommo-key"),
        transport=upstream.transport,
    )


@pytest.fixture(name="line_client")
def fixture_line_client(upstream: FakeUpstream) -> LineMessagingClient:
    return LineMessagingClient(
        access_token="line-token",
        base_url=LINE_BASE_URL,
        transport=upstream.transport,
    )


@pytest.fixture(name="crm_sync")
def fixture_crm_sync(kommo_repository: KommoRepository) -> CrmSyncService:
    return CrmSyncService(kommo_repository)


@pytest.fixture(name="wired_app")
def fixture_wired_app(
    crm_sync: CrmSyncService,
    line_client: LineMessagingClient,
    kommo_repository: KommoRepository,
):
    """Conecta las rutas a las APIs simuladas."""
    app.dependency_overrides[line_deps.crm_sync_service] = lambda: crm_sync
    app.dependency_overrides[line_deps.line_client] = lambda: line_client
    app.dependency_overrides[kommo_deps.kommo_repository] = lambda: kommo_repository
    app.dependency_overrides[kommo_deps.line_client] = lambda: line_client
    return app


@pytest.fixture(name="async_client")
async def fixture_async_client() -> AsyncClient:
    """Retorna un cliente asíncrono contra la app principal utilizando ASGITransport."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
