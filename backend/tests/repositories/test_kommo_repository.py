"""Pruebas del repositorio Kommo sobre una API simulada."""

from __future__ import annotations

import json

import httpx
import pytest

from app.repositories.kommo import KommoRepository, KommoRepositoryError
from app.services.kommo_auth import StaticTokenProvider


async def test_empty_search_is_an_empty_list(kommo_repository: KommoRepository, upstream) -> None:
    assert await kommo_repository.list_contacts("U404", limit=5) == []

    request = upstream.requests[0]
    assert request.url.path == "/api/v4/contacts"
    assert request.url.params["limit"] == "5"
    assert request.headers["authorization"] == "Bearer kommo-key"


async def test_search_maps_tags(kommo_repository: KommoRepository, upstream) -> None:
    upstream.add_contact(55, "Alice [U123]", ["LINE", "LINE_UID_U123"])

    [contact] = await kommo_repository.list_contacts("U123")

    assert contact.id == 55
    assert contact.tags == ["LINE", "LINE_UID_U123"]


async def test_create_contact_sends_embedded_tags(kommo_repository: KommoRepository, upstream) -> None:
    contact = await kommo_repository.create_contact("Alice [U123]", ["LINE", "LINE_UID_U123"])

    sent = json.loads(upstream.requests[0].content)
    assert sent == [
        {
            "name": "Alice [U123]",
            "_embedded": {"tags": [{"name": "LINE"}, {"name": "LINE_UID_U123"}]},
        }
    ]
    assert contact.id > 0
    assert contact.tags == ["LINE", "LINE_UID_U123"]


async def test_lead_lookup_filters_by_contact(kommo_repository: KommoRepository, upstream) -> None:
    upstream.add_lead(10, 55, status_id=142)
    upstream.add_lead(11, 55)
    upstream.add_lead(12, 77)

    leads = await kommo_repository.list_leads(55)

    assert [lead.id for lead in leads] == [11, 10]
    assert leads[0].contact_ids == [55]
    params = upstream.requests[0].url.params
    assert params["order[created_at]"] == "desc"
    assert params["with"] == "contacts"


async def test_get_lead_with_contacts(kommo_repository: KommoRepository, upstream) -> None:
    upstream.add_lead(10, 55, name="Hi [U123]", status_id=143)

    lead = await kommo_repository.get_lead(10)

    assert lead is not None
    assert lead.contact_ids == [55]
    assert lead.is_closed((142, 143))
    assert upstream.requests[0].url.params["with"] == "contacts"


async def test_missing_records_are_none(kommo_repository: KommoRepository) -> None:
    assert await kommo_repository.get_contact(1) is None
    assert await kommo_repository.get_lead(1) is None


async def test_note_payload(kommo_repository: KommoRepository, upstream) -> None:
    await kommo_repository.create_note(900, "hello")

    assert upstream.notes == [{"entity_id": 900, "note_type": "common", "params": {"text": "hello"}}]


async def test_http_errors_raise(kommo_repository: KommoRepository, upstream) -> None:
    upstream.fail("POST", "/api/v4/leads", 400)

    with pytest.raises(KommoRepositoryError, match="400"):
        await kommo_repository.create_lead("x", 55)


async def test_transport_errors_raise() -> None:
    def boom(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    repository = KommoRepository(
        base_url="https://acme.kommo.com",
        token_provider=StaticTokenProvider("t"),
        transport=httpx.MockTransport(boom),
    )

    with pytest.raises(KommoRepositoryError):
        await repository.get_contact(1)


async def test_unconfigured_repository_raises_without_calling(monkeypatch: pytest.MonkeyPatch) -> None:
    from app.core.config import settings

    monkeypatch.setattr(settings, "kommo_subdomain", None)
    calls: list[httpx.Request] = []
    repository = KommoRepository(
        token_provider=StaticTokenProvider("t"),
        transport=httpx.MockTransport(lambda request: calls.append(request) or httpx.Response(200)),
    )

    assert repository.configured is False
    with pytest.raises(KommoRepositoryError):
        await repository.list_contacts("U1")
    assert calls == []
