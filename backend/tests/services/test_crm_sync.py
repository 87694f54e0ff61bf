"""Pruebas de la orquestación contacto → lead → nota."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone

from app.services.crm_sync import CrmSyncService, build_note_text


async def test_contact_resolution_is_idempotent(crm_sync: CrmSyncService, upstream) -> None:
    first, first_created = await crm_sync.ensure_contact("U123", "Alice")
    second, second_created = await crm_sync.ensure_contact("U123", "Alice")

    assert first.id == second.id
    assert (first_created, second_created) == (True, False)
    assert len(upstream.calls("POST", "/api/v4/contacts")) == 1


async def test_fuzzy_search_hits_are_not_reused(crm_sync: CrmSyncService, upstream) -> None:
    # La búsqueda de "U123" también devuelve a U1234
    upstream.add_contact(40, "Someone [U1234]", ["LINE_UID_U1234"])

    contact, created = await crm_sync.ensure_contact("U123", None)

    assert created is True
    assert contact.id != 40


async def test_closed_lead_is_not_reused(crm_sync: CrmSyncService, upstream) -> None:
    upstream.add_contact(55, "Alice [U123]", ["LINE_UID_U123"])
    upstream.add_lead(900, 55, status_id=142)
    contact, _ = await crm_sync.ensure_contact("U123")

    lead, created = await crm_sync.ensure_open_lead(contact, "U123", text="Second visit")

    assert created is True
    assert lead.id != 900
    assert lead.name == "Second visit [U123]"


async def test_lost_lead_is_not_reused(crm_sync: CrmSyncService, upstream) -> None:
    upstream.add_contact(55, "Alice [U123]", ["LINE_UID_U123"])
    upstream.add_lead(901, 55, status_id=143)
    contact, _ = await crm_sync.ensure_contact("U123")

    _, created = await crm_sync.ensure_open_lead(contact, "U123", text="hi")

    assert created is True


async def test_open_lead_is_reused(crm_sync: CrmSyncService, upstream) -> None:
    upstream.add_contact(55, "Alice [U123]", ["LINE_UID_U123"])
    upstream.add_lead(899, 55, status_id=142)
    upstream.add_lead(900, 55, status_id=100)
    contact, _ = await crm_sync.ensure_contact("U123")

    lead, created = await crm_sync.ensure_open_lead(contact, "U123", text="hi")

    assert (lead.id, created) == (900, False)
    assert upstream.calls("POST", "/api/v4/leads") == []


async def test_legacy_contact_gets_identity_tag(crm_sync: CrmSyncService, upstream) -> None:
    upstream.add_contact(60, "Alice (U123)")

    contact, created = await crm_sync.ensure_contact("U123")

    assert (contact.id, created) == (60, False)
    patch = json.loads(upstream.calls("PATCH", "/api/v4/contacts/60")[0].content)
    assert {"name": "LINE_UID_U123"} in patch["tags_to_add"]
    assert "name" not in patch
    assert "LINE_UID_U123" in contact.tags


async def test_concurrent_messages_create_a_single_contact(crm_sync: CrmSyncService, upstream) -> None:
    outcomes = await asyncio.gather(
        crm_sync.sync_message("U123", "one"),
        crm_sync.sync_message("U123", "two"),
        crm_sync.sync_message("U123", "three"),
    )

    assert len({outcome.contact_id for outcome in outcomes}) == 1
    assert len({outcome.lead_id for outcome in outcomes}) == 1
    assert len(upstream.calls("POST", "/api/v4/contacts")) == 1
    assert len(upstream.notes) == 3


async def test_note_failure_is_reported_not_raised(crm_sync: CrmSyncService, upstream) -> None:
    upstream.fail("POST", "/api/v4/leads/notes", 502)

    outcome = await crm_sync.sync_message("U123", "hello")

    assert outcome.lead_created is True
    assert outcome.note_added is False


def test_note_text_carries_context() -> None:
    sent_at = datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc)

    note = build_note_text("U123", "Hello", "Alice", sent_at)

    assert note == "[LINE] Alice (U123) · 2024-05-01 12:30:00 UTC\nHello"
