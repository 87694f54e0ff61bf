"""Reglas ordenadas para extraer ids y texto de los webhooks de Kommo.

Kommo envía formularios planos con claves tipo `leads[status][0][id]` cuya forma
cambia según el evento. Cada campo se resuelve con una lista de reglas
`(predicado, extractor)` evaluadas en orden: la primera que coincide gana.
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any
from urllib.parse import parse_qsl

Predicate = Callable[[str, str], bool]
Extractor = Callable[[str], str | None]


@dataclass(frozen=True, slots=True)
class ExtractionRule:
    name: str
    predicate: Predicate
    extractor: Extractor


@dataclass(frozen=True, slots=True)
class Extraction:
    rule: str
    key: str
    value: str | None


def _numeric(value: str) -> str | None:
    candidate = value.strip()
    return candidate if candidate.isdigit() else None


def _text(value: str) -> str | None:
    candidate = value.strip()
    return candidate or None


def key_is(*keys: str, numeric: bool = False) -> Predicate:
    wanted = frozenset(keys)

    def predicate(key: str, value: str) -> bool:
        return key in wanted and (not numeric or _numeric(value) is not None)

    return predicate


def key_matches(pattern: str, *, numeric: bool = False) -> Predicate:
    compiled = re.compile(pattern, re.IGNORECASE)

    def predicate(key: str, value: str) -> bool:
        return bool(compiled.search(key)) and (not numeric or _numeric(value) is not None)

    return predicate


def _id_rule(name: str, predicate: Predicate) -> ExtractionRule:
    return ExtractionRule(name=name, predicate=predicate, extractor=_numeric)


def _text_rule(name: str, predicate: Predicate) -> ExtractionRule:
    return ExtractionRule(name=name, predicate=predicate, extractor=_text)


LEAD_ID_RULES: tuple[ExtractionRule, ...] = (
    _id_rule("widget_card", key_is("this_item[id]", numeric=True)),
    _id_rule("explicit", key_is("lead_id", "leadId", numeric=True)),
    _id_rule(
        "lead_event",
        key_is(
            "leads[add][0][id]",
            "leads[status][0][id]",
            "leads[update][0][id]",
            numeric=True,
        ),
    ),
    _id_rule(
        "lead_note",
        key_matches(r"^leads\[note\]\[\d+\]\[note\]\[element_id\]$", numeric=True),
    ),
    # `[note][id]` es el id de la nota, no del lead
    _id_rule("lead_any", key_matches(r"^leads(?!.*\[note\]).*\[id\]$", numeric=True)),
)

CONTACT_ID_RULES: tuple[ExtractionRule, ...] = (
    _id_rule("widget_card", key_is("this_item[_embedded][contacts][0][id]", numeric=True)),
    _id_rule("explicit", key_is("contact_id", "contactId", numeric=True)),
    _id_rule(
        "contact_event",
        key_is("contacts[add][0][id]", "contacts[update][0][id]", numeric=True),
    ),
    _id_rule(
        "contact_note",
        key_matches(r"^contacts\[note\]\[\d+\]\[note\]\[element_id\]$", numeric=True),
    ),
    _id_rule("contact_any", key_matches(r"contacts(?!.*\[note\]).*\[0\]\[id\]$", numeric=True)),
)

TEXT_RULES: tuple[ExtractionRule, ...] = (
    _text_rule("widget_text", key_is("text", "reply_text", "reply")),
    _text_rule("message_field", key_is("message[text]", "message")),
    _text_rule("note_field", key_is("note[text]", "params[text]")),
    _text_rule("chat_message", key_matches(r"^message\[add\]\[\d+\]\[text\]$")),
    _text_rule("note_event", key_matches(r"\[note\]\[text\]$")),
    _text_rule("note_params", key_matches(r"\[params\]\[text\]$")),
)


def extract_first(
    payload: Mapping[str, str],
    rules: Iterable[ExtractionRule],
) -> Extraction | None:
    """Aplica las reglas en orden de prioridad y retorna la primera coincidencia."""
    for rule in rules:
        for key, value in payload.items():
            if rule.predicate(key, value):
                return Extraction(rule=rule.name, key=key, value=rule.extractor(value))
    return None


def extract_value(payload: Mapping[str, str], rules: Iterable[ExtractionRule]) -> str | None:
    found = extract_first(payload, rules)
    return found.value if found else None


def parse_form(body: bytes) -> dict[str, str]:
    """Convierte `application/x-www-form-urlencoded` en un dict plano."""
    if not body:
        return {}
    text = body.decode("utf-8", errors="replace")
    return dict(parse_qsl(text, keep_blank_values=True))


def flatten_json(data: Any, prefix: str = "") -> dict[str, str]:
    """Aplana JSON anidado a claves con corchetes (`a[b][0][c]`)."""
    flat: dict[str, str] = {}
    if isinstance(data, dict):
        items = ((str(key), value) for key, value in data.items())
    elif isinstance(data, list):
        items = ((str(index), value) for index, value in enumerate(data))
    else:
        if prefix:
            flat[prefix] = "" if data is None else str(data)
        return flat
    for key, value in items:
        path = f"{prefix}[{key}]" if prefix else key
        flat.update(flatten_json(value, path))
    return flat


def parse_body(body: bytes, content_type: str | None) -> dict[str, str]:
    """Acepta formulario (lo normal en Kommo) o JSON enviado por widgets."""
    if content_type and "json" in content_type.lower():
        return flatten_json(json.loads(body or b"{}"))
    return parse_form(body)
