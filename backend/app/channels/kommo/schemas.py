"""Esquemas de respuesta del webhook de Kommo."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

SkipReason = Literal["no_text", "echo", "no_identifier", "invalid_payload", "error"]


class RelayResult(BaseModel):
    """Cuerpo JSON devuelto a Kommo; siempre con `ok=true`."""

    model_config = ConfigDict(populate_by_name=True)

    ok: bool = True
    sent: bool = False
    skipped: bool | None = None
    reason: SkipReason | None = None
    line_user_id: str | None = Field(default=None, alias="lineUserId")
    lead_id: int | None = Field(default=None, alias="leadId")
    contact_id: int | None = Field(default=None, alias="contactId")

    @classmethod
    def skip(cls, reason: SkipReason, **fields: object) -> "RelayResult":
        return cls(sent=False, skipped=True, reason=reason, **fields)

    def to_response(self) -> dict[str, object]:
        return self.model_dump(by_alias=True, exclude_none=True)
