"""Esquemas Pydantic para payloads del webhook de LINE."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class LineSource(BaseModel):
    """Origen del evento: usuario, grupo o sala."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    type: str | None = None
    user_id: str | None = Field(default=None, alias="userId")
    group_id: str | None = Field(default=None, alias="groupId")
    room_id: str | None = Field(default=None, alias="roomId")

    @property
    def chat_user_id(self) -> str | None:
        """Primer identificador no vacío: usuario, luego grupo, luego sala."""
        for candidate in (self.user_id, self.group_id, self.room_id):
            if candidate and candidate.strip():
                return candidate.strip()
        return None


class LineMessage(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str | None = None
    type: str | None = None
    text: str | None = None


class LineEvent(BaseModel):
    """Evento individual; sólo `message` de tipo `text` se procesa."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    type: str | None = None
    timestamp: int | None = None
    webhook_event_id: str | None = Field(default=None, alias="webhookEventId")
    message: LineMessage | None = None
    source: LineSource | None = None

    @property
    def is_text_message(self) -> bool:
        return self.type == "message" and self.message is not None and self.message.type == "text"


class LineWebhookPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    destination: str | None = None
    events: list[LineEvent]


class WebhookAck(BaseModel):
    """Respuesta inmediata a LINE."""

    ok: bool = True
    events: int = 0
