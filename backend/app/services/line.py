"""Cliente para la Messaging API de LINE (perfil y push)."""

from __future__ import annotations

from functools import lru_cache
from typing import Any

import httpx

from app.core.config import settings
from app.core.logging import get_logger, log_event

logger = get_logger(__name__)

MAX_TEXT_LENGTH = 5000


def _truncate_body(text: str, limit: int = 500) -> str:
    detail = (text or "").strip()
    return detail if len(detail) <= limit else detail[:limit] + "..."


class LineMessagingClient:
    """Operaciones best-effort: nunca lanzan excepciones al llamador."""

    def __init__(
        self,
        *,
        access_token: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._access_token = access_token if access_token is not None else settings.line_channel_access_token
        self._base_url = (base_url or settings.line_api_base_url).rstrip("/")
        self._timeout = timeout or settings.http_timeout_seconds
        self._transport = transport

    async def get_profile(self, chat_user_id: str) -> dict[str, Any] | None:
        """Retorna `{displayName, userId, pictureUrl, ...}` o `None` si no es posible."""
        if not self._access_token:
            logger.warning("line.access_token_missing", extra={"operation": "profile"})
            return None
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.get(
                    f"{self._base_url}/profile/{chat_user_id}",
                    headers={"Authorization": f"Bearer {self._access_token}"},
                )
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            logger.warning(
                "line.profile_request_failed",
                extra={"chat_user_id": chat_user_id, "error": str(exc)},
            )
            return None

        if response.status_code >= 400:
            logger.warning(
                "line.profile_response_error",
                extra={
                    "chat_user_id": chat_user_id,
                    "status": response.status_code,
                    "body": _truncate_body(response.text),
                },
            )
            return None

        try:
            data = response.json()
        except ValueError:
            return None
        return data if isinstance(data, dict) else None

    async def push_message(self, chat_user_id: str, text: str) -> bool:
        """Envía un mensaje de texto; registra y retorna `False` ante cualquier falla."""
        if not self._access_token:
            logger.warning("line.access_token_missing", extra={"operation": "push"})
            return False
        payload = {
            "to": chat_user_id,
            "messages": [{"type": "text", "text": text[:MAX_TEXT_LENGTH]}],
        }
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self._base_url}/message/push",
                    json=payload,
                    headers={
                        "Authorization": f"Bearer {self._access_token}",
                        "Content-Type": "application/json",
                    },
                )
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            logger.error(
                "line.push_request_failed",
                extra={"chat_user_id": chat_user_id, "error": str(exc)},
            )
            return False

        if response.status_code >= 400:
            logger.error(
                "line.push_response_error",
                extra={
                    "chat_user_id": chat_user_id,
                    "status": response.status_code,
                    "body": _truncate_body(response.text),
                },
            )
            return False

        log_event(logger, "line.push_sent", chat_user_id=chat_user_id, length=len(text))
        return True


@lru_cache(maxsize=1)
def get_line_client() -> LineMessagingClient:
    """Retorna el cliente reutilizable de LINE."""
    return LineMessagingClient()
