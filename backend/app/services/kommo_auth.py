"""Proveedores de token para autenticar llamadas a Kommo."""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Protocol

import httpx

from app.core.config import Settings
from app.core.logging import get_logger, log_event
from app.core.security import mask_secret

logger = get_logger(__name__)

REFRESH_MARGIN_SECONDS = 60.0


class KommoAuthError(RuntimeError):
    """No fue posible obtener un token de acceso para Kommo."""


class TokenProvider(Protocol):
    async def get_valid_token(self) -> str:
        ...


class StaticTokenProvider:
    """Token pre-emitido (access token o llave de larga duración)."""

    def __init__(self, token: str) -> None:
        self._token = token

    async def get_valid_token(self) -> str:
        return self._token

    def __repr__(self) -> str:
        return f"StaticTokenProvider(token={mask_secret(self._token)!r})"


class ClientCredentialsTokenProvider:
    """Obtiene tokens OAuth `client_credentials` y los mantiene en memoria.

    El token se renueva cuando le quedan menos de `refresh_margin` segundos.
    Dos requests concurrentes pueden renovar a la vez; la operación es
    idempotente, por eso no se coordina.
    """

    def __init__(
        self,
        *,
        base_url: str,
        client_id: str,
        client_secret: str,
        timeout: float = 10.0,
        refresh_margin: float = REFRESH_MARGIN_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._url = f"{base_url.rstrip('/')}/oauth2/access_token"
        self._client_id = client_id
        self._client_secret = client_secret
        self._timeout = timeout
        self._refresh_margin = refresh_margin
        self._transport = transport
        self._clock = clock
        self._token: str | None = None
        self._expires_at: float = 0.0

    @property
    def expires_at(self) -> float:
        return self._expires_at

    def _is_fresh(self) -> bool:
        return bool(self._token) and self._expires_at - self._clock() > self._refresh_margin

    async def get_valid_token(self) -> str:
        if self._is_fresh():
            return self._token  # type: ignore[return-value]
        return await self._refresh()

    async def _refresh(self) -> str:
        payload = {
            "client_id": self._client_id,
            "client_secret": self._client_secret,
            "grant_type": "client_credentials",
        }
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(self._url, json=payload)
        except httpx.RequestError as exc:
            logger.exception("kommo.token_request_failed", extra={"error": str(exc)})
            raise KommoAuthError(f"Error de red al obtener token de Kommo: {exc}") from exc

        if response.status_code >= 400:
            logger.error(
                "kommo.token_response_error",
                extra={"status": response.status_code, "body": response.text},
            )
            raise KommoAuthError(f"Kommo respondió {response.status_code} al pedir token")

        try:
            data = response.json()
        except ValueError as exc:
            raise KommoAuthError("Respuesta de token no es JSON") from exc

        token = data.get("access_token") if isinstance(data, dict) else None
        if not token:
            raise KommoAuthError("Respuesta de token sin access_token")

        try:
            expires_in = float(data.get("expires_in") or 0)
        except (TypeError, ValueError) as exc:
            raise KommoAuthError("Respuesta de token con expires_in inválido") from exc
        self._token = str(token)
        self._expires_at = self._clock() + expires_in
        log_event(logger, "kommo.token_refreshed", expires_in=expires_in)
        return self._token


def build_token_provider(
    config: Settings,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> TokenProvider | None:
    """Elige la credencial disponible: access token, llave, OAuth o ninguna."""
    if config.kommo_access_token:
        return StaticTokenProvider(config.kommo_access_token)
    if config.kommo_api_key:
        return StaticTokenProvider(config.kommo_api_key)
    if config.kommo_client_id and config.kommo_client_secret and config.kommo_base_url:
        return ClientCredentialsTokenProvider(
            base_url=config.kommo_base_url,
            client_id=config.kommo_client_id,
            client_secret=config.kommo_client_secret,
            timeout=config.http_timeout_seconds,
            transport=transport,
        )
    logger.warning("kommo.credentials_missing")
    return None
