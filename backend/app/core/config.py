"""Configuración central basada en variables de entorno."""

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Valores globales leídos desde `.env` o el entorno."""

    environment: str = "development"
    log_level: str | None = Field(
        default=None,
        description="Nivel de logging global (ej. debug, info, warning). Cuando no se define, usa un valor por ambiente.",
    )
    log_file_path: str | None = Field(
        default=None,
        description="Archivo principal de logs. Sin valor sólo se escribe a stdout.",
    )
    request_log_skip_prefixes: tuple[str, ...] = Field(
        default=("/status", "/favicon", "/docs", "/openapi"),
        description="Prefijos de ruta para los que no se registrarán eventos de request.started/completed.",
    )
    port: int = 10000
    http_timeout_seconds: float = Field(
        default=10.0,
        ge=1.0,
        le=30.0,
        description="Timeout aplicado a cada llamada saliente hacia LINE o Kommo.",
    )

    line_channel_secret: str | None = None
    line_channel_access_token: str | None = None
    line_api_base_url: str = "https://api.line.me/v2/bot"

    kommo_subdomain: str | None = None
    kommo_base_domain: str = "kommo.com"
    kommo_access_token: str | None = None
    # Token de larga duración; se aceptan ambos nombres usados en despliegues previos
    kommo_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("KOMMO_API_KEY", "KOMMO_LONG_LIVED_TOKEN"),
    )
    kommo_client_id: str | None = None
    kommo_client_secret: str | None = None
    kommo_closed_status_ids: tuple[int, ...] = Field(
        default=(142, 143),
        description="Estados terminales de leads (ganado / perdido).",
    )
    kommo_search_limit: int = Field(default=10, ge=1, le=250)
    lead_name_max_length: int = Field(default=250, ge=40)

    model_config = SettingsConfigDict(env_file=".env", extra="allow")

    @property
    def kommo_base_url(self) -> str | None:
        if not self.kommo_subdomain:
            return None
        return f"https://{self.kommo_subdomain}.{self.kommo_base_domain}"


settings = Settings()
