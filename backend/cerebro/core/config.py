"""Configuración central basada en variables de entorno."""

import json

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from cerebro.data import data_path


class InstanceConfig(BaseModel):
    """Identidad de Evolution API disponible para repartir conversaciones."""

    name: str
    id: str = Field(..., description="API key de la instancia en Evolution.")
    active: bool = True


def _default_instances() -> list[InstanceConfig]:
    raw = json.loads(data_path("instances.json").read_text(encoding="utf-8"))
    return [InstanceConfig(**item) for item in raw]


class Settings(BaseSettings):
    """Valores globales leídos desde `.env` o el entorno."""

    environment: str = "development"
    log_level: str | None = Field(
        default=None,
        description="Nivel de logging global (ej. debug, info, warning). Cuando no se define, usa un valor por ambiente.",
    )
    request_log_level: str = Field(
        default="info",
        description=(
            "Nivel mínimo para registrar solicitudes en middleware. "
            "Valores más altos (warning/error) reducen registros de peticiones exitosas."
        ),
    )
    request_log_skip_prefixes: tuple[str, ...] = Field(
        default=("/favicon", "/robots.txt", "/docs", "/openapi", "/api/health", "/health"),
        description="Prefijos de ruta para los que no se registrarán eventos de request.started/completed.",
    )
    log_file_path: str | None = None
    n8n_webhook_url: str = "https://n8n.flowzap.fun/webhook/multi-checkpoint"
    notifier_timeout_seconds: float = 15.0
    checkpoint_timeout_seconds: float = Field(
        default=24 * 60 * 60,
        description="Tiempo que un cliente tiene para responder un checkpoint.",
    )
    data_retention_seconds: float = Field(
        default=48 * 60 * 60,
        description="Horizonte de retención para conversaciones inactivas, historial y logs.",
    )
    sweep_interval_seconds: float = Field(default=30 * 60, gt=0)
    sweeper_enabled: bool = True
    timeout_health_penalty: float = Field(
        default=5.0,
        description="Puntos de salud que pierde una instancia cuando un checkpoint expira.",
    )
    history_max_entries: int = Field(default=1000, ge=1)
    log_buffer_max_entries: int = Field(default=1000, ge=1)
    display_timezone: str = "America/Sao_Paulo"
    instances: list[InstanceConfig] = Field(default_factory=_default_instances)
    model_config = SettingsConfigDict(env_file=".env", env_prefix="CEREBRO_", extra="allow")


settings = Settings()
