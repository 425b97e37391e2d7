"""Punto de entrada principal para la aplicación FastAPI."""

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from cerebro.api.routes.conversations import router as conversations_router
from cerebro.api.routes.health import router as health_router
from cerebro.api.routes.status import router as status_router
from cerebro.channels.whatsapp.router import router as whatsapp_router
from cerebro.core.config import Settings, settings
from cerebro.core.logging import configure_logging, get_logger, log_event, recent_logs, resolve_log_level
from cerebro.core.middleware import RequestLoggingMiddleware
from cerebro.services.checkpoints import CheckpointEngine
from cerebro.services.history import CheckpointHistory
from cerebro.services.instances import InstancePool, mask_secret
from cerebro.services.notifier import WorkflowNotifier
from cerebro.services.sweeper import RetentionSweeper


def _configure_logging(config: Settings) -> None:
    default_log_level = logging.DEBUG if config.environment != "production" else logging.INFO
    log_level = resolve_log_level(config.log_level, default=default_log_level)
    per_logger_files = None
    if config.log_file_path:
        log_dir = Path(config.log_file_path).parent
        per_logger_files = {
            "cerebro.request": str(log_dir / "request.log"),
            "cerebro.channels.whatsapp": str(log_dir / "whatsapp.log"),
        }
    configure_logging(
        level=log_level,
        log_file=config.log_file_path,
        per_logger_files=per_logger_files,
        buffer_size=config.log_buffer_max_entries,
    )


def create_app(config: Settings | None = None, *, notifier: WorkflowNotifier | None = None) -> FastAPI:
    """Crea y configura la instancia de FastAPI con su estado en memoria."""
    config = config or settings
    _configure_logging(config)
    log = get_logger("cerebro")

    notifier = notifier or WorkflowNotifier(
        config.n8n_webhook_url, timeout=config.notifier_timeout_seconds
    )
    pool = InstancePool(config.instances, timeout_health_penalty=config.timeout_health_penalty)
    engine = CheckpointEngine(
        pool,
        emit=notifier.dispatch,
        checkpoint_timeout=config.checkpoint_timeout_seconds,
        history=CheckpointHistory(config.history_max_entries),
        display_timezone=config.display_timezone,
    )
    sweeper = RetentionSweeper(
        engine,
        retention=config.data_retention_seconds,
        interval=config.sweep_interval_seconds,
        log_buffer=recent_logs,
    )

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        if config.sweeper_enabled:
            sweeper.start()
        log_event(
            log,
            "cerebro.started",
            instances=[inst.name for inst in pool.instances],
            api_keys=[mask_secret(inst.api_key) for inst in pool.instances],
            n8n_webhook_url=notifier.url,
        )
        try:
            yield
        finally:
            await sweeper.stop()
            await notifier.drain()

    app = FastAPI(title="Cérebro Multi-Checkpoint", version="1.0.0", root_path="/api", lifespan=lifespan)
    app.state.settings = config
    app.state.engine = engine
    app.state.notifier = notifier
    app.state.sweeper = sweeper

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Se ajustará por ambiente
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_middleware(
        RequestLoggingMiddleware,
        skip_prefixes=config.request_log_skip_prefixes,
        level=config.request_log_level,
    )

    app.include_router(health_router)
    app.include_router(conversations_router)
    app.include_router(status_router)
    app.include_router(whatsapp_router)

    @app.get("/info", tags=["info"])
    def info() -> dict[str, str | None]:  # pragma: no cover - ruta simple de apoyo
        return {"environment": config.environment, "n8n_webhook_url": notifier.url}

    return app


app = create_app()
