"""Configuración de logging estructurado para el servicio."""

from __future__ import annotations

import json
import logging
import threading
from collections import deque
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

_RESERVED = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "exc_info",
    "exc_text",
    "stack_info",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "taskName",
}


def _extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    return {key: value for key, value in record.__dict__.items() if key not in _RESERVED}


class JSONFormatter(logging.Formatter):
    """Formatter que serializa los registros como JSON."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(
                timespec="milliseconds"
            ),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(_extra_fields(record))

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


class RecentLogHandler(logging.Handler):
    """Conserva en memoria los últimos registros para el reporte de estado.

    El buffer está acotado por `max_entries` y además se poda por antigüedad
    desde el barrido de retención.
    """

    def __init__(self, max_entries: int = 1000, level: int = logging.INFO) -> None:
        super().__init__(level=level)
        self._records: deque[dict[str, Any]] = deque(maxlen=max_entries)
        self._guard = threading.Lock()

    def emit(self, record: logging.LogRecord) -> None:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "data": _extra_fields(record) or None,
        }
        with self._guard:
            self._records.append(entry)

    def recent(self, limit: int = 100) -> list[dict[str, Any]]:
        """Retorna los últimos `limit` registros en orden cronológico."""
        with self._guard:
            items = list(self._records)
        return items[-limit:] if limit else items

    def prune(self, cutoff: datetime) -> int:
        """Descarta registros anteriores a `cutoff` y retorna cuántos se eliminaron."""
        with self._guard:
            kept = [entry for entry in self._records if entry["timestamp"] > cutoff]
            removed = len(self._records) - len(kept)
            self._records.clear()
            self._records.extend(kept)
        return removed

    def resize(self, max_entries: int) -> None:
        with self._guard:
            if self._records.maxlen != max_entries:
                self._records = deque(self._records, maxlen=max_entries)

    def __len__(self) -> int:
        return len(self._records)


recent_logs = RecentLogHandler()


def configure_logging(
    level: int = logging.INFO,
    *,
    log_file: str | None = None,
    per_logger_files: dict[str, str] | None = None,
    buffer_size: int | None = None,
) -> None:
    """Configura logging estructurado con formato JSON."""
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter())
    root_logger.addHandler(handler)

    if buffer_size is not None:
        recent_logs.resize(buffer_size)
    root_logger.addHandler(recent_logs)

    if log_file:
        try:
            log_path = Path(log_file)
            log_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                log_path,
                maxBytes=10 * 1024 * 1024,
                backupCount=5,
                encoding="utf-8",
            )
            file_handler.setFormatter(JSONFormatter())
            root_logger.addHandler(file_handler)
        except Exception:
            root_logger.exception(
                "No fue posible iniciar el handler de archivo", extra={"log_file": log_file}
            )

    if per_logger_files:
        for logger_name, file_path in per_logger_files.items():
            try:
                path = Path(file_path)
                path.parent.mkdir(parents=True, exist_ok=True)
                handler = RotatingFileHandler(
                    path,
                    maxBytes=10 * 1024 * 1024,
                    backupCount=5,
                    encoding="utf-8",
                )
                handler.setFormatter(JSONFormatter())
                logging.getLogger(logger_name).addHandler(handler)
            except Exception:
                root_logger.exception(
                    "No fue posible iniciar el handler dedicado",
                    extra={"logger": logger_name, "file": file_path},
                )

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def resolve_log_level(value: str | int | None, *, default: int = logging.INFO) -> int:
    """Convierte valores configurables a constantes numéricas de logging."""
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        candidate = value.strip()
        if not candidate:
            return default
        try:
            return int(candidate)
        except ValueError:
            mapped = logging.getLevelName(candidate.upper())
            if isinstance(mapped, int):
                return mapped
    return default


def get_logger(name: str) -> logging.Logger:
    """Retorna un logger hijo con el nombre solicitado."""
    return logging.getLogger(name)


def log_event(logger: logging.Logger, message: str, *, level: int = logging.INFO, **extra: Any) -> None:
    """Helper para enviar eventos con campos adicionales en formato JSON."""
    if extra:
        logger.log(level, message, extra=extra)
    else:
        logger.log(level, message)
