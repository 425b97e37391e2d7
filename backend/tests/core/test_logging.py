"""Pruebas del logging estructurado y del buffer en memoria."""

import json
import logging
from datetime import datetime, timedelta, timezone

from cerebro.core.logging import JSONFormatter, RecentLogHandler, log_event, resolve_log_level


def _record(message: str, **extra) -> logging.LogRecord:
    record = logging.LogRecord("cerebro.test", logging.INFO, __file__, 1, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_includes_extra_fields() -> None:
    payload = json.loads(JSONFormatter().format(_record("checkpoint.passed", client_phone="5511")))

    assert payload["message"] == "checkpoint.passed"
    assert payload["level"] == "INFO"
    assert payload["logger"] == "cerebro.test"
    assert payload["client_phone"] == "5511"


def test_recent_log_handler_keeps_bounded_ring() -> None:
    handler = RecentLogHandler(max_entries=2)
    for index in range(3):
        handler.emit(_record(f"evento.{index}"))

    assert [entry["message"] for entry in handler.recent()] == ["evento.1", "evento.2"]
    assert len(handler) == 2


def test_recent_log_handler_prunes_by_age() -> None:
    handler = RecentLogHandler()
    old = _record("viejo")
    old.created = (datetime.now(timezone.utc) - timedelta(hours=72)).timestamp()
    handler.emit(old)
    handler.emit(_record("nuevo", instance="G01"))

    removed = handler.prune(datetime.now(timezone.utc) - timedelta(hours=48))

    assert removed == 1
    entries = handler.recent()
    assert [entry["message"] for entry in entries] == ["nuevo"]
    assert entries[0]["data"] == {"instance": "G01"}


def test_resize_keeps_latest_entries() -> None:
    handler = RecentLogHandler(max_entries=5)
    for index in range(5):
        handler.emit(_record(f"evento.{index}"))

    handler.resize(2)

    assert [entry["message"] for entry in handler.recent()] == ["evento.3", "evento.4"]


def test_log_event_attaches_fields() -> None:
    handler = RecentLogHandler()
    logger = logging.getLogger("cerebro.test.log_event")
    logger.setLevel(logging.DEBUG)
    logger.addHandler(handler)
    try:
        log_event(logger, "conversation.started", client_phone="5511", instance="G02")
        log_event(logger, "checkpoint.timeout", level=logging.WARNING)
    finally:
        logger.removeHandler(handler)

    first, second = handler.recent()
    assert first["data"] == {"client_phone": "5511", "instance": "G02"}
    assert second["level"] == "WARNING"


def test_resolve_log_level() -> None:
    assert resolve_log_level("debug") == logging.DEBUG
    assert resolve_log_level("30") == 30
    assert resolve_log_level(logging.ERROR) == logging.ERROR
    assert resolve_log_level("   ", default=logging.INFO) == logging.INFO
    assert resolve_log_level("nope", default=logging.WARNING) == logging.WARNING
    assert resolve_log_level(None) == logging.INFO
