"""Pruebas del almacén de conversaciones."""

from datetime import datetime, timedelta, timezone

import pytest

from cerebro.services.conversations import (
    ConversationAlreadyExistsError,
    ConversationNotFoundError,
    ConversationStore,
)

NOW = datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc)


def _create(store: ConversationStore, client_id: str = "5511999999999"):
    return store.create(client_id, "Ana", "G01", now=NOW, expires_at=NOW + timedelta(hours=24))


def test_create_and_get() -> None:
    store = ConversationStore()
    created = _create(store)

    assert store.get("5511999999999") is created
    assert created.client_name == "Ana"
    assert created.waiting_for_response is False
    assert created.current_checkpoint is None
    assert "5511999999999" in store
    assert len(store) == 1


def test_create_twice_raises_already_exists() -> None:
    store = ConversationStore()
    _create(store)
    with pytest.raises(ConversationAlreadyExistsError):
        _create(store)


def test_get_missing_returns_none_and_require_raises() -> None:
    store = ConversationStore()
    assert store.get("nadie") is None
    with pytest.raises(ConversationNotFoundError):
        store.require("nadie")


def test_client_id_is_opaque() -> None:
    store = ConversationStore()
    _create(store, "no-es-un-telefono")
    assert store.get("no-es-un-telefono") is not None


def test_upsert_and_delete() -> None:
    store = ConversationStore()
    conversation = _create(store)
    conversation.client_name = "Ana María"
    store.upsert(conversation)
    assert store.get("5511999999999").client_name == "Ana María"

    assert store.delete("5511999999999") is conversation
    assert store.delete("5511999999999") is None
    assert list(store) == []
