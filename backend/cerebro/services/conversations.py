"""Almacén en memoria de conversaciones por cliente."""

from __future__ import annotations

from collections.abc import Iterator
from datetime import datetime

from cerebro.models.conversation import Conversation


class ConversationError(RuntimeError):
    """Errores de alto nivel al operar conversaciones."""


class ConversationNotFoundError(ConversationError):
    def __init__(self, client_id: str) -> None:
        self.client_id = client_id
        super().__init__(f"Cliente no encontrado: {client_id}")


class ConversationAlreadyExistsError(ConversationError):
    def __init__(self, client_id: str) -> None:
        self.client_id = client_id
        super().__init__(f"El cliente {client_id} ya tiene una conversación")


class ConversationStore:
    """Mapa clave-valor `client_id -> Conversation`.

    El identificador es opaco para esta capa; no se valida su formato.
    """

    def __init__(self) -> None:
        self._items: dict[str, Conversation] = {}

    def get(self, client_id: str) -> Conversation | None:
        return self._items.get(client_id)

    def require(self, client_id: str) -> Conversation:
        conversation = self._items.get(client_id)
        if conversation is None:
            raise ConversationNotFoundError(client_id)
        return conversation

    def create(
        self,
        client_id: str,
        name: str,
        instance: str,
        *,
        now: datetime,
        expires_at: datetime,
        source: str = "ads",
    ) -> Conversation:
        if client_id in self._items:
            raise ConversationAlreadyExistsError(client_id)
        conversation = Conversation(
            client_id=client_id,
            client_name=name,
            instance=instance,
            created_at=now,
            last_activity=now,
            expires_at=expires_at,
            source=source,
        )
        self._items[client_id] = conversation
        return conversation

    def upsert(self, conversation: Conversation) -> None:
        self._items[conversation.client_id] = conversation

    def delete(self, client_id: str) -> Conversation | None:
        return self._items.pop(client_id, None)

    def values(self) -> list[Conversation]:
        return list(self._items.values())

    def __contains__(self, client_id: object) -> bool:
        return client_id in self._items

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._items))
