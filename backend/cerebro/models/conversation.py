"""Modelos en memoria para conversaciones y checkpoints."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any


class ConversationStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    EXPIRED = "expired"
    # Sólo para reportes; bloquear una instancia no cambia el estado de sus conversaciones.
    BLOCKED = "blocked"


@dataclass(slots=True)
class PassedCheckpoint:
    """Respuesta del cliente que resolvió un checkpoint."""

    checkpoint_id: str
    response: str
    passed_at: datetime
    latency: timedelta

    @property
    def response_time_ms(self) -> int:
        return int(self.latency.total_seconds() * 1000)


@dataclass(slots=True)
class Conversation:
    """Estado de una conversación guionada con un cliente.

    `waiting_for_response` y `current_checkpoint` cambian siempre juntos: sólo
    hay espera mientras existe un checkpoint activo.
    """

    client_id: str
    client_name: str
    instance: str
    created_at: datetime
    last_activity: datetime
    expires_at: datetime
    source: str = "ads"
    status: ConversationStatus = ConversationStatus.ACTIVE
    current_checkpoint: str | None = None
    activated_at: datetime | None = None
    waiting_for_response: bool = False
    history: list[PassedCheckpoint] = field(default_factory=list)
    last_system_message: str | None = None
    step_data: Any = None

    @property
    def total_checkpoints_passed(self) -> int:
        return len(self.history)

    def is_expired(self, now: datetime) -> bool:
        """Indica si el checkpoint en espera ya superó su fecha límite."""
        return self.waiting_for_response and now > self.expires_at


@dataclass(slots=True)
class CheckpointHistoryEntry:
    """Registro global de un checkpoint resuelto."""

    id: str
    client_id: str
    client_name: str
    checkpoint_id: str
    response: str
    instance: str
    timestamp: datetime
    response_time_ms: int
