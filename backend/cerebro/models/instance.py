"""Modelos de instancias de Evolution API y sus estadísticas."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class InstanceEvent(str, Enum):
    NEW_LEAD = "new_lead"
    RESPONSE_RECEIVED = "response_received"
    TIMEOUT = "timeout"
    CONVERSATION_COMPLETE = "conversation_complete"
    BLOCKED = "blocked"

    @classmethod
    def _missing_(cls, value):
        aliases = {
            "no_response": cls.TIMEOUT,
            "conversation_ended": cls.CONVERSATION_COMPLETE,
        }
        return aliases.get(value)


@dataclass(slots=True)
class Instance:
    name: str
    api_key: str
    active: bool = True


@dataclass(slots=True)
class InstanceStats:
    """Carga y salud acumuladas de una instancia."""

    last_activity: datetime
    total_leads: int = 0
    active_conversations: int = 0
    completed_conversations: int = 0
    timeouts: int = 0
    response_rate: float = 100.0
    health_score: float = 100.0
    blocked: bool = False
