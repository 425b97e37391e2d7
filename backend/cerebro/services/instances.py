"""Pool de instancias de Evolution API y balanceo de nuevas conversaciones."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import replace
from datetime import datetime, timedelta, timezone

from cerebro.core.config import InstanceConfig
from cerebro.core.logging import get_logger, log_event
from cerebro.models.instance import Instance, InstanceEvent, InstanceStats

logger = get_logger(__name__)

SCORE_WEIGHTS: dict[str, float] = {
    "load": 0.4,
    "response": 0.3,
    "health": 0.2,
    "recency": 0.1,
}
RECENT_ACTIVITY_WINDOW = timedelta(minutes=5)
RECENT_ACTIVITY_BONUS = 10.0
LOAD_PENALTY_PER_CONVERSATION = 2.0


def mask_secret(value: str | None) -> str | None:
    """Enmascara secretos para logging seguro."""
    if not value:
        return value
    if len(value) <= 4:
        return "***"
    return f"{value[:2]}***{value[-2:]}"


def score_factors(stats: InstanceStats, now: datetime) -> dict[str, float]:
    """Normaliza las estadísticas de una instancia a factores entre 0 y 100."""
    recent = now - stats.last_activity < RECENT_ACTIVITY_WINDOW
    return {
        "load": max(0.0, 100.0 - stats.active_conversations * LOAD_PENALTY_PER_CONVERSATION),
        "response": stats.response_rate,
        "health": stats.health_score,
        "recency": RECENT_ACTIVITY_BONUS if recent else 0.0,
    }


def score_instance(
    stats: InstanceStats, now: datetime, weights: dict[str, float] = SCORE_WEIGHTS
) -> float:
    factors = score_factors(stats, now)
    return sum(weights[key] * value for key, value in factors.items())


class InstancePool:
    """Conjunto fijo de instancias con sus estadísticas de carga y salud.

    No es thread-safe por sí mismo: el motor de checkpoints lo usa siempre
    bajo su propio lock.
    """

    def __init__(
        self,
        instances: Iterable[Instance | InstanceConfig],
        *,
        timeout_health_penalty: float = 5.0,
        weights: dict[str, float] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._instances: list[Instance] = []
        for item in instances:
            if isinstance(item, InstanceConfig):
                item = Instance(name=item.name, api_key=item.id, active=item.active)
            self._instances.append(item)
        if not self._instances:
            raise ValueError("Se requiere al menos una instancia configurada")
        now = self._clock()
        self._stats: dict[str, InstanceStats] = {
            instance.name: InstanceStats(last_activity=now) for instance in self._instances
        }
        self._by_name = {instance.name: instance for instance in self._instances}
        self._weights = dict(weights or SCORE_WEIGHTS)
        self._timeout_health_penalty = timeout_health_penalty
        self._round_robin = 0

    @property
    def instances(self) -> list[Instance]:
        return list(self._instances)

    def get(self, name: str) -> Instance | None:
        return self._by_name.get(name)

    def api_key(self, name: str | None) -> str | None:
        instance = self._by_name.get(name) if name else None
        return instance.api_key if instance else None

    def stats(self, name: str) -> InstanceStats | None:
        """Copia de las estadísticas de la instancia, o `None` si no existe."""
        stats = self._stats.get(name)
        return replace(stats) if stats else None

    def all_stats(self) -> dict[str, InstanceStats]:
        return {name: replace(stats) for name, stats in self._stats.items()}

    def is_eligible(self, name: str) -> bool:
        instance = self._by_name.get(name)
        return bool(instance and instance.active and not self._stats[name].blocked)

    def select_instance(self) -> Instance:
        """Elige la instancia elegible con mejor puntaje.

        Empates se resuelven por el orden del pool. Si ninguna instancia es
        elegible se recurre a round-robin sobre la lista completa.
        """
        now = self._clock()
        best: Instance | None = None
        best_score = -1.0
        for instance in self._instances:
            if not self.is_eligible(instance.name):
                continue
            score = score_instance(self._stats[instance.name], now, self._weights)
            if score > best_score:
                best, best_score = instance, score

        if best is not None:
            return best

        best = self._instances[self._round_robin]
        self._round_robin = (self._round_robin + 1) % len(self._instances)
        log_event(logger, "instances.round_robin_fallback", instance=best.name)
        return best

    def record_event(self, name: str, event: InstanceEvent | str) -> None:
        """Aplica la tabla de deltas del evento a las estadísticas de la instancia."""
        stats = self._stats.get(name)
        if stats is None:
            return
        try:
            event = InstanceEvent(event)
        except ValueError:
            log_event(logger, "instances.unknown_event", level=logging.WARNING, instance=name, event=str(event))
            return

        if event is InstanceEvent.NEW_LEAD:
            stats.total_leads += 1
            stats.active_conversations += 1
        elif event is InstanceEvent.RESPONSE_RECEIVED:
            stats.response_rate = min(100.0, stats.response_rate + 0.5)
            stats.health_score = min(100.0, stats.health_score + 1)
        elif event is InstanceEvent.TIMEOUT:
            stats.timeouts += 1
            stats.response_rate = max(0.0, stats.response_rate - 2)
            stats.health_score = max(0.0, stats.health_score - self._timeout_health_penalty)
        elif event is InstanceEvent.CONVERSATION_COMPLETE:
            stats.active_conversations = max(0, stats.active_conversations - 1)
            stats.completed_conversations += 1
        elif event is InstanceEvent.BLOCKED:
            stats.blocked = True
            stats.health_score = 0.0

        stats.last_activity = self._clock()
