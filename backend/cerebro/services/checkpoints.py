"""Motor de checkpoints: activación, resolución y expiración por conversación.

El motor es el único dueño del estado mutable (conversaciones, estadísticas de
instancias, timers pendientes, historial y contadores). Todas las mutaciones
ocurren bajo `self._lock`; las notificaciones hacia n8n se despachan después
de liberar el lock y nunca revierten el estado.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import uuid4
from zoneinfo import ZoneInfo

from cerebro.core.logging import get_logger, log_event
from cerebro.models.conversation import (
    CheckpointHistoryEntry,
    Conversation,
    ConversationStatus,
    PassedCheckpoint,
)
from cerebro.models.instance import Instance, InstanceEvent, InstanceStats
from cerebro.services.conversations import (
    ConversationError,
    ConversationNotFoundError,
    ConversationStore,
)
from cerebro.services.history import CheckpointHistory, DailyCounters
from cerebro.services.instances import InstancePool
from cerebro.services.scheduler import AsyncioTimeoutScheduler, TimeoutScheduler, TimerHandle

logger = get_logger(__name__)

EventEmitter = Callable[[str, dict[str, Any]], None]

EVENT_NEW_LEAD = "new_lead"
EVENT_CHECKPOINT_PASSED = "checkpoint_passed"
EVENT_CHECKPOINT_TIMEOUT = "checkpoint_timeout"

DEFAULT_CLIENT_NAME = "Cliente"


class CheckpointNotWaitingError(ConversationError):
    """El cliente respondió sin un checkpoint pendiente (eco o charla libre)."""

    def __init__(self, client_id: str) -> None:
        self.client_id = client_id
        super().__init__(f"Cliente {client_id} no estaba aguardando respuesta")


class InstanceNotFoundError(ConversationError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Instancia no encontrada: {name}")


@dataclass(slots=True)
class InboundMessage:
    """Mensaje normalizado recibido desde el gateway de WhatsApp."""

    client_id: str
    text: str
    from_me: bool = False
    push_name: str | None = None


@dataclass(slots=True)
class ResolvedCheckpoint:
    client_id: str
    checkpoint_id: str
    response: str
    total_passed: int
    instance: str
    instance_api_key: str | None
    response_time_ms: int


@dataclass(slots=True)
class StartedConversation:
    conversation: Conversation
    created: bool
    instance_api_key: str | None


@dataclass(slots=True)
class EngineSnapshot:
    """Vista de sólo lectura del estado para el reporte `/status`."""

    taken_at: datetime
    conversations: list[Conversation]
    instances: list[tuple[Instance, InstanceStats]]
    recent_checkpoints: list[CheckpointHistoryEntry]
    counters: DailyCounters


def _as_timedelta(value: timedelta | float | int) -> timedelta:
    if isinstance(value, timedelta):
        return value
    return timedelta(seconds=float(value))


def _copy(conversation: Conversation) -> Conversation:
    return replace(conversation, history=list(conversation.history))


class CheckpointEngine:
    def __init__(
        self,
        pool: InstancePool,
        store: ConversationStore | None = None,
        *,
        scheduler: TimeoutScheduler | None = None,
        emit: EventEmitter | None = None,
        clock: Callable[[], datetime] | None = None,
        checkpoint_timeout: timedelta | float = timedelta(hours=24),
        history: CheckpointHistory | None = None,
        display_timezone: str = "America/Sao_Paulo",
    ) -> None:
        self._pool = pool
        self._store = store or ConversationStore()
        self._scheduler = scheduler or AsyncioTimeoutScheduler()
        self._emit = emit
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._checkpoint_timeout = _as_timedelta(checkpoint_timeout)
        self._history = history or CheckpointHistory()
        self._tz = ZoneInfo(display_timezone)
        self._timers: dict[tuple[str, str], TimerHandle] = {}
        self._lock = threading.RLock()
        self._counters = DailyCounters(day=self._today(self._clock()))

    @property
    def pool(self) -> InstancePool:
        return self._pool

    @property
    def checkpoint_timeout(self) -> timedelta:
        return self._checkpoint_timeout

    def now(self) -> datetime:
        return self._clock()

    def local_time(self, value: datetime | None = None) -> str:
        """Formatea una fecha en la zona horaria de operación (dd/mm/aaaa hh:mm:ss)."""
        value = value or self._clock()
        return value.astimezone(self._tz).strftime("%d/%m/%Y %H:%M:%S")

    def _today(self, now: datetime):
        return now.astimezone(self._tz).date()

    # -- timers -----------------------------------------------------------

    def pending_timers(self) -> list[tuple[str, str]]:
        with self._lock:
            return list(self._timers)

    def _arm_timer(self, client_id: str, checkpoint_id: str, delay: timedelta) -> None:
        self._cancel_timer(client_id, checkpoint_id)
        self._timers[(client_id, checkpoint_id)] = self._scheduler.schedule(
            delay.total_seconds(), self.on_timeout, client_id, checkpoint_id
        )

    def _cancel_timer(self, client_id: str, checkpoint_id: str | None) -> bool:
        if checkpoint_id is None:
            return False
        handle = self._timers.pop((client_id, checkpoint_id), None)
        if handle is None:
            return False
        handle.cancel()
        return True

    # -- notificaciones ---------------------------------------------------

    def _event_payload(
        self, event_type: str, conversation: Conversation, now: datetime, **fields: Any
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "event_type": event_type,
            "client_phone": conversation.client_id,
            "client_name": conversation.client_name,
            "instance": conversation.instance,
            "instance_apikey": self._pool.api_key(conversation.instance),
            "timestamp": now.isoformat(),
            "local_time": self.local_time(now),
        }
        payload.update(fields)
        return payload

    def _dispatch(self, events: list[tuple[str, dict[str, Any]]]) -> None:
        if self._emit is None:
            return
        for event_type, payload in events:
            try:
                self._emit(event_type, payload)
            except Exception:
                logger.exception(
                    "notifier.dispatch_failed",
                    extra={"event_type": event_type, "client_phone": payload.get("client_phone")},
                )

    # -- ciclo de vida de conversaciones ----------------------------------

    def get_conversation(self, client_id: str) -> Conversation:
        with self._lock:
            return _copy(self._store.require(client_id))

    def client_ids(self) -> list[str]:
        with self._lock:
            return list(self._store)

    def start_conversation(
        self, client_id: str, name: str | None = None, *, source: str = "ads"
    ) -> StartedConversation:
        """Crea la conversación o retorna la existente sin tocar estadísticas."""
        with self._lock:
            existing = self._store.get(client_id)
            if existing is not None:
                log_event(
                    logger,
                    "conversation.existing",
                    client_phone=client_id,
                    instance=existing.instance,
                    since=existing.created_at.isoformat(),
                )
                return StartedConversation(
                    conversation=_copy(existing),
                    created=False,
                    instance_api_key=self._pool.api_key(existing.instance),
                )

            now = self._clock()
            instance = self._pool.select_instance()
            self._pool.record_event(instance.name, InstanceEvent.NEW_LEAD)
            conversation = self._store.create(
                client_id,
                name or DEFAULT_CLIENT_NAME,
                instance.name,
                now=now,
                expires_at=now + self._checkpoint_timeout,
                source=source,
            )
            self._counters.roll_over(self._today(now))
            self._counters.leads_today += 1
            result = StartedConversation(
                conversation=_copy(conversation),
                created=True,
                instance_api_key=instance.api_key,
            )
            event = self._event_payload(EVENT_NEW_LEAD, conversation, now, source=source)

        log_event(logger, "conversation.started", client_phone=client_id, instance=instance.name)
        self._dispatch([(EVENT_NEW_LEAD, event)])
        return result

    def complete_conversation(self, client_id: str) -> Conversation:
        """Marca la conversación como concluida y libera su carga en la instancia."""
        with self._lock:
            conversation = self._store.require(client_id)
            if conversation.status in (ConversationStatus.COMPLETED, ConversationStatus.EXPIRED):
                return _copy(conversation)
            self._cancel_timer(client_id, conversation.current_checkpoint)
            conversation.current_checkpoint = None
            conversation.activated_at = None
            conversation.waiting_for_response = False
            conversation.status = ConversationStatus.COMPLETED
            conversation.last_activity = self._clock()
            self._pool.record_event(conversation.instance, InstanceEvent.CONVERSATION_COMPLETE)
            snapshot = _copy(conversation)

        log_event(logger, "conversation.completed", client_phone=client_id, instance=snapshot.instance)
        return snapshot

    # -- checkpoints ------------------------------------------------------

    def activate(
        self,
        client_id: str,
        checkpoint_id: str,
        timeout: timedelta | float | None = None,
        *,
        message: str | None = None,
        step_data: Any = None,
    ) -> Conversation:
        """Activa `checkpoint_id` reemplazando cualquier checkpoint en espera."""
        delay = self._checkpoint_timeout if timeout is None else _as_timedelta(timeout)
        with self._lock:
            conversation = self._store.get(client_id)
            if conversation is None:
                log_event(
                    logger,
                    "checkpoint.activate_unknown_client",
                    level=logging.WARNING,
                    client_phone=client_id,
                    checkpoint_id=checkpoint_id,
                )
                raise ConversationNotFoundError(client_id)

            superseded = conversation.current_checkpoint
            self._cancel_timer(client_id, superseded)

            now = self._clock()
            conversation.current_checkpoint = checkpoint_id
            conversation.waiting_for_response = True
            conversation.activated_at = now
            conversation.last_activity = now
            conversation.expires_at = now + delay
            if message is not None:
                conversation.last_system_message = message
            if step_data is not None:
                conversation.step_data = step_data
            self._arm_timer(client_id, checkpoint_id, delay)
            snapshot = _copy(conversation)

        log_event(
            logger,
            "checkpoint.activated",
            client_phone=client_id,
            client_name=snapshot.client_name,
            checkpoint_id=checkpoint_id,
            superseded=superseded,
            expires_at=snapshot.expires_at.isoformat(),
        )
        return snapshot

    def resolve(self, client_id: str, response_text: str) -> ResolvedCheckpoint:
        """Resuelve el checkpoint en espera con la respuesta del cliente."""
        with self._lock:
            conversation = self._store.get(client_id)
            if conversation is None:
                log_event(
                    logger,
                    "checkpoint.response_unknown_client",
                    level=logging.WARNING,
                    client_phone=client_id,
                )
                raise ConversationNotFoundError(client_id)
            if not conversation.waiting_for_response or conversation.current_checkpoint is None:
                log_event(logger, "checkpoint.not_waiting", client_phone=client_id)
                raise CheckpointNotWaitingError(client_id)

            now = self._clock()
            checkpoint_id = conversation.current_checkpoint
            self._cancel_timer(client_id, checkpoint_id)

            passed = PassedCheckpoint(
                checkpoint_id=checkpoint_id,
                response=response_text,
                passed_at=now,
                latency=now - (conversation.activated_at or conversation.last_activity),
            )
            conversation.history.append(passed)
            conversation.current_checkpoint = None
            conversation.activated_at = None
            conversation.waiting_for_response = False
            conversation.last_activity = now

            self._pool.record_event(conversation.instance, InstanceEvent.RESPONSE_RECEIVED)
            self._history.add(
                CheckpointHistoryEntry(
                    id=f"{int(now.timestamp() * 1000)}_{uuid4().hex[:9]}",
                    client_id=client_id,
                    client_name=conversation.client_name,
                    checkpoint_id=checkpoint_id,
                    response=response_text,
                    instance=conversation.instance,
                    timestamp=now,
                    response_time_ms=passed.response_time_ms,
                )
            )
            self._counters.roll_over(self._today(now))
            self._counters.checkpoints_passed_today += 1
            self._counters.checkpoints_passed_total += 1

            result = ResolvedCheckpoint(
                client_id=client_id,
                checkpoint_id=checkpoint_id,
                response=response_text,
                total_passed=conversation.total_checkpoints_passed,
                instance=conversation.instance,
                instance_api_key=self._pool.api_key(conversation.instance),
                response_time_ms=passed.response_time_ms,
            )

        log_event(
            logger,
            "checkpoint.passed",
            client_phone=client_id,
            checkpoint_id=checkpoint_id,
            response_preview=response_text[:50],
            total_passed=result.total_passed,
        )
        return result

    def passed_event(self, result: ResolvedCheckpoint) -> dict[str, Any]:
        """Payload `checkpoint_passed` para reenviar a n8n."""
        now = self._clock()
        return {
            "event_type": EVENT_CHECKPOINT_PASSED,
            "client_phone": result.client_id,
            "checkpoint_id": result.checkpoint_id,
            "response_message": result.response,
            "total_checkpoints_passed": result.total_passed,
            "response_time_ms": result.response_time_ms,
            "instance": result.instance,
            "instance_apikey": result.instance_api_key,
            "timestamp": now.isoformat(),
            "local_time": self.local_time(now),
        }

    def handle_inbound(self, message: InboundMessage) -> ResolvedCheckpoint | None:
        """Procesa un mensaje entrante y notifica a n8n si pasó un checkpoint.

        Ecos (`from_me`) y textos vacíos se ignoran. Mensajes sin checkpoint
        pendiente o de clientes desconocidos se registran y se descartan.
        """
        if message.from_me or not message.text.strip():
            return None
        try:
            result = self.resolve(message.client_id, message.text)
        except (CheckpointNotWaitingError, ConversationNotFoundError):
            return None
        self._dispatch([(EVENT_CHECKPOINT_PASSED, self.passed_event(result))])
        return result

    def on_timeout(self, client_id: str, checkpoint_id: str) -> bool:
        """Callback del timer; no hace nada si el checkpoint ya no está en espera."""
        with self._lock:
            conversation = self._store.get(client_id)
            if (
                conversation is None
                or not conversation.waiting_for_response
                or conversation.current_checkpoint != checkpoint_id
            ):
                logger.debug(
                    "checkpoint.timeout_stale",
                    extra={"client_phone": client_id, "checkpoint_id": checkpoint_id},
                )
                return False
            self._timers.pop((client_id, checkpoint_id), None)
            event = self._expire(conversation, self._clock())

        self._dispatch([event])
        return True

    def expire_if_overdue(self, client_id: str, now: datetime | None = None) -> bool:
        """Expira el checkpoint si su fecha límite ya pasó, aunque el timer se haya perdido."""
        with self._lock:
            now = now or self._clock()
            conversation = self._store.get(client_id)
            if conversation is None or not conversation.is_expired(now):
                return False
            self._cancel_timer(client_id, conversation.current_checkpoint)
            event = self._expire(conversation, now)

        self._dispatch([event])
        return True

    def _expire(self, conversation: Conversation, now: datetime) -> tuple[str, dict[str, Any]]:
        checkpoint_id = conversation.current_checkpoint
        was_active = conversation.status is ConversationStatus.ACTIVE
        conversation.waiting_for_response = False
        conversation.current_checkpoint = None
        conversation.activated_at = None
        conversation.status = ConversationStatus.EXPIRED

        self._pool.record_event(conversation.instance, InstanceEvent.TIMEOUT)
        if was_active:
            self._pool.record_event(conversation.instance, InstanceEvent.CONVERSATION_COMPLETE)
        self._counters.roll_over(self._today(now))
        self._counters.timeouts_today += 1
        self._counters.timeouts_total += 1

        log_event(
            logger,
            "checkpoint.timeout",
            level=logging.WARNING,
            client_phone=conversation.client_id,
            client_name=conversation.client_name,
            checkpoint_id=checkpoint_id,
            instance=conversation.instance,
        )
        return (
            EVENT_CHECKPOINT_TIMEOUT,
            self._event_payload(
                EVENT_CHECKPOINT_TIMEOUT,
                conversation,
                now,
                checkpoint_id=checkpoint_id,
                expires_at=conversation.expires_at.isoformat(),
                total_checkpoints_passed=conversation.total_checkpoints_passed,
            ),
        )

    # -- retención --------------------------------------------------------

    def evict_if_inactive(self, client_id: str, cutoff: datetime) -> bool:
        """Elimina la conversación si su última actividad es anterior a `cutoff`."""
        with self._lock:
            conversation = self._store.get(client_id)
            if conversation is None or not conversation.last_activity < cutoff:
                return False
            self._cancel_timer(client_id, conversation.current_checkpoint)
            if conversation.status is ConversationStatus.ACTIVE:
                self._pool.record_event(conversation.instance, InstanceEvent.CONVERSATION_COMPLETE)
            self._store.delete(client_id)

        log_event(logger, "conversation.evicted", client_phone=client_id)
        return True

    def prune_history(self, cutoff: datetime) -> int:
        with self._lock:
            return self._history.prune(cutoff)

    def roll_over_counters(self, now: datetime | None = None) -> bool:
        with self._lock:
            return self._counters.roll_over(self._today(now or self._clock()))

    # -- administración y consulta ----------------------------------------

    def block_instance(self, name: str) -> InstanceStats:
        """Bloquea una instancia; deja de ser elegible en la siguiente selección."""
        with self._lock:
            if self._pool.get(name) is None:
                raise InstanceNotFoundError(name)
            self._pool.record_event(name, InstanceEvent.BLOCKED)
            stats = self._pool.stats(name)

        log_event(logger, "instances.blocked", level=logging.WARNING, instance=name)
        return stats

    def snapshot(self, history_limit: int = 50) -> EngineSnapshot:
        with self._lock:
            now = self._clock()
            self._counters.roll_over(self._today(now))
            conversations = [_copy(item) for item in self._store.values()]
            active_by_instance: dict[str, int] = {}
            for item in conversations:
                if item.status is ConversationStatus.ACTIVE:
                    active_by_instance[item.instance] = active_by_instance.get(item.instance, 0) + 1
            instances = []
            for instance in self._pool.instances:
                stats = self._pool.stats(instance.name)
                stats.active_conversations = active_by_instance.get(instance.name, 0)
                instances.append((replace(instance), stats))
            return EngineSnapshot(
                taken_at=now,
                conversations=conversations,
                instances=instances,
                recent_checkpoints=self._history.recent(history_limit),
                counters=replace(self._counters),
            )
