"""Barrido periódico de checkpoints vencidos y datos fuera de retención."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from cerebro.core.logging import RecentLogHandler, get_logger, log_event
from cerebro.services.checkpoints import CheckpointEngine

logger = get_logger(__name__)


@dataclass(slots=True)
class SweepReport:
    """Resultado de una pasada del barrido."""

    expired: int = 0
    evicted: int = 0
    history_pruned: int = 0
    logs_pruned: int = 0
    counters_reset: bool = False
    failures: list[str] = field(default_factory=list)


class RetentionSweeper:
    def __init__(
        self,
        engine: CheckpointEngine,
        *,
        retention: timedelta | float = timedelta(hours=48),
        interval: timedelta | float = timedelta(minutes=30),
        log_buffer: RecentLogHandler | None = None,
    ) -> None:
        self._engine = engine
        self._retention = retention if isinstance(retention, timedelta) else timedelta(seconds=retention)
        self._interval = interval if isinstance(interval, timedelta) else timedelta(seconds=interval)
        self._log_buffer = log_buffer
        self._task: asyncio.Task[None] | None = None

    @property
    def retention(self) -> timedelta:
        return self._retention

    @property
    def interval(self) -> timedelta:
        return self._interval

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def run_once(self, now: datetime | None = None) -> SweepReport:
        """Ejecuta una pasada completa.

        Cada conversación se procesa por separado: una falla queda registrada
        en el reporte y no impide limpiar las demás.
        """
        now = now or self._engine.now()
        cutoff = now - self._retention
        report = SweepReport()

        for client_id in self._engine.client_ids():
            try:
                if self._engine.expire_if_overdue(client_id, now):
                    report.expired += 1
                if self._engine.evict_if_inactive(client_id, cutoff):
                    report.evicted += 1
            except Exception:
                logger.exception("sweeper.entry_failed", extra={"client_phone": client_id})
                report.failures.append(client_id)

        report.history_pruned = self._engine.prune_history(cutoff)
        if self._log_buffer is not None:
            report.logs_pruned = self._log_buffer.prune(cutoff)
        report.counters_reset = self._engine.roll_over_counters(now)

        if report.expired or report.evicted or report.failures:
            log_event(
                logger,
                "sweeper.completed",
                expired=report.expired,
                evicted=report.evicted,
                history_pruned=report.history_pruned,
                logs_pruned=report.logs_pruned,
                failures=len(report.failures),
            )
        return report

    async def _loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(self._interval.total_seconds())
                self.run_once()
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("sweeper.loop_failed")

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._loop())
        log_event(logger, "sweeper.started", interval_seconds=self._interval.total_seconds())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
