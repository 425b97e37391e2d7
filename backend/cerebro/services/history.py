"""Historial global de checkpoints y contadores diarios."""

from __future__ import annotations

from collections import deque
from dataclasses import asdict, dataclass
from datetime import date, datetime

from cerebro.models.conversation import CheckpointHistoryEntry


class CheckpointHistory:
    """Buffer circular con los checkpoints resueltos, del más reciente al más antiguo."""

    def __init__(self, max_entries: int = 1000) -> None:
        self._entries: deque[CheckpointHistoryEntry] = deque(maxlen=max_entries)

    def add(self, entry: CheckpointHistoryEntry) -> None:
        self._entries.appendleft(entry)

    def recent(self, limit: int | None = None) -> list[CheckpointHistoryEntry]:
        entries = list(self._entries)
        return entries[:limit] if limit is not None else entries

    def prune(self, cutoff: datetime) -> int:
        """Elimina las entradas con timestamp igual o anterior a `cutoff`."""
        kept = [entry for entry in self._entries if entry.timestamp > cutoff]
        removed = len(self._entries) - len(kept)
        if removed:
            self._entries = deque(kept, maxlen=self._entries.maxlen)
        return removed

    def __len__(self) -> int:
        return len(self._entries)


@dataclass(slots=True)
class DailyCounters:
    day: date
    leads_today: int = 0
    checkpoints_passed_today: int = 0
    timeouts_today: int = 0
    checkpoints_passed_total: int = 0
    timeouts_total: int = 0

    def roll_over(self, today: date) -> bool:
        """Reinicia los contadores diarios cuando cambió la fecha."""
        if today == self.day:
            return False
        self.day = today
        self.leads_today = 0
        self.checkpoints_passed_today = 0
        self.timeouts_today = 0
        return True

    def as_dict(self) -> dict[str, object]:
        data = asdict(self)
        data["day"] = self.day.isoformat()
        return data

