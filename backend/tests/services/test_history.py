from datetime import date, datetime, timedelta, timezone

from cerebro.models.conversation import CheckpointHistoryEntry
from cerebro.services.history import CheckpointHistory, DailyCounters

NOW = datetime(2026, 10, 17, 15, 0, tzinfo=timezone.utc)


def _entry(index: int, at: datetime) -> CheckpointHistoryEntry:
    return CheckpointHistoryEntry(
        id=f"h{index}",
        client_id="5511",
        client_name="Ana",
        checkpoint_id=f"k{index}",
        response="sí",
        instance="G01",
        timestamp=at,
        response_time_ms=1000,
    )


def test_history_is_newest_first_and_bounded() -> None:
    history = CheckpointHistory(max_entries=2)
    for index in range(3):
        history.add(_entry(index, NOW + timedelta(minutes=index)))

    assert [entry.id for entry in history.recent()] == ["h2", "h1"]
    assert [entry.id for entry in history.recent(1)] == ["h2"]


def test_history_prune_removes_old_entries() -> None:
    history = CheckpointHistory()
    history.add(_entry(0, NOW - timedelta(hours=50)))
    history.add(_entry(1, NOW))

    assert history.prune(NOW - timedelta(hours=48)) == 1
    assert len(history) == 1


def test_daily_counters_roll_over_keeps_totals() -> None:
    counters = DailyCounters(
        day=date(2026, 10, 16),
        leads_today=3,
        checkpoints_passed_today=2,
        timeouts_today=1,
        checkpoints_passed_total=7,
        timeouts_total=4,
    )

    assert counters.roll_over(date(2026, 10, 16)) is False
    assert counters.roll_over(date(2026, 10, 17)) is True
    assert counters.as_dict() == {
        "day": "2026-10-17",
        "leads_today": 0,
        "checkpoints_passed_today": 0,
        "timeouts_today": 0,
        "checkpoints_passed_total": 7,
        "timeouts_total": 4,
    }
