from __future__ import annotations

from datetime import UTC, date, datetime, timedelta
from types import SimpleNamespace

from cwl_engine.stats import compute_stats


def _player(th: int, registered_at: datetime | None) -> SimpleNamespace:
    return SimpleNamespace(townhall_level=th, registered_at=registered_at)


def test_empty_player_set() -> None:
    stats = compute_stats([])
    assert stats.as_dict() == {"total_players": 0, "today_registrations": 0, "avg_townhall": 0}


def test_counts_today_in_utc() -> None:
    today = date(2024, 3, 10)
    players = [
        _player(12, datetime(2024, 3, 10, 0, 5, tzinfo=UTC)),
        _player(13, datetime(2024, 3, 10, 23, 55)),  # naive values are read as UTC
        _player(14, datetime(2024, 3, 9, 23, 59, tzinfo=UTC)),
        _player(15, datetime(2024, 3, 10, 1, 0, tzinfo=UTC) - timedelta(hours=2)),
    ]
    stats = compute_stats(players, today=today)
    assert stats.total_players == 4
    assert stats.today_registrations == 2


def test_average_rounds_half_up_to_one_decimal() -> None:
    now = datetime.now(UTC)
    # 12, 13, 13, 13 -> 12.75 -> 12.8
    stats = compute_stats([_player(12, now), _player(13, now), _player(13, now), _player(13, now)])
    assert stats.avg_townhall == 12.8
    assert stats.today_registrations == 4


def test_average_of_single_player() -> None:
    assert compute_stats([_player(16, None)]).avg_townhall == 16
