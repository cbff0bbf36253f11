from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from datetime import UTC, date, datetime
from typing import Any, Iterable, Optional


@dataclass
class PlayerStats:
    total_players: int
    today_registrations: int
    avg_townhall: float

    def as_dict(self) -> dict:
        return asdict(self)


def _utc_day(value: datetime) -> date:
    # SQLite hands back naive datetimes; they were written as UTC.
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).date()


def _round_one_decimal(value: float) -> float:
    return math.floor(value * 10 + 0.5) / 10


def compute_stats(players: Iterable[Any], today: Optional[date] = None) -> PlayerStats:
    """Count players, today's (UTC) registrations and the mean townhall level."""
    today = today or datetime.now(UTC).date()
    players = list(players)
    total = len(players)
    if total == 0:
        return PlayerStats(total_players=0, today_registrations=0, avg_townhall=0)

    registered_today = sum(
        1 for p in players if p.registered_at is not None and _utc_day(p.registered_at) == today
    )
    average = sum(p.townhall_level for p in players) / total
    return PlayerStats(
        total_players=total,
        today_registrations=registered_today,
        avg_townhall=_round_one_decimal(average),
    )
