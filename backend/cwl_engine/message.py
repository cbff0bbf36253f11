from __future__ import annotations

from typing import Any, Iterable

SEPARATOR = "---"


def _missing(roster: Any) -> int:
    return max(0, roster.capacity - len(roster.players))


def render_roster(roster: Any) -> str:
    lines = [
        f"{roster.league}\n\n",
        f"{roster.name} - {roster.capacity} partecipanti\n\n",
    ]
    for index, player in enumerate(roster.players, start=1):
        lines.append(f"{index}) {player.name} - TH{player.townhall_level}\n")

    missing = _missing(roster)
    if missing > 0:
        lines.append(f"\nMancano ancora {missing} player\n")

    lines.append(f"\n{SEPARATOR}\n\n")
    return "".join(lines)


def render_message(rosters: Iterable[Any]) -> str:
    """
    Render rosters into the shareable CWL message.

    One block per roster in the given order, players numbered from 1 in the
    order they are listed. Empty rosters are rendered too.
    """
    return "".join(render_roster(roster) for roster in rosters)
