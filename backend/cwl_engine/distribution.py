"""
Round-robin distribution of registered players across rosters.

Works on any player/clan objects exposing the attributes below, so it can be
fed ORM rows, API schemas or plain dataclasses.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, List, Sequence

from .errors import ValidationError


@dataclass
class RosterPlayer:
    id: int
    name: str
    townhall_level: int
    position: int = 0


@dataclass
class RosterWithPlayers:
    id: int
    name: str
    capacity: int
    league: str
    players: List[RosterPlayer] = field(default_factory=list)

    @property
    def missing(self) -> int:
        return max(0, self.capacity - len(self.players))


def empty_roster(clan: Any) -> RosterWithPlayers:
    return RosterWithPlayers(
        id=clan.id,
        name=clan.name,
        capacity=clan.capacity,
        league=clan.league,
    )


def auto_distribute(players: Sequence[Any], clans: Sequence[Any]) -> List[RosterWithPlayers]:
    """
    Spread players over clans in round-robin order.

    Player ``i`` lands in ``clans[i % len(clans)]``; positions inside a roster
    count up from 0 in landing order. Input order is preserved as given.
    """
    if not clans:
        raise ValidationError("no rosters configured")

    rosters = [empty_roster(clan) for clan in clans]
    for index, player in enumerate(players):
        roster = rosters[index % len(rosters)]
        roster.players.append(
            RosterPlayer(
                id=player.id,
                name=player.name,
                townhall_level=player.townhall_level,
                position=len(roster.players),
            )
        )
    return rosters
