from __future__ import annotations

from typing import Iterable

import pandas as pd

from app import models

PLAYER_COLUMNS = ["ID", "Nome Player", "Town Hall", "Data Registrazione"]


def players_frame(players: Iterable[models.Player]) -> pd.DataFrame:
    rows = [
        {
            "ID": player.id,
            "Nome Player": player.name,
            "Town Hall": player.townhall_level,
            "Data Registrazione": player.registered_at.strftime("%Y-%m-%d %H:%M:%S") if player.registered_at else "",
        }
        for player in players
    ]
    return pd.DataFrame(rows, columns=PLAYER_COLUMNS)


def players_csv(players: Iterable[models.Player]) -> str:
    """CSV of the registered players; pandas quotes names holding commas or quotes."""
    return players_frame(players).to_csv(index=False, lineterminator="\n")
