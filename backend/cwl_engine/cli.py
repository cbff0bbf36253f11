import json
import os
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from types import SimpleNamespace
from typing import Optional

import typer

from .clash_api import ClashApiError, fetch_clan_members
from .distribution import RosterPlayer, RosterWithPlayers, auto_distribute
from .errors import CwlError
from .message import render_message
from .stats import compute_stats

app = typer.Typer(help="CWL roster engine (distribution, messages, stats).")


def _load_json(path: Path):
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise typer.BadParameter(f"Could not read {path}: {exc}") from exc


def _roster_from_dict(data: dict) -> RosterWithPlayers:
    players = [
        RosterPlayer(
            id=p.get("id", idx),
            name=p["name"],
            townhall_level=p["townhall_level"],
            position=p.get("position", idx),
        )
        for idx, p in enumerate(data.get("players") or [])
    ]
    players.sort(key=lambda p: p.position)
    return RosterWithPlayers(
        id=data.get("id", 0),
        name=data["name"],
        capacity=data["capacity"],
        league=data["league"],
        players=players,
    )


def _records(items) -> list:
    return [SimpleNamespace(**item) for item in items or []]


@app.command()
def render(path: Path = typer.Argument(..., help="JSON file with a list of rosters")):
    """Render rosters (each with its ordered players) into the CWL message."""
    data = _load_json(path)
    rosters = data.get("rosters", []) if isinstance(data, dict) else data
    typer.echo(render_message(_roster_from_dict(r) for r in rosters), nl=False)


@app.command()
def distribute(
    path: Path = typer.Argument(..., help='JSON file shaped {"players": [...], "clans": [...]}'),
    message: bool = typer.Option(False, help="Print the rendered message instead of JSON"),
):
    """Preview the round-robin distribution of players over clans."""
    data = _load_json(path)
    try:
        rosters = auto_distribute(_records(data.get("players")), _records(data.get("clans")))
    except CwlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1)
    if message:
        typer.echo(render_message(rosters), nl=False)
    else:
        typer.echo(json.dumps([asdict(r) for r in rosters], indent=2))


@app.command()
def stats(path: Path = typer.Argument(..., help="JSON file with a list of players")):
    """Print player counters for a JSON player list."""
    players = []
    for item in _load_json(path):
        registered = item.get("registered_at")
        players.append(
            SimpleNamespace(
                townhall_level=item["townhall_level"],
                registered_at=datetime.fromisoformat(registered) if registered else None,
            )
        )
    typer.echo(json.dumps(compute_stats(players).as_dict(), indent=2))


@app.command("clash-players")
def clash_players(
    clan_tag: str = typer.Argument(..., help="Clan tag, with or without the leading #"),
    api_key: Optional[str] = typer.Option(None, envvar="CLASH_API_KEY", help="Clash of Clans API key"),
):
    """Fetch clan members from the Clash of Clans API."""
    key = api_key or os.getenv("COC_API_KEY", "")
    try:
        players = fetch_clan_members(clan_tag, api_key=key)
    except ClashApiError as exc:
        typer.echo(f"Error: {exc.message}" + (f" ({exc.details})" if exc.details else ""), err=True)
        raise typer.Exit(code=1)
    typer.echo(json.dumps([asdict(p) for p in players], indent=2))


def main():
    app()


if __name__ == "__main__":
    main()
