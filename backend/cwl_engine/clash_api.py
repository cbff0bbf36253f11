"""
Clash of Clans league-data lookup.

Single blocking attempt against the public API; no caching, no retries.
Member records are passed through with field renaming only.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.clashofclans.com/v1"


class ClashApiError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None, details: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details


@dataclass
class ClashPlayer:
    name: str
    tag: str
    town_hall_level: Optional[int] = None
    war_stars: int = 0
    trophies: Optional[int] = None
    best_trophies: Optional[int] = None
    legend_statistics: Optional[Dict[str, Any]] = None


def clean_tag(clan_tag: str) -> str:
    return clan_tag.strip().lstrip("#").upper()


def _member_to_player(member: Dict[str, Any]) -> ClashPlayer:
    return ClashPlayer(
        name=member.get("name"),
        tag=member.get("tag"),
        town_hall_level=member.get("townHallLevel"),
        war_stars=member.get("warStars") or 0,
        trophies=member.get("trophies"),
        best_trophies=member.get("bestTrophies"),
        legend_statistics=member.get("legendStatistics"),
    )


def fetch_clan_members(
    clan_tag: str,
    *,
    api_key: str,
    base_url: str = DEFAULT_API_URL,
    timeout: float = 10,
) -> List[ClashPlayer]:
    """Fetch the member list of a clan and map it to ClashPlayer records."""
    tag = clean_tag(clan_tag or "")
    if not tag:
        raise ClashApiError("Tag clan mancante", status_code=400)
    if not api_key:
        raise ClashApiError("API Key di Clash of Clans non configurata")

    url = f"{base_url.rstrip('/')}/clans/%23{tag}/members"
    try:
        resp = requests.get(
            url,
            headers={"Authorization": f"Bearer {api_key}", "Accept": "application/json"},
            timeout=timeout,
        )
    except requests.RequestException as exc:
        logger.error("Clash API request failed for %s: %s", tag, exc)
        raise ClashApiError("Errore nel recupero dei dati da Clash of Clans API", details=str(exc)) from exc

    if resp.status_code == 404:
        raise ClashApiError("Clan non trovato", status_code=404, details=f'Il tag clan "{clan_tag}" non esiste o non è valido')
    if resp.status_code == 403:
        raise ClashApiError("API Key non valida o non autorizzata", status_code=403)
    if not resp.ok:
        raise ClashApiError(
            "Errore nel recupero dei dati da Clash of Clans API",
            status_code=resp.status_code,
            details=resp.text,
        )

    try:
        data = resp.json()
    except ValueError as exc:
        raise ClashApiError("Formato dati API non valido", details=str(exc)) from exc

    items = data.get("items") if isinstance(data, dict) else None
    if not isinstance(items, list):
        raise ClashApiError("Formato dati API non valido", details="La risposta non contiene la lista dei membri")

    return [_member_to_player(member) for member in items if isinstance(member, dict)]
