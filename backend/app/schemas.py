from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


class PlayerCreate(BaseModel):
    name: str = Field(min_length=1, description="In-game player name")
    townhall_level: int = Field(description="Town Hall level; 12 or higher to register")

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("name must not be blank")
        return value


class Player(BaseModel):
    id: int
    name: str
    townhall_level: int
    registered_at: datetime


class ClanCreate(BaseModel):
    name: str = Field(min_length=1)
    capacity: int = 15
    league: str


class Clan(BaseModel):
    id: int
    name: str
    capacity: int
    league: str
    created_at: Optional[datetime] = None


class CwlListCreate(BaseModel):
    name: str = Field(min_length=1)
    message: str = ""


class CwlList(BaseModel):
    id: int
    name: str
    message: str
    created_at: datetime


class ContentUpsert(BaseModel):
    key: str = Field(min_length=1)
    value: str


class Content(BaseModel):
    key: str
    value: str
    updated_at: Optional[datetime] = None


class RosterPlayer(BaseModel):
    id: int
    name: str
    townhall_level: int
    position: int


class RosterWithPlayers(BaseModel):
    id: int
    name: str
    capacity: int
    league: str
    players: List[RosterPlayer]
    missing: int


class DistributeRequest(BaseModel):
    persist: bool = Field(default=False, description="Store the result instead of only previewing it")
    list_id: Optional[int] = Field(default=None, description="List scope to replace when persisting")


class AssignRequest(BaseModel):
    player_id: int
    clan_id: int
    position: int = 0
    list_id: Optional[int] = None


class Assignment(BaseModel):
    id: int
    player_id: int
    clan_id: int
    position: int
    list_id: Optional[int] = None


class RemoveRequest(BaseModel):
    player_id: int
    clan_id: int


class MoveRequest(BaseModel):
    player_id: int
    from_clan_id: int
    to_clan_id: int


class ReorderRequest(BaseModel):
    clan_id: int
    player_id: int
    new_position: int


class SwapRequest(BaseModel):
    clan_id: int
    player_id: int
    other_player_id: int


class SuccessResponse(BaseModel):
    success: bool
    message: Optional[str] = None


class GenerateMessageRequest(BaseModel):
    list_id: Optional[int] = Field(default=None, description="Render only this list scope and store the text on it")
    save_as: Optional[str] = Field(default=None, description="Create a new CWL list holding the message")


class GenerateMessageResponse(BaseModel):
    message: str
    rosters: List[RosterWithPlayers]
    cwl_list: Optional[CwlList] = None


class ExportPdfRequest(BaseModel):
    message: str = ""


class Stats(BaseModel):
    total_players: int
    today_registrations: int
    avg_townhall: float


class ClashPlayer(BaseModel):
    name: Optional[str] = None
    tag: Optional[str] = None
    town_hall_level: Optional[int] = None
    war_stars: int = 0
    trophies: Optional[int] = None
    best_trophies: Optional[int] = None
    legend_statistics: Optional[Dict[str, Any]] = None
