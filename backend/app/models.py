from datetime import UTC, datetime
from typing import List, Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, Relationship, SQLModel

MIN_TOWNHALL = 12
CLAN_CAPACITIES = (15, 30)
LEAGUES = (
    "Crystal I",
    "Crystal II",
    "Crystal III",
    "Master I",
    "Master II",
    "Master III",
    "Champion I",
    "Champion II",
    "Champion III",
)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Player(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(nullable=False)
    townhall_level: int = Field(nullable=False)
    registered_at: datetime = Field(default_factory=_utcnow, nullable=False, index=True)

    assignments: List["Assignment"] = Relationship(
        back_populates="player", sa_relationship_kwargs={"cascade": "save-update, merge, delete"}
    )


class Clan(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(nullable=False)
    capacity: int = Field(default=15, nullable=False)
    league: str = Field(nullable=False)
    created_at: datetime = Field(default_factory=_utcnow, nullable=False)

    assignments: List["Assignment"] = Relationship(
        back_populates="clan", sa_relationship_kwargs={"cascade": "save-update, merge, delete"}
    )


class CwlList(SQLModel, table=True):
    __tablename__ = "cwl_list"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(nullable=False)
    message: str = Field(default="", nullable=False)  # last rendered message
    created_at: datetime = Field(default_factory=_utcnow, nullable=False)


class Assignment(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    player_id: int = Field(foreign_key="player.id", ondelete="CASCADE", index=True)
    clan_id: int = Field(foreign_key="clan.id", ondelete="CASCADE", index=True)
    position: int = Field(default=0, nullable=False)
    list_id: Optional[int] = Field(default=None, foreign_key="cwl_list.id", ondelete="CASCADE")

    player: Player = Relationship(back_populates="assignments")
    clan: Clan = Relationship(back_populates="assignments")

    __table_args__ = (UniqueConstraint("player_id", "clan_id"),)


class Content(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    key: str = Field(index=True, nullable=False)
    value: str = Field(nullable=False)
    updated_at: datetime = Field(default_factory=_utcnow, nullable=False)

    __table_args__ = (UniqueConstraint("key"),)
