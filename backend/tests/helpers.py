from sqlmodel import Session

from app import storage
from app.schemas import ClanCreate, CwlListCreate, PlayerCreate


def make_player(session: Session, name: str, townhall_level: int = 12):
    return storage.create_player(session, PlayerCreate(name=name, townhall_level=townhall_level))


def make_clan(session: Session, name: str, capacity: int = 15, league: str = "Crystal I"):
    return storage.create_clan(session, ClanCreate(name=name, capacity=capacity, league=league))


def make_list(session: Session, name: str = "Ottobre"):
    return storage.create_cwl_list(session, CwlListCreate(name=name))
