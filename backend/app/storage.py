"""
Entity store and assignment operations over a SQLModel session.

Every mutation runs in a single transaction: on any failure the session is
rolled back, so remove-then-insert sequences never leave a player half-moved.
Assignment mutations also hold a process-local lock per affected roster and
player, taken in sorted order.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Dict, Hashable, Iterator, List, Optional, Sequence, Tuple

from sqlalchemy import delete, func
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, SQLModel, select

from app import models
from app.core.config import get_settings
from app.schemas import ClanCreate, ContentUpsert, CwlListCreate, PlayerCreate
from cwl_engine.distribution import RosterPlayer, RosterWithPlayers, auto_distribute, empty_roster
from cwl_engine.errors import ConflictError, CwlError, NotFoundError, StoreError, ValidationError
from cwl_engine.message import render_message
from cwl_engine.stats import PlayerStats
from cwl_engine.stats import compute_stats as compute_player_stats

logger = logging.getLogger(__name__)

_locks_guard = threading.Lock()
_locks: Dict[Hashable, threading.Lock] = {}


def _lock_for(key: Hashable) -> threading.Lock:
    with _locks_guard:
        lock = _locks.get(key)
        if lock is None:
            lock = _locks[key] = threading.Lock()
        return lock


def _forget_locks(kind: str, ids: Optional[Sequence[int]] = None) -> None:
    """Drop lock entries of deleted rosters or players; all of ``kind`` when ids is None."""
    with _locks_guard:
        for key in [k for k in _locks if k[0] == kind and (ids is None or k[1] in ids)]:
            del _locks[key]


@contextmanager
def roster_locks(clan_ids: Sequence[int] = (), player_ids: Sequence[int] = ()) -> Iterator[None]:
    """Hold the locks of the given rosters and players for the duration of a mutation."""
    keys = sorted({("clan", c) for c in clan_ids} | {("player", p) for p in player_ids})
    held: List[threading.Lock] = []
    try:
        for key in keys:
            lock = _lock_for(key)
            lock.acquire()
            held.append(lock)
        yield
    finally:
        for lock in reversed(held):
            lock.release()


@contextmanager
def store_op(session: Session, operation: str, **context) -> Iterator[None]:
    try:
        yield
    except CwlError:
        session.rollback()
        raise
    except SQLAlchemyError as exc:
        session.rollback()
        logger.exception("Store failure during %s %s", operation, context)
        raise StoreError(f"{operation} failed", **context) from exc


def _require(session: Session, model: type[SQLModel], entity_id: int, label: str):
    row = session.get(model, entity_id)
    if row is None:
        raise NotFoundError(f"{label} not found", **{f"{label}_id": entity_id})
    return row


def _scope_filter(list_id: Optional[int]):
    if list_id is None:
        return models.Assignment.list_id.is_(None)
    return models.Assignment.list_id == list_id


# Players


def list_players(session: Session) -> List[models.Player]:
    """Newest registrations first."""
    return list(
        session.exec(
            select(models.Player).order_by(models.Player.registered_at.desc(), models.Player.id.desc())
        ).all()
    )


def get_player(session: Session, player_id: int) -> models.Player:
    return _require(session, models.Player, player_id, "player")


def create_player(session: Session, data: PlayerCreate) -> models.Player:
    name = data.name.strip()
    if not name:
        raise ValidationError("Nome player mancante")
    if data.townhall_level < models.MIN_TOWNHALL:
        raise ValidationError(
            f"Town Hall minimo richiesto: {models.MIN_TOWNHALL}", townhall_level=data.townhall_level
        )

    player = models.Player(name=name, townhall_level=data.townhall_level)
    with store_op(session, "create_player", name=name):
        session.add(player)
        session.commit()
        session.refresh(player)
    logger.info("Player registered: %s (TH%d, id=%s)", player.name, player.townhall_level, player.id)
    return player


def delete_player(session: Session, player_id: int) -> bool:
    """Delete a player and its assignments; false when the id is unknown."""
    player = session.get(models.Player, player_id)
    if player is None:
        return False
    with store_op(session, "delete_player", player_id=player_id):
        session.exec(delete(models.Assignment).where(models.Assignment.player_id == player_id))
        session.delete(player)
        session.commit()
    _forget_locks("player", [player_id])
    logger.info("Player %s deleted", player_id)
    return True


def clear_players(session: Session) -> bool:
    with store_op(session, "clear_players"):
        session.exec(delete(models.Assignment))
        result = session.exec(delete(models.Player))
        session.commit()
    _forget_locks("player")
    logger.info("Cleared %d players", result.rowcount)
    return result.rowcount > 0


# Clans


def list_clans(session: Session) -> List[models.Clan]:
    """Creation order, so the first configured roster is filled first."""
    return list(session.exec(select(models.Clan).order_by(models.Clan.created_at, models.Clan.id)).all())


def get_clan(session: Session, clan_id: int) -> models.Clan:
    return _require(session, models.Clan, clan_id, "clan")


def create_clan(session: Session, data: ClanCreate) -> models.Clan:
    name = data.name.strip()
    if not name:
        raise ValidationError("Nome clan mancante")
    if data.capacity not in models.CLAN_CAPACITIES:
        allowed = ", ".join(str(c) for c in models.CLAN_CAPACITIES)
        raise ValidationError(f"Partecipanti non validi (ammessi: {allowed})", capacity=data.capacity)
    if data.league not in models.LEAGUES:
        raise ValidationError("Lega non valida", league=data.league)

    clan = models.Clan(name=name, capacity=data.capacity, league=data.league)
    with store_op(session, "create_clan", name=name):
        session.add(clan)
        session.commit()
        session.refresh(clan)
    logger.info("Clan created: %s (%s, %d partecipanti)", clan.name, clan.league, clan.capacity)
    return clan


def delete_clan(session: Session, clan_id: int) -> bool:
    clan = session.get(models.Clan, clan_id)
    if clan is None:
        return False
    with roster_locks(clan_ids=[clan_id]), store_op(session, "delete_clan", clan_id=clan_id):
        session.exec(delete(models.Assignment).where(models.Assignment.clan_id == clan_id))
        session.delete(clan)
        session.commit()
    _forget_locks("clan", [clan_id])
    logger.info("Clan %s deleted", clan_id)
    return True


def clear_clans(session: Session) -> bool:
    with store_op(session, "clear_clans"):
        session.exec(delete(models.Assignment))
        result = session.exec(delete(models.Clan))
        session.commit()
    _forget_locks("clan")
    logger.info("Cleared %d clans", result.rowcount)
    return result.rowcount > 0


# CWL lists


def list_cwl_lists(session: Session) -> List[models.CwlList]:
    return list(
        session.exec(select(models.CwlList).order_by(models.CwlList.created_at.desc(), models.CwlList.id.desc())).all()
    )


def get_cwl_list(session: Session, list_id: int) -> models.CwlList:
    return _require(session, models.CwlList, list_id, "list")


def create_cwl_list(session: Session, data: CwlListCreate) -> models.CwlList:
    name = data.name.strip()
    if not name:
        raise ValidationError("Nome lista mancante")
    cwl_list = models.CwlList(name=name, message=data.message)
    with store_op(session, "create_cwl_list", name=name):
        session.add(cwl_list)
        session.commit()
        session.refresh(cwl_list)
    return cwl_list


def delete_cwl_list(session: Session, list_id: int) -> bool:
    cwl_list = session.get(models.CwlList, list_id)
    if cwl_list is None:
        return False
    with store_op(session, "delete_cwl_list", list_id=list_id):
        session.exec(delete(models.Assignment).where(models.Assignment.list_id == list_id))
        session.delete(cwl_list)
        session.commit()
    return True


# Content


def list_content(session: Session) -> List[models.Content]:
    return list(session.exec(select(models.Content).order_by(models.Content.key)).all())


def get_content(session: Session, key: str) -> Optional[models.Content]:
    return session.exec(select(models.Content).where(models.Content.key == key)).first()


def upsert_content(session: Session, data: ContentUpsert) -> models.Content:
    with store_op(session, "upsert_content", key=data.key):
        content = get_content(session, data.key)
        if content is None:
            content = models.Content(key=data.key, value=data.value)
        else:
            content.value = data.value
            content.updated_at = datetime.now(UTC)
        session.add(content)
        session.commit()
        session.refresh(content)
    return content


# Assignments


def _find_assignment(session: Session, player_id: int, clan_id: int) -> Optional[models.Assignment]:
    return session.exec(
        select(models.Assignment).where(
            models.Assignment.player_id == player_id,
            models.Assignment.clan_id == clan_id,
        )
    ).first()


def _next_position(session: Session, clan_id: int) -> int:
    current = session.exec(
        select(func.max(models.Assignment.position)).where(models.Assignment.clan_id == clan_id)
    ).one()
    return 0 if current is None else current + 1


def _check_exclusive(session: Session, player_id: int, clan_id: int, list_id: Optional[int]) -> None:
    if not get_settings().exclusive_rosters:
        return
    other = session.exec(
        select(models.Assignment).where(
            models.Assignment.player_id == player_id,
            models.Assignment.clan_id != clan_id,
            _scope_filter(list_id),
        )
    ).first()
    if other is not None:
        raise ConflictError(
            "Player già assegnato a un altro clan",
            player_id=player_id,
            clan_id=other.clan_id,
        )


def assign_player_to_clan(
    session: Session,
    player_id: int,
    clan_id: int,
    position: int,
    list_id: Optional[int] = None,
) -> models.Assignment:
    """Place a player in a roster, replacing any earlier row for the same pair."""
    if position < 0:
        raise ValidationError("Posizione non valida", position=position)
    get_player(session, player_id)
    get_clan(session, clan_id)
    if list_id is not None:
        get_cwl_list(session, list_id)

    with roster_locks([clan_id], [player_id]), store_op(
        session, "assign_player_to_clan", player_id=player_id, clan_id=clan_id
    ):
        _check_exclusive(session, player_id, clan_id, list_id)
        session.exec(
            delete(models.Assignment).where(
                models.Assignment.player_id == player_id,
                models.Assignment.clan_id == clan_id,
            )
        )
        assignment = models.Assignment(player_id=player_id, clan_id=clan_id, position=position, list_id=list_id)
        session.add(assignment)
        session.commit()
        session.refresh(assignment)
    return assignment


def remove_player_from_clan(session: Session, player_id: int, clan_id: int) -> bool:
    with roster_locks([clan_id], [player_id]), store_op(
        session, "remove_player_from_clan", player_id=player_id, clan_id=clan_id
    ):
        result = session.exec(
            delete(models.Assignment).where(
                models.Assignment.player_id == player_id,
                models.Assignment.clan_id == clan_id,
            )
        )
        session.commit()
    return result.rowcount > 0


def _position_taken(session: Session, clan_id: int, position: int) -> bool:
    count = session.exec(
        select(func.count())
        .select_from(models.Assignment)
        .where(models.Assignment.clan_id == clan_id, models.Assignment.position == position)
    ).one()
    return count > 1


def move_player_between_clans(session: Session, player_id: int, from_clan_id: int, to_clan_id: int) -> bool:
    """
    Move a player to the end of another roster.

    The new position is one past the destination's highest position (0 when
    empty). Removal and insertion commit together. The destination is checked
    for a duplicate position after flush and before commit; a collision rolls
    back and retries once, then raises ConflictError. The check only sees
    other writers where the database holds its write lock across the flush,
    as SQLite does.
    """
    get_player(session, player_id)
    get_clan(session, from_clan_id)
    get_clan(session, to_clan_id)

    with roster_locks([from_clan_id, to_clan_id], [player_id]):
        for attempt in (1, 2):
            with store_op(session, "move_player_between_clans", player_id=player_id, to_clan_id=to_clan_id):
                source = _find_assignment(session, player_id, from_clan_id)
                if source is None:
                    return False
                if from_clan_id == to_clan_id:
                    return True

                next_position = _next_position(session, to_clan_id)
                list_id = source.list_id
                session.delete(source)
                session.exec(
                    delete(models.Assignment).where(
                        models.Assignment.player_id == player_id,
                        models.Assignment.clan_id == to_clan_id,
                    )
                )
                session.add(
                    models.Assignment(
                        player_id=player_id,
                        clan_id=to_clan_id,
                        position=next_position,
                        list_id=list_id,
                    )
                )
                session.flush()
                if not _position_taken(session, to_clan_id, next_position):
                    session.commit()
                    logger.info(
                        "Player %s moved from clan %s to clan %s at position %d",
                        player_id,
                        from_clan_id,
                        to_clan_id,
                        next_position,
                    )
                    return True
                session.rollback()
            logger.warning("Position %d collided in clan %s (attempt %d)", next_position, to_clan_id, attempt)

    raise ConflictError("Posizione già occupata nel clan di destinazione", clan_id=to_clan_id, player_id=player_id)


def reorder_within_clan(session: Session, clan_id: int, player_id: int, new_position: int) -> bool:
    """Set one player's position; neighbours are left untouched."""
    if new_position < 0:
        raise ValidationError("Posizione non valida", position=new_position)
    with roster_locks([clan_id], [player_id]), store_op(
        session, "reorder_within_clan", player_id=player_id, clan_id=clan_id
    ):
        assignment = _find_assignment(session, player_id, clan_id)
        if assignment is None:
            return False
        assignment.position = new_position
        session.add(assignment)
        session.commit()
    return True


def swap_within_clan(session: Session, clan_id: int, player_id: int, other_player_id: int) -> bool:
    """Exchange the positions of two players in the same roster."""
    with roster_locks([clan_id], [player_id, other_player_id]), store_op(
        session, "swap_within_clan", clan_id=clan_id, player_id=player_id
    ):
        first = _find_assignment(session, player_id, clan_id)
        second = _find_assignment(session, other_player_id, clan_id)
        if first is None or second is None:
            return False
        first.position, second.position = second.position, first.position
        session.add(first)
        session.add(second)
        session.commit()
    return True


def get_rosters_with_players(session: Session, list_id: Optional[int] = None) -> List[RosterWithPlayers]:
    """Every roster with its players in position order; empty rosters included."""
    rosters: List[RosterWithPlayers] = []
    for clan in list_clans(session):
        query = (
            select(models.Player, models.Assignment)
            .join(models.Assignment, models.Assignment.player_id == models.Player.id)
            .where(models.Assignment.clan_id == clan.id)
            .order_by(models.Assignment.position, models.Assignment.id)
        )
        if list_id is not None:
            query = query.where(models.Assignment.list_id == list_id)
        roster = empty_roster(clan)
        roster.players = [
            RosterPlayer(
                id=player.id,
                name=player.name,
                townhall_level=player.townhall_level,
                position=assignment.position,
            )
            for player, assignment in session.exec(query).all()
        ]
        rosters.append(roster)
    return rosters


def distribute_players(
    session: Session,
    *,
    persist: bool = False,
    list_id: Optional[int] = None,
) -> List[RosterWithPlayers]:
    """
    Round-robin every registered player over the configured rosters.

    Without ``persist`` this is a preview. With it, all assignments in the
    list scope are replaced by the result in one transaction.
    """
    players = list_players(session)
    clans = list_clans(session)
    rosters = auto_distribute(players, clans)
    if not persist:
        return rosters

    if list_id is not None:
        get_cwl_list(session, list_id)

    with roster_locks([c.id for c in clans]), store_op(session, "distribute_players", list_id=list_id):
        session.exec(delete(models.Assignment).where(_scope_filter(list_id)))
        for roster in rosters:
            player_ids = [p.id for p in roster.players]
            if not player_ids:
                continue
            session.exec(
                delete(models.Assignment).where(
                    models.Assignment.clan_id == roster.id,
                    models.Assignment.player_id.in_(player_ids),
                )
            )
            session.add_all(
                models.Assignment(player_id=p.id, clan_id=roster.id, position=p.position, list_id=list_id)
                for p in roster.players
            )
        session.commit()
    logger.info("Distributed %d players over %d rosters (list=%s)", len(players), len(clans), list_id)
    return rosters


def compute_stats(session: Session) -> PlayerStats:
    return compute_player_stats(list_players(session))


def generate_message(
    session: Session,
    *,
    list_id: Optional[int] = None,
    save_as: Optional[str] = None,
) -> Tuple[str, List[RosterWithPlayers], Optional[models.CwlList]]:
    """Render stored rosters; keep the text on the list scope or a new list."""
    cwl_list = get_cwl_list(session, list_id) if list_id is not None else None
    rosters = get_rosters_with_players(session, list_id)
    message = render_message(rosters)

    if save_as is not None and not save_as.strip():
        raise ValidationError("Nome lista mancante")

    with store_op(session, "generate_message", list_id=list_id):
        if cwl_list is not None:
            cwl_list.message = message
            session.add(cwl_list)
        if save_as:
            cwl_list = models.CwlList(name=save_as.strip(), message=message)
            session.add(cwl_list)
        if cwl_list is not None:
            session.commit()
            session.refresh(cwl_list)
    return message, rosters, cwl_list
