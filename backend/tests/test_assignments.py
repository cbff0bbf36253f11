import threading

import pytest
from sqlalchemy.exc import OperationalError
from sqlmodel import Session, SQLModel, create_engine, select

from app import models, storage
from app.core.config import get_settings
from cwl_engine.errors import ConflictError, NotFoundError, StoreError, ValidationError
from helpers import make_clan, make_list, make_player


def _rows(session: Session, **filters):
    query = select(models.Assignment)
    for field, value in filters.items():
        query = query.where(getattr(models.Assignment, field) == value)
    return session.exec(query).all()


def test_reassign_same_clan_keeps_one_row_with_last_position(session: Session):
    player = make_player(session, "Alpha")
    clan = make_clan(session, "Eclipse")

    storage.assign_player_to_clan(session, player.id, clan.id, 3)
    storage.assign_player_to_clan(session, player.id, clan.id, 7)

    rows = _rows(session, player_id=player.id, clan_id=clan.id)
    assert len(rows) == 1
    assert rows[0].position == 7


def test_assign_unknown_ids_raise_not_found(session: Session):
    player = make_player(session, "Alpha")
    clan = make_clan(session, "Eclipse")

    with pytest.raises(NotFoundError):
        storage.assign_player_to_clan(session, 999, clan.id, 0)
    with pytest.raises(NotFoundError):
        storage.assign_player_to_clan(session, player.id, 999, 0)
    with pytest.raises(NotFoundError):
        storage.assign_player_to_clan(session, player.id, clan.id, 0, list_id=999)
    assert _rows(session) == []


def test_assign_negative_position_is_rejected(session: Session):
    player = make_player(session, "Alpha")
    clan = make_clan(session, "Eclipse")
    with pytest.raises(ValidationError):
        storage.assign_player_to_clan(session, player.id, clan.id, -1)


def test_second_roster_in_same_scope_conflicts(session: Session):
    player = make_player(session, "Alpha")
    first = make_clan(session, "Eclipse")
    second = make_clan(session, "Nova")
    storage.assign_player_to_clan(session, player.id, first.id, 0)

    with pytest.raises(ConflictError):
        storage.assign_player_to_clan(session, player.id, second.id, 0)

    rows = _rows(session, player_id=player.id)
    assert [(r.clan_id, r.position) for r in rows] == [(first.id, 0)]


def test_other_list_scope_does_not_conflict(session: Session):
    player = make_player(session, "Alpha")
    first = make_clan(session, "Eclipse")
    second = make_clan(session, "Nova")
    cwl_list = make_list(session)

    storage.assign_player_to_clan(session, player.id, first.id, 0)
    storage.assign_player_to_clan(session, player.id, second.id, 0, list_id=cwl_list.id)

    assert len(_rows(session, player_id=player.id)) == 2


def test_permissive_mode_allows_multiple_rosters(session: Session, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(get_settings(), "exclusive_rosters", False)
    player = make_player(session, "Alpha")
    first = make_clan(session, "Eclipse")
    second = make_clan(session, "Nova")

    storage.assign_player_to_clan(session, player.id, first.id, 0)
    storage.assign_player_to_clan(session, player.id, second.id, 0)

    assert sorted(r.clan_id for r in _rows(session, player_id=player.id)) == [first.id, second.id]


def test_remove_player_reports_whether_a_row_was_deleted(session: Session):
    player = make_player(session, "Alpha")
    clan = make_clan(session, "Eclipse")
    storage.assign_player_to_clan(session, player.id, clan.id, 0)

    assert storage.remove_player_from_clan(session, player.id, clan.id) is True
    assert storage.remove_player_from_clan(session, player.id, clan.id) is False


def test_move_appends_after_highest_position(session: Session):
    mover = make_player(session, "Mover")
    others = [make_player(session, f"P{i}") for i in range(2)]
    source = make_clan(session, "Eclipse")
    target = make_clan(session, "Nova")
    storage.assign_player_to_clan(session, mover.id, source.id, 0)
    storage.assign_player_to_clan(session, others[0].id, target.id, 0)
    storage.assign_player_to_clan(session, others[1].id, target.id, 4)

    assert storage.move_player_between_clans(session, mover.id, source.id, target.id) is True

    assert _rows(session, player_id=mover.id, clan_id=source.id) == []
    moved = _rows(session, player_id=mover.id, clan_id=target.id)
    assert len(moved) == 1
    assert moved[0].position == 5


def test_move_into_empty_roster_starts_at_zero(session: Session):
    mover = make_player(session, "Mover")
    source = make_clan(session, "Eclipse")
    target = make_clan(session, "Nova")
    cwl_list = make_list(session)
    storage.assign_player_to_clan(session, mover.id, source.id, 2, list_id=cwl_list.id)

    assert storage.move_player_between_clans(session, mover.id, source.id, target.id) is True

    (moved,) = _rows(session, player_id=mover.id)
    assert (moved.clan_id, moved.position, moved.list_id) == (target.id, 0, cwl_list.id)


def test_move_without_source_assignment_changes_nothing(session: Session):
    mover = make_player(session, "Mover")
    source = make_clan(session, "Eclipse")
    target = make_clan(session, "Nova")

    assert storage.move_player_between_clans(session, mover.id, source.id, target.id) is False
    assert _rows(session) == []


def test_move_to_unknown_clan_leaves_store_unchanged(session: Session):
    mover = make_player(session, "Mover")
    source = make_clan(session, "Eclipse")
    storage.assign_player_to_clan(session, mover.id, source.id, 0)

    with pytest.raises(NotFoundError):
        storage.move_player_between_clans(session, mover.id, source.id, 999)
    assert [(r.clan_id, r.position) for r in _rows(session)] == [(source.id, 0)]


def test_reorder_sets_position_without_renumbering(session: Session):
    players = [make_player(session, f"P{i}") for i in range(3)]
    clan = make_clan(session, "Eclipse")
    for index, player in enumerate(players):
        storage.assign_player_to_clan(session, player.id, clan.id, index)

    assert storage.reorder_within_clan(session, clan.id, players[0].id, 10) is True
    assert storage.reorder_within_clan(session, clan.id, 999, 1) is False

    positions = {r.player_id: r.position for r in _rows(session, clan_id=clan.id)}
    assert positions == {players[0].id: 10, players[1].id: 1, players[2].id: 2}


def test_swap_exchanges_two_positions(session: Session):
    players = [make_player(session, f"P{i}") for i in range(3)]
    clan = make_clan(session, "Eclipse")
    for index, player in enumerate(players):
        storage.assign_player_to_clan(session, player.id, clan.id, index)

    assert storage.swap_within_clan(session, clan.id, players[1].id, players[2].id) is True

    (roster,) = storage.get_rosters_with_players(session)
    assert [p.name for p in roster.players] == ["P0", "P2", "P1"]
    assert [p.position for p in roster.players] == [0, 1, 2]


def test_deleting_clan_cascades_assignments(session: Session):
    player = make_player(session, "Alpha")
    doomed = make_clan(session, "Eclipse")
    kept = make_clan(session, "Nova")
    cwl_list = make_list(session)
    storage.assign_player_to_clan(session, player.id, doomed.id, 0)
    storage.assign_player_to_clan(session, player.id, kept.id, 0, list_id=cwl_list.id)

    assert storage.delete_clan(session, doomed.id) is True

    assert _rows(session, clan_id=doomed.id) == []
    assert len(_rows(session, clan_id=kept.id)) == 1
    assert storage.delete_clan(session, doomed.id) is False


def test_deleting_player_cascades_assignments(session: Session):
    doomed = make_player(session, "Alpha")
    kept = make_player(session, "Beta")
    clan = make_clan(session, "Eclipse")
    storage.assign_player_to_clan(session, doomed.id, clan.id, 0)
    storage.assign_player_to_clan(session, kept.id, clan.id, 1)

    assert storage.delete_player(session, doomed.id) is True

    assert _rows(session, player_id=doomed.id) == []
    assert [r.player_id for r in _rows(session, clan_id=clan.id)] == [kept.id]


def test_deleting_list_cascades_its_assignments(session: Session):
    player = make_player(session, "Alpha")
    clan = make_clan(session, "Eclipse")
    cwl_list = make_list(session)
    storage.assign_player_to_clan(session, player.id, clan.id, 0, list_id=cwl_list.id)

    assert storage.delete_cwl_list(session, cwl_list.id) is True
    assert _rows(session) == []


def test_clear_players_and_clans_remove_all_assignments(session: Session):
    player = make_player(session, "Alpha")
    clan = make_clan(session, "Eclipse")
    storage.assign_player_to_clan(session, player.id, clan.id, 0)

    assert storage.clear_players(session) is True
    assert _rows(session) == []
    assert storage.clear_players(session) is False

    assert storage.clear_clans(session) is True
    assert storage.list_clans(session) == []


def test_rosters_include_empty_clans_and_filter_by_list(session: Session):
    alpha = make_player(session, "Alpha")
    beta = make_player(session, "Beta")
    first = make_clan(session, "Eclipse")
    make_clan(session, "Nova", league="Master I")
    cwl_list = make_list(session)
    storage.assign_player_to_clan(session, alpha.id, first.id, 1)
    storage.assign_player_to_clan(session, beta.id, first.id, 0, list_id=cwl_list.id)

    everything = storage.get_rosters_with_players(session)
    assert [r.name for r in everything] == ["Eclipse", "Nova"]
    assert [p.name for p in everything[0].players] == ["Beta", "Alpha"]
    assert everything[1].players == []

    scoped = storage.get_rosters_with_players(session, cwl_list.id)
    assert [p.name for p in scoped[0].players] == ["Beta"]
    assert scoped[1].players == []


def test_persisted_distribution_replaces_scope(session: Session):
    players = [make_player(session, name, th) for name, th in [("E", 15), ("D", 12), ("C", 14), ("B", 13), ("A", 12)]]
    first = make_clan(session, "Clan1", league="Crystal I")
    second = make_clan(session, "Clan2", league="Master I")
    storage.assign_player_to_clan(session, players[0].id, second.id, 9)

    rosters = storage.distribute_players(session, persist=True)

    assert [p.name for p in rosters[0].players] == ["A", "C", "E"]
    stored = storage.get_rosters_with_players(session)
    assert [(p.name, p.position) for p in stored[0].players] == [("A", 0), ("C", 1), ("E", 2)]
    assert [(p.name, p.position) for p in stored[1].players] == [("B", 0), ("D", 1)]
    assert len(_rows(session)) == 5
    assert first.id == stored[0].id


def test_preview_distribution_does_not_write(session: Session):
    make_player(session, "Alpha")
    make_clan(session, "Eclipse")

    rosters = storage.distribute_players(session)

    assert [p.name for p in rosters[0].players] == ["Alpha"]
    assert _rows(session) == []


def test_distribution_without_clans_is_a_validation_error(session: Session):
    make_player(session, "Alpha")
    with pytest.raises(ValidationError):
        storage.distribute_players(session, persist=True)


def _placement(session: Session):
    return [(r.clan_id, r.position) for r in _rows(session)]


def test_move_retries_once_then_raises_conflict(session: Session, monkeypatch: pytest.MonkeyPatch):
    mover = make_player(session, "Mover")
    source = make_clan(session, "Eclipse")
    target = make_clan(session, "Nova")
    source_id, target_id = source.id, target.id
    storage.assign_player_to_clan(session, mover.id, source_id, 0)

    checks = []

    def always_taken(session, clan_id, position):
        checks.append((clan_id, position))
        return True

    monkeypatch.setattr(storage, "_position_taken", always_taken)

    with pytest.raises(ConflictError):
        storage.move_player_between_clans(session, mover.id, source_id, target_id)

    assert checks == [(target_id, 0), (target_id, 0)]
    assert _placement(session) == [(source_id, 0)]


def test_move_succeeds_when_retry_finds_free_position(session: Session, monkeypatch: pytest.MonkeyPatch):
    mover = make_player(session, "Mover")
    source = make_clan(session, "Eclipse")
    target = make_clan(session, "Nova")
    target_id = target.id
    storage.assign_player_to_clan(session, mover.id, source.id, 0)

    answers = iter([True, False])
    monkeypatch.setattr(storage, "_position_taken", lambda session, clan_id, position: next(answers))

    assert storage.move_player_between_clans(session, mover.id, source.id, target_id) is True
    assert _placement(session) == [(target_id, 0)]


def test_store_failure_during_move_keeps_original_assignment(session: Session, monkeypatch: pytest.MonkeyPatch):
    mover = make_player(session, "Mover")
    source = make_clan(session, "Eclipse")
    target = make_clan(session, "Nova")
    source_id = source.id
    storage.assign_player_to_clan(session, mover.id, source_id, 0)

    def broken(session, clan_id, position):
        raise OperationalError("SELECT count(*) FROM assignment", {}, Exception("disk I/O error"))

    monkeypatch.setattr(storage, "_position_taken", broken)

    with pytest.raises(StoreError) as excinfo:
        storage.move_player_between_clans(session, mover.id, source_id, target.id)

    assert excinfo.value.context["player_id"] == mover.id
    assert _placement(session) == [(source_id, 0)]


@pytest.fixture(name="file_engine")
def file_engine_fixture(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'cwl.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


def test_concurrent_moves_into_one_roster_get_distinct_positions(file_engine):
    movers = 8
    with Session(file_engine) as session:
        target_id = make_clan(session, "Target").id
        jobs = []
        for index in range(movers):
            player_id = make_player(session, f"P{index}").id
            source_id = make_clan(session, f"S{index}").id
            storage.assign_player_to_clan(session, player_id, source_id, 0)
            jobs.append((player_id, source_id))

    barrier = threading.Barrier(movers)
    errors = []

    def move(player_id: int, source_id: int) -> None:
        with Session(file_engine) as session:
            barrier.wait()
            try:
                storage.move_player_between_clans(session, player_id, source_id, target_id)
            except Exception as exc:  # noqa: BLE001 - collected for the assertion below
                errors.append(exc)

    threads = [threading.Thread(target=move, args=job) for job in jobs]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    with Session(file_engine) as session:
        positions = sorted(r.position for r in _rows(session, clan_id=target_id))
        assert positions == list(range(movers))
        assert len(_rows(session)) == movers


def test_deleting_entities_drops_their_locks(session: Session):
    player = make_player(session, "Alpha")
    clan = make_clan(session, "Eclipse")
    player_id, clan_id = player.id, clan.id
    storage.assign_player_to_clan(session, player_id, clan_id, 0)
    assert ("clan", clan_id) in storage._locks
    assert ("player", player_id) in storage._locks

    storage.delete_clan(session, clan_id)
    storage.delete_player(session, player_id)

    assert ("clan", clan_id) not in storage._locks
    assert ("player", player_id) not in storage._locks


def test_clearing_rosters_drops_every_roster_lock(session: Session):
    player = make_player(session, "Alpha")
    clan = make_clan(session, "Eclipse")
    storage.assign_player_to_clan(session, player.id, clan.id, 0)

    storage.clear_clans(session)

    assert not [key for key in storage._locks if key[0] == "clan"]
