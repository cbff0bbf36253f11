from typing import Iterable, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from fastapi.responses import StreamingResponse
from sqlmodel import Session

from app import models, storage
from app.core.config import get_settings
from app.db import get_session
from app.export import players_csv
from app.pdf.message import render_message_pdf
from app.schemas import (
    Assignment,
    AssignRequest,
    Clan,
    ClanCreate,
    ClashPlayer,
    Content,
    ContentUpsert,
    CwlList,
    CwlListCreate,
    DistributeRequest,
    ExportPdfRequest,
    GenerateMessageRequest,
    GenerateMessageResponse,
    MoveRequest,
    Player,
    PlayerCreate,
    RemoveRequest,
    ReorderRequest,
    RosterPlayer,
    RosterWithPlayers,
    Stats,
    SuccessResponse,
    SwapRequest,
)
from cwl_engine import distribution
from cwl_engine.clash_api import ClashApiError, fetch_clan_members

router = APIRouter()
settings = get_settings()


def _serialize_player(model: models.Player) -> Player:
    return Player(
        id=model.id,
        name=model.name,
        townhall_level=model.townhall_level,
        registered_at=model.registered_at,
    )


def _serialize_clan(model: models.Clan) -> Clan:
    return Clan(
        id=model.id,
        name=model.name,
        capacity=model.capacity,
        league=model.league,
        created_at=model.created_at,
    )


def _serialize_list(model: models.CwlList) -> CwlList:
    return CwlList(id=model.id, name=model.name, message=model.message, created_at=model.created_at)


def _serialize_rosters(rosters: Iterable[distribution.RosterWithPlayers]) -> List[RosterWithPlayers]:
    return [
        RosterWithPlayers(
            id=roster.id,
            name=roster.name,
            capacity=roster.capacity,
            league=roster.league,
            players=[
                RosterPlayer(
                    id=p.id,
                    name=p.name,
                    townhall_level=p.townhall_level,
                    position=p.position,
                )
                for p in roster.players
            ],
            missing=roster.missing,
        )
        for roster in rosters
    ]


# Players


@router.get("/players", response_model=List[Player], tags=["players"])
def list_players(session: Session = Depends(get_session)) -> List[Player]:
    return [_serialize_player(p) for p in storage.list_players(session)]


@router.post("/players", response_model=Player, status_code=status.HTTP_201_CREATED, tags=["players"])
def register_player(request: PlayerCreate, session: Session = Depends(get_session)) -> Player:
    """Register a player; Town Hall below the minimum is rejected."""
    return _serialize_player(storage.create_player(session, request))


@router.delete("/players/{player_id}", response_model=SuccessResponse, tags=["players"])
def delete_player(player_id: int, session: Session = Depends(get_session)) -> SuccessResponse:
    if not storage.delete_player(session, player_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Player non trovato")
    return SuccessResponse(success=True, message="Player eliminato con successo")


@router.delete("/players", response_model=SuccessResponse, tags=["players"])
def clear_players(session: Session = Depends(get_session)) -> SuccessResponse:
    success = storage.clear_players(session)
    return SuccessResponse(success=success, message="Tutti i player sono stati rimossi")


@router.get("/stats", response_model=Stats, tags=["players"])
def get_stats(session: Session = Depends(get_session)) -> Stats:
    return Stats(**storage.compute_stats(session).as_dict())


@router.get("/export/players", tags=["players"])
def export_players(session: Session = Depends(get_session)) -> Response:
    csv_text = players_csv(storage.list_players(session))
    return Response(
        content=csv_text,
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="players_cwl.csv"'},
    )


# Content


@router.get("/content", response_model=List[Content], tags=["content"])
def list_content(session: Session = Depends(get_session)) -> List[Content]:
    return [Content(key=c.key, value=c.value, updated_at=c.updated_at) for c in storage.list_content(session)]


@router.put("/content", response_model=Content, tags=["content"])
def upsert_content(request: ContentUpsert, session: Session = Depends(get_session)) -> Content:
    content = storage.upsert_content(session, request)
    return Content(key=content.key, value=content.value, updated_at=content.updated_at)


# Clans


@router.get("/clans", response_model=List[Clan], tags=["clans"])
def list_clans(session: Session = Depends(get_session)) -> List[Clan]:
    return [_serialize_clan(c) for c in storage.list_clans(session)]


@router.post("/clans", response_model=Clan, status_code=status.HTTP_201_CREATED, tags=["clans"])
def create_clan(request: ClanCreate, session: Session = Depends(get_session)) -> Clan:
    return _serialize_clan(storage.create_clan(session, request))


@router.delete("/clans/{clan_id}", response_model=SuccessResponse, tags=["clans"])
def delete_clan(clan_id: int, session: Session = Depends(get_session)) -> SuccessResponse:
    if not storage.delete_clan(session, clan_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Clan non trovato")
    return SuccessResponse(success=True, message="Clan eliminato con successo")


@router.delete("/clans", response_model=SuccessResponse, tags=["clans"])
def clear_clans(session: Session = Depends(get_session)) -> SuccessResponse:
    success = storage.clear_clans(session)
    return SuccessResponse(success=success, message="Tutti i clan sono stati rimossi")


# CWL lists


@router.get("/cwl-lists", response_model=List[CwlList], tags=["lists"])
def list_cwl_lists(session: Session = Depends(get_session)) -> List[CwlList]:
    return [_serialize_list(item) for item in storage.list_cwl_lists(session)]


@router.post("/cwl-lists", response_model=CwlList, status_code=status.HTTP_201_CREATED, tags=["lists"])
def create_cwl_list(request: CwlListCreate, session: Session = Depends(get_session)) -> CwlList:
    return _serialize_list(storage.create_cwl_list(session, request))


@router.get("/cwl-lists/{list_id}", response_model=CwlList, tags=["lists"])
def get_cwl_list(list_id: int, session: Session = Depends(get_session)) -> CwlList:
    return _serialize_list(storage.get_cwl_list(session, list_id))


@router.delete("/cwl-lists/{list_id}", response_model=SuccessResponse, tags=["lists"])
def delete_cwl_list(list_id: int, session: Session = Depends(get_session)) -> SuccessResponse:
    if not storage.delete_cwl_list(session, list_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Lista non trovata")
    return SuccessResponse(success=True, message="Lista eliminata con successo")


# Assignments


@router.get("/clans-with-players", response_model=List[RosterWithPlayers], tags=["assignments"])
def clans_with_players(
    list_id: Optional[int] = Query(None, description="Only assignments of this CWL list"),
    session: Session = Depends(get_session),
) -> List[RosterWithPlayers]:
    return _serialize_rosters(storage.get_rosters_with_players(session, list_id))


@router.post("/distribute", response_model=List[RosterWithPlayers], tags=["assignments"])
def distribute(request: DistributeRequest, session: Session = Depends(get_session)) -> List[RosterWithPlayers]:
    """Round-robin all players over the rosters; preview unless persist is set."""
    rosters = storage.distribute_players(session, persist=request.persist, list_id=request.list_id)
    return _serialize_rosters(rosters)


@router.post("/assign-player", response_model=Assignment, status_code=status.HTTP_201_CREATED, tags=["assignments"])
def assign_player(request: AssignRequest, session: Session = Depends(get_session)) -> Assignment:
    assignment = storage.assign_player_to_clan(
        session,
        request.player_id,
        request.clan_id,
        request.position,
        request.list_id,
    )
    return Assignment(
        id=assignment.id,
        player_id=assignment.player_id,
        clan_id=assignment.clan_id,
        position=assignment.position,
        list_id=assignment.list_id,
    )


@router.post("/remove-player", response_model=SuccessResponse, tags=["assignments"])
def remove_player(request: RemoveRequest, session: Session = Depends(get_session)) -> SuccessResponse:
    return SuccessResponse(success=storage.remove_player_from_clan(session, request.player_id, request.clan_id))


@router.post("/move-player", response_model=SuccessResponse, tags=["assignments"])
def move_player(request: MoveRequest, session: Session = Depends(get_session)) -> SuccessResponse:
    success = storage.move_player_between_clans(
        session,
        request.player_id,
        request.from_clan_id,
        request.to_clan_id,
    )
    return SuccessResponse(success=success)


@router.post("/reorder-player", response_model=SuccessResponse, tags=["assignments"])
def reorder_player(request: ReorderRequest, session: Session = Depends(get_session)) -> SuccessResponse:
    success = storage.reorder_within_clan(session, request.clan_id, request.player_id, request.new_position)
    return SuccessResponse(success=success)


@router.post("/swap-players", response_model=SuccessResponse, tags=["assignments"])
def swap_players(request: SwapRequest, session: Session = Depends(get_session)) -> SuccessResponse:
    """Exchange two players' positions (the up/down arrows of the roster view)."""
    success = storage.swap_within_clan(session, request.clan_id, request.player_id, request.other_player_id)
    return SuccessResponse(success=success)


# Messages and exports


@router.post("/generate-message", response_model=GenerateMessageResponse, tags=["messages"])
def generate_message(
    request: GenerateMessageRequest,
    session: Session = Depends(get_session),
) -> GenerateMessageResponse:
    """Render the stored rosters into the CWL message."""
    message, rosters, cwl_list = storage.generate_message(session, list_id=request.list_id, save_as=request.save_as)
    return GenerateMessageResponse(
        message=message,
        rosters=_serialize_rosters(rosters),
        cwl_list=_serialize_list(cwl_list) if cwl_list else None,
    )


@router.post("/export-pdf", tags=["messages"])
def export_pdf(request: ExportPdfRequest):
    if not request.message.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Messaggio mancante")
    pdf_bytes = render_message_pdf(request.message)
    return StreamingResponse(
        iter([pdf_bytes]),
        media_type="application/pdf",
        headers={"Content-Disposition": 'attachment; filename="cwl-message.pdf"'},
    )


# League data


_CLASH_STATUS = {
    400: status.HTTP_400_BAD_REQUEST,
    403: status.HTTP_403_FORBIDDEN,
    404: status.HTTP_404_NOT_FOUND,
}


@router.get("/clash-players/{clan_tag}", response_model=List[ClashPlayer], tags=["league"])
def clash_players(clan_tag: str) -> List[ClashPlayer]:
    """Pass-through lookup of a clan's members on the Clash of Clans API."""
    if not settings.clash_api_key:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="API Key di Clash of Clans non configurata",
        )
    try:
        members = fetch_clan_members(
            clan_tag,
            api_key=settings.clash_api_key,
            base_url=settings.clash_api_url,
            timeout=settings.clash_api_timeout,
        )
    except ClashApiError as exc:
        code = _CLASH_STATUS.get(exc.status_code, status.HTTP_502_BAD_GATEWAY)
        detail = f"{exc.message}: {exc.details}" if exc.details else exc.message
        raise HTTPException(status_code=code, detail=detail) from exc

    return [
        ClashPlayer(
            name=m.name,
            tag=m.tag,
            town_hall_level=m.town_hall_level,
            war_stars=m.war_stars,
            trophies=m.trophies,
            best_trophies=m.best_trophies,
            legend_statistics=m.legend_statistics,
        )
        for m in members
    ]
