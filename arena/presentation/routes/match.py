from fastapi import APIRouter, Depends, status
from pydantic import UUID4
from sqlalchemy.ext.asyncio import AsyncSession

from arena.business.services.auth_dependency import get_current_user
from arena.business.services.match_lifecycle import (
    MatchLifecycleManager,
    get_match_lifecycle,
)
from arena.config import logger
from arena.data.repositories import (
    get_match_by_id,
    get_match_players,
    get_match_problems,
    get_session,
)
from arena.data.schemas import (
    LobbyCreateRequest,
    MatchDetailResponse,
    MatchPlayerResponse,
    MatchProblemResponse,
    MatchResponse,
    TokenUser,
)
from arena.presentation.routes.queue import require_cf_handle

match_logger = logger.getChild("match")

router = APIRouter(tags=["match"])


@router.post("/lobby", response_model=MatchResponse, status_code=status.HTTP_201_CREATED)
async def create_lobby(
    request_data: LobbyCreateRequest,
    db: AsyncSession = Depends(get_session),
    current_user: TokenUser = Depends(get_current_user),
    lifecycle: MatchLifecycleManager = Depends(get_match_lifecycle),
):
    """
    Open a lobby others can join with its challenge code.
    The problems are chosen right away.
    """
    await require_cf_handle(db, current_user.id)
    return await lifecycle.create_lobby(db, current_user.id, request_data)


@router.post("/lobby/{code}/join", response_model=MatchResponse)
async def join_lobby(
    code: str,
    db: AsyncSession = Depends(get_session),
    current_user: TokenUser = Depends(get_current_user),
    lifecycle: MatchLifecycleManager = Depends(get_match_lifecycle),
):
    await require_cf_handle(db, current_user.id)
    return await lifecycle.join_lobby(db, code, current_user.id)


@router.post("/match/{match_id}/start", response_model=MatchResponse)
async def force_start(
    match_id: UUID4,
    db: AsyncSession = Depends(get_session),
    current_user: TokenUser = Depends(get_current_user),
    lifecycle: MatchLifecycleManager = Depends(get_match_lifecycle),
):
    """Start a lobby before it is full. Creator only."""
    return await lifecycle.force_start(db, match_id, current_user.id)


@router.post("/match/{match_id}/draw")
async def offer_draw(
    match_id: UUID4,
    db: AsyncSession = Depends(get_session),
    current_user: TokenUser = Depends(get_current_user),
    lifecycle: MatchLifecycleManager = Depends(get_match_lifecycle),
):
    """
    Offer a draw, withdraw your own offer, or accept the opponent's offer.
    """
    outcome = await lifecycle.offer_draw(db, match_id, current_user.id)
    match = await get_match_by_id(db, match_id)
    return {
        "status": outcome,
        "match": MatchResponse.model_validate(match).model_dump(mode="json"),
    }


@router.post("/match/{match_id}/resign", response_model=MatchResponse)
async def resign(
    match_id: UUID4,
    db: AsyncSession = Depends(get_session),
    current_user: TokenUser = Depends(get_current_user),
    lifecycle: MatchLifecycleManager = Depends(get_match_lifecycle),
):
    return await lifecycle.resign(db, match_id, current_user.id)


@router.get("/match/{match_id}", response_model=MatchDetailResponse)
async def get_match(
    match_id: UUID4,
    db: AsyncSession = Depends(get_session),
    current_user: TokenUser = Depends(get_current_user),
):
    match = await get_match_by_id(db, match_id)
    problems = await get_match_problems(db, match.id)
    players = await get_match_players(db, match.id)
    match_logger.debug(f"Match {match.id} viewed by {current_user.id}")
    return MatchDetailResponse(
        **MatchResponse.model_validate(match).model_dump(),
        problems=[MatchProblemResponse.model_validate(p) for p in problems],
        players=[MatchPlayerResponse.model_validate(p) for p in players],
    )
