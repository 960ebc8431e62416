from datetime import datetime
from typing import List

from pydantic import UUID4
from sqlalchemy import exists, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from arena.data.schemas import (
    Match,
    MatchPlayer,
    MatchProblem,
    MatchStatus,
    MatchSubmission,
)
from arena.errors import ResourceNotFoundException


async def get_match_by_id(db: AsyncSession, match_id: UUID4 | str) -> Match:
    """Get a match by ID from the database."""
    result = await db.execute(
        select(Match)
        .where(Match.id == match_id)
        .execution_options(populate_existing=True)
    )
    match = result.scalar_one_or_none()
    if not match:
        raise ResourceNotFoundException(detail="Match not found")
    return match


async def get_match_by_challenge_code(db: AsyncSession, code: str) -> Match:
    result = await db.execute(select(Match).where(Match.challenge_code == code))
    match = result.scalar_one_or_none()
    if not match:
        raise ResourceNotFoundException(detail="Challenge not found or expired")
    return match


async def get_active_matches(db: AsyncSession) -> List[Match]:
    result = await db.execute(
        select(Match).where(Match.status == MatchStatus.ACTIVE).order_by(Match.created_at)
    )
    return list(result.scalars().all())


def _participant_clause(user_id: UUID4):
    return or_(
        Match.player1_id == user_id,
        Match.player2_id == user_id,
        exists().where(
            MatchPlayer.match_id == Match.id, MatchPlayer.player_id == user_id
        ),
    )


async def get_unfinished_match_for_user(db: AsyncSession, user_id: UUID4) -> Match | None:
    """Get a waiting or active match the user takes part in."""
    result = await db.execute(
        select(Match)
        .where(
            _participant_clause(user_id),
            Match.status.in_([MatchStatus.WAITING, MatchStatus.ACTIVE]),
        )
        .limit(1)
    )
    return result.scalars().first()


async def get_active_match_for_user(db: AsyncSession, user_id: UUID4) -> Match | None:
    result = await db.execute(
        select(Match)
        .where(_participant_clause(user_id), Match.status == MatchStatus.ACTIVE)
        .limit(1)
    )
    return result.scalars().first()


async def get_match_players(db: AsyncSession, match_id: UUID4) -> List[MatchPlayer]:
    result = await db.execute(
        select(MatchPlayer)
        .where(MatchPlayer.match_id == match_id)
        .order_by(MatchPlayer.joined_at)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def get_match_problems(db: AsyncSession, match_id: UUID4) -> List[MatchProblem]:
    result = await db.execute(
        select(MatchProblem)
        .where(MatchProblem.match_id == match_id)
        .order_by(MatchProblem.problem_order)
    )
    return list(result.scalars().all())


async def get_match_submissions(
    db: AsyncSession, match_id: UUID4
) -> List[MatchSubmission]:
    result = await db.execute(
        select(MatchSubmission)
        .where(MatchSubmission.match_id == match_id)
        .order_by(MatchSubmission.solved_at)
    )
    return list(result.scalars().all())


async def add_match_submission(db: AsyncSession, submission: MatchSubmission) -> bool:
    """
    Record a solve unless one already exists for (match, player, problem).

    Does not commit. Returns False when the solve was already recorded.
    """
    result = await db.execute(
        select(MatchSubmission.id).where(
            MatchSubmission.match_id == submission.match_id,
            MatchSubmission.player_id == submission.player_id,
            MatchSubmission.problem_order == submission.problem_order,
        )
    )
    if result.first() is not None:
        return False
    db.add(submission)
    await db.flush()
    return True


async def activate_match(db: AsyncSession, match_id: UUID4, start_time: datetime) -> bool:
    """Flip a waiting match to active. Does not commit."""
    result = await db.execute(
        update(Match)
        .where(Match.id == match_id, Match.status == MatchStatus.WAITING)
        .values(status=MatchStatus.ACTIVE, start_time=start_time)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def claim_match_finish(db: AsyncSession, match_id: UUID4, finished_at: datetime) -> bool:
    """
    Flip an active match to finished. Does not commit.

    Only one caller can win this update, which makes it the gate for applying
    rating changes exactly once.
    """
    result = await db.execute(
        update(Match)
        .where(Match.id == match_id, Match.status == MatchStatus.ACTIVE)
        .values(status=MatchStatus.FINISHED, finished_at=finished_at)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def stamp_player_solved_at(
    db: AsyncSession, match_id: UUID4, slot: int, solved_at: datetime
) -> bool:
    """Set ``player{slot}_solved_at`` if it is still empty. Does not commit."""
    column = Match.player1_solved_at if slot == 1 else Match.player2_solved_at
    result = await db.execute(
        update(Match)
        .where(Match.id == match_id, column.is_(None))
        .values({column.key: solved_at})
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1
