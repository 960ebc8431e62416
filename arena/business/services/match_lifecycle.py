import asyncio
import random
import secrets
import string
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

from fastapi import Depends
from pydantic import UUID4
from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from arena.business.services.judge_client import (
    CodeforcesClient,
    fetch_problem_catalog_async,
    fetch_submissions_async,
    get_judge_client,
    is_qualifying_solve,
)
from arena.business.services.problem_selector import select_problems
from arena.business.services.rating import (
    DRAW,
    LOSS,
    WIN,
    RatingPolicy,
    RatingService,
    elo,
    ffa_deltas,
    get_rating_policy,
    match_k_factor,
    team_deltas,
)
from arena.config import Config, logger
from arena.data.repositories import (
    activate_match,
    add_match_submission,
    claim_match_finish,
    get_active_matches,
    get_blacklisted_refs,
    get_match_by_challenge_code,
    get_match_by_id,
    get_match_players,
    get_match_problems,
    get_match_submissions,
    get_profiles_by_ids,
    get_queue_entry_by_user,
    get_unfinished_match_for_user,
    lock_profiles,
    stamp_player_solved_at,
)
from arena.data.schemas import (
    LobbyCreateRequest,
    LobbyMode,
    Match,
    MatchPlayer,
    MatchProblem,
    MatchStatus,
    MatchSubmission,
)
from arena.errors import (
    AuthorizationException,
    ConflictException,
    UpstreamTimeoutException,
)

match_logger = logger.getChild("match")

CHALLENGE_CODE_ALPHABET = string.ascii_lowercase + string.digits
CHALLENGE_CODE_LENGTH = 8
DEFAULT_FFA_PLAYERS = 4


def to_epoch(moment: datetime) -> float:
    """Seconds since the epoch for a naive UTC datetime."""
    return moment.replace(tzinfo=timezone.utc).timestamp()


def from_epoch(seconds: float) -> datetime:
    return datetime.fromtimestamp(seconds, tz=timezone.utc).replace(tzinfo=None)


@dataclass
class Participant:
    player_id: UUID4
    slot: Optional[int] = None
    team: Optional[int] = None
    handle: Optional[str] = None


@dataclass
class PollOutcome:
    results: List[Dict[str, Any]] = field(default_factory=list)
    match_count: int = 0
    partial: bool = False


def compute_placements(
    match: Match,
    participants: Sequence[Participant],
    submissions: Sequence[MatchSubmission],
    resigned_by: Optional[UUID4] = None,
) -> Dict[UUID4, int]:
    """
    Place every participant (0 is best, equal progress shares a place).

    More solved problems rank higher, then the earlier time of the last solve.
    Team players share their team's place. A resigning player, or their whole
    team, is placed after everybody else.
    """
    solved: Dict[UUID4, set] = {p.player_id: set() for p in participants}
    last_solve: Dict[UUID4, datetime] = {}
    for submission in submissions:
        if submission.player_id not in solved:
            continue
        solved[submission.player_id].add(submission.problem_order)
        previous = last_solve.get(submission.player_id)
        if previous is None or submission.solved_at > previous:
            last_solve[submission.player_id] = submission.solved_at

    def progress_key(player_ids: List[UUID4]):
        count = sum(len(solved[pid]) for pid in player_ids)
        times = [last_solve[pid] for pid in player_ids if pid in last_solve]
        latest = max(times) if times else datetime.max
        return (-count, latest if count else datetime.max)

    resigned_team = None
    if resigned_by is not None:
        resigned_team = next(
            (p.team for p in participants if p.player_id == resigned_by), None
        )

    if match.lobby_mode == LobbyMode.TEAM:
        teams: Dict[int, List[UUID4]] = {}
        for p in participants:
            teams.setdefault(p.team, []).append(p.player_id)
        keys = {
            team: (1 if team == resigned_team else 0,) + progress_key(members)
            for team, members in teams.items()
        }
        ordered = sorted(set(keys.values()))
        return {
            p.player_id: ordered.index(keys[p.team]) for p in participants
        }

    keys = {
        p.player_id: (1 if p.player_id == resigned_by else 0,)
        + progress_key([p.player_id])
        for p in participants
    }
    ordered = sorted(set(keys.values()))
    return {pid: ordered.index(key) for pid, key in keys.items()}


def player_score(
    player: Participant,
    participants: Sequence[Participant],
    placements: Dict[UUID4, int],
) -> float:
    """Win, draw or loss against the best opponent (the other team in team mode)."""
    opponents = [
        p
        for p in participants
        if p.player_id != player.player_id
        and (player.team is None or p.team != player.team)
    ]
    if not opponents:
        return DRAW
    best_opponent = min(placements[p.player_id] for p in opponents)
    own = placements[player.player_id]
    if own < best_opponent:
        return WIN
    if own == best_opponent:
        return DRAW
    return LOSS


class MatchLifecycleManager:
    """Owns the waiting -> active -> finished state machine of matches."""

    def __init__(
        self,
        judge_client: CodeforcesClient,
        policy: Optional[RatingPolicy] = None,
        now: Callable[[], datetime] = datetime.utcnow,
        rng: Optional[random.Random] = None,
    ):
        self.judge_client = judge_client
        self.policy = policy or get_rating_policy()
        self.now = now
        self.rng = rng

    # ------------------------------------------------------------------
    # Participants

    async def get_participants(
        self, db: AsyncSession, match: Match, with_handles: bool = False
    ) -> List[Participant]:
        if match.is_classic:
            participants = [
                Participant(player_id=player_id, slot=slot)
                for slot, player_id in ((1, match.player1_id), (2, match.player2_id))
                if player_id is not None
            ]
        else:
            participants = [
                Participant(player_id=row.player_id, team=row.team)
                for row in await get_match_players(db, match.id)
            ]

        if with_handles and participants:
            profiles = await get_profiles_by_ids(
                db, [p.player_id for p in participants]
            )
            for participant in participants:
                profile = profiles.get(participant.player_id)
                participant.handle = profile.cf_handle if profile else None
        return participants

    async def _require_participant(
        self, db: AsyncSession, match: Match, player_id: UUID4
    ) -> List[Participant]:
        participants = await self.get_participants(db, match)
        if player_id not in {p.player_id for p in participants}:
            match_logger.warning(
                f"User {player_id} is not a participant of match {match.id}"
            )
            raise AuthorizationException(detail="You are not part of this match")
        return participants

    async def _ensure_free(self, db: AsyncSession, player_id: UUID4) -> None:
        if await get_unfinished_match_for_user(db, player_id):
            raise ConflictException(detail="You already have an active or pending match")
        if await get_queue_entry_by_user(db, player_id):
            raise ConflictException(detail="Leave the matchmaking queue first")

    # ------------------------------------------------------------------
    # Lobby: waiting state

    async def create_lobby(
        self, db: AsyncSession, creator_id: UUID4, request: LobbyCreateRequest
    ) -> Match:
        """
        Create a waiting lobby with its problems already chosen.

        Raises:
            ConflictException: the creator is queued or already in a match
            UpstreamTimeoutException: the catalog could not be fetched
            InsufficientCandidatesException: not enough problems for the request
        """
        await self._ensure_free(db, creator_id)

        if request.lobby_mode == LobbyMode.ONE_VS_ONE:
            max_players = 2
        elif request.lobby_mode == LobbyMode.TEAM:
            max_players = 2 * request.team_size
        else:
            max_players = request.max_players or DEFAULT_FFA_PLAYERS

        catalog = await fetch_problem_catalog_async(self.judge_client)
        blacklist = await get_blacklisted_refs(db)
        problems = select_problems(
            catalog,
            request.rating_min,
            request.rating_max,
            count=request.problem_count,
            tags=request.tags,
            blacklist=blacklist,
            rng=self.rng,
        )

        first = problems[0]
        match = Match(
            status=MatchStatus.WAITING,
            lobby_mode=request.lobby_mode,
            max_players=max_players,
            team_size=request.team_size if request.lobby_mode == LobbyMode.TEAM else None,
            problem_count=len(problems),
            challenge_code="".join(
                secrets.choice(CHALLENGE_CODE_ALPHABET)
                for _ in range(CHALLENGE_CODE_LENGTH)
            ),
            player1_id=creator_id,
            contest_id=first.contest_id,
            problem_index=first.index,
            problem_name=first.name,
            problem_rating=first.rating,
            duration=request.duration,
        )
        db.add(match)
        await db.flush()

        for order, problem in enumerate(problems):
            db.add(
                MatchProblem(
                    match_id=match.id,
                    problem_order=order,
                    contest_id=problem.contest_id,
                    problem_index=problem.index,
                    problem_name=problem.name,
                    rating=problem.rating,
                )
            )
        if not match.is_classic:
            db.add(
                MatchPlayer(
                    match_id=match.id,
                    player_id=creator_id,
                    team=1 if request.lobby_mode == LobbyMode.TEAM else None,
                )
            )

        await db.commit()
        await db.refresh(match)
        match_logger.info(
            f"Lobby {match.id} created by {creator_id}: mode {match.lobby_mode.value}, "
            f"{max_players} players, {len(problems)} problem(s), code {match.challenge_code}"
        )
        return match

    async def join_lobby(self, db: AsyncSession, code: str, player_id: UUID4) -> Match:
        match = await get_match_by_challenge_code(db, code)
        if match.status != MatchStatus.WAITING:
            raise ConflictException(detail="Lobby is not accepting players")

        participants = await self.get_participants(db, match)
        if player_id in {p.player_id for p in participants}:
            raise ConflictException(detail="You already joined this lobby")
        await self._ensure_free(db, player_id)
        if len(participants) >= match.max_players:
            raise ConflictException(detail="Lobby is full")

        if match.is_classic:
            result = await db.execute(
                update(Match)
                .where(
                    Match.id == match.id,
                    Match.status == MatchStatus.WAITING,
                    Match.player2_id.is_(None),
                )
                .values(player2_id=player_id)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await db.rollback()
                raise ConflictException(detail="Lobby is full")
            joined = len(participants) + 1
        else:
            team = None
            if match.lobby_mode == LobbyMode.TEAM:
                team = len(participants) % 2 + 1
            db.add(MatchPlayer(match_id=match.id, player_id=player_id, team=team))
            await db.commit()

            # Recount committed rows so a concurrent join cannot leave a full lobby waiting
            rows = await get_match_players(db, match.id)
            position = [row.player_id for row in rows].index(player_id)
            if position >= match.max_players:
                await db.execute(
                    delete(MatchPlayer).where(
                        MatchPlayer.match_id == match.id,
                        MatchPlayer.player_id == player_id,
                    )
                )
                await db.commit()
                raise ConflictException(detail="Lobby is full")
            joined = len(rows)

        match_logger.info(
            f"User {player_id} joined lobby {match.id} ({joined}/{match.max_players})"
        )
        if joined >= match.max_players:
            await self._start(db, match.id)

        await db.commit()
        return await get_match_by_id(db, match.id)

    async def force_start(self, db: AsyncSession, match_id: UUID4, caller_id: UUID4) -> Match:
        match = await get_match_by_id(db, match_id)
        if match.player1_id != caller_id:
            raise AuthorizationException(detail="Only the lobby creator can start the match")
        if match.status != MatchStatus.WAITING:
            raise ConflictException(detail="Match is not waiting for players")

        participants = await self.get_participants(db, match)
        if len(participants) < 2:
            raise ConflictException(detail="At least 2 players are needed to start")
        if match.lobby_mode == LobbyMode.TEAM and len({p.team for p in participants}) < 2:
            raise ConflictException(detail="Both teams need at least one player")

        await self._start(db, match.id)
        await db.commit()
        match_logger.info(
            f"Lobby {match.id} force-started by {caller_id} with {len(participants)} players"
        )
        return await get_match_by_id(db, match.id)

    async def _start(self, db: AsyncSession, match_id: UUID4) -> None:
        start_time = self.now() + timedelta(seconds=Config.MATCH_START_GRACE_SECONDS)
        if not await activate_match(db, match_id, start_time):
            await db.rollback()
            raise ConflictException(detail="Match is not waiting for players")
        match_logger.info(f"Match {match_id} active, starts {start_time.isoformat()}")

    # ------------------------------------------------------------------
    # Active state: draw offers and resignation

    async def offer_draw(self, db: AsyncSession, match_id: UUID4, player_id: UUID4) -> str:
        """
        Toggle a draw offer.

        Returns ``"draw_offered"``, ``"draw_withdrawn"`` or ``"finished"`` when a
        second participant accepted by offering too.
        """
        match = await get_match_by_id(db, match_id)
        participants = await self._require_participant(db, match, player_id)
        if match.status != MatchStatus.ACTIVE:
            raise ConflictException(detail="Match is not active")

        if match.draw_offered_by is None or match.draw_offered_by == player_id:
            new_value = None if match.draw_offered_by == player_id else player_id
            result = await db.execute(
                update(Match)
                .where(
                    Match.id == match.id,
                    Match.status == MatchStatus.ACTIVE,
                    Match.draw_offered_by.is_(None)
                    if new_value is not None
                    else Match.draw_offered_by == player_id,
                )
                .values(draw_offered_by=new_value)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await db.rollback()
                raise ConflictException(detail="Draw offer changed concurrently, try again")
            await db.commit()
            action = "draw_offered" if new_value is not None else "draw_withdrawn"
            match_logger.info(f"Match {match.id}: {action} by {player_id}")
            return action

        placements = {p.player_id: 0 for p in participants}
        finished = await self._finalize(db, match, participants, placements)
        if finished is None:
            raise ConflictException(detail="Match is not active")
        match_logger.info(f"Match {match.id} drawn by agreement")
        return "finished"

    async def resign(self, db: AsyncSession, match_id: UUID4, player_id: UUID4) -> Match:
        match = await get_match_by_id(db, match_id)
        participants = await self._require_participant(db, match, player_id)
        if match.status != MatchStatus.ACTIVE:
            raise ConflictException(detail="Match is not active")

        submissions = await get_match_submissions(db, match.id)
        placements = compute_placements(match, participants, submissions, resigned_by=player_id)
        finished = await self._finalize(
            db, match, participants, placements, resigned_by=player_id
        )
        if finished is None:
            raise ConflictException(detail="Match is not active")
        match_logger.info(f"Match {match.id}: {player_id} resigned")
        return await get_match_by_id(db, match.id)

    # ------------------------------------------------------------------
    # Finished state

    async def _finalize(
        self,
        db: AsyncSession,
        match: Match,
        participants: Sequence[Participant],
        placements: Dict[UUID4, int],
        resigned_by: Optional[UUID4] = None,
    ) -> Optional[Dict[str, Any]]:
        """
        Finish the match and apply ratings in one transaction.

        Returns None when another pass already finished the match; in that
        case nothing is written.
        """
        if not await claim_match_finish(db, match.id, self.now()):
            await db.rollback()
            match_logger.info(f"Match {match.id} already finished elsewhere")
            return None

        profiles = await lock_profiles(db, [p.player_id for p in participants])
        k = match_k_factor(self.policy, profiles.values())
        ratings = {pid: profile.rating for pid, profile in profiles.items()}
        scores = {
            p.player_id: player_score(p, participants, placements) for p in participants
        }

        if match.is_classic:
            p1, p2 = match.player1_id, match.player2_id
            delta1, delta2 = elo(ratings[p1], ratings[p2], scores[p1], k)
            deltas = {p1: delta1, p2: delta2}
        elif match.lobby_mode == LobbyMode.TEAM:
            teams = {p.player_id: p.team for p in participants}
            team_scores = {p.team: scores[p.player_id] for p in participants}
            deltas = team_deltas(ratings, teams, team_scores, k)
        else:
            deltas = ffa_deltas(ratings, placements, k)

        for participant in participants:
            RatingService.apply_result(
                profiles[participant.player_id],
                deltas[participant.player_id],
                scores[participant.player_id],
            )

        winners = [pid for pid, score in scores.items() if score == WIN]
        winner_id = winners[0] if len(winners) == 1 else None
        winner_team = None
        if match.lobby_mode == LobbyMode.TEAM and winners:
            winner_team = next(p.team for p in participants if p.player_id == winners[0])

        values: Dict[str, Any] = {
            "winner_id": winner_id,
            "winner_team": winner_team,
            "resigned_by": resigned_by,
        }
        if match.is_classic:
            values["player1_rating_change"] = deltas[match.player1_id]
            values["player2_rating_change"] = deltas[match.player2_id]
        else:
            for participant in participants:
                await db.execute(
                    update(MatchPlayer)
                    .where(
                        MatchPlayer.match_id == match.id,
                        MatchPlayer.player_id == participant.player_id,
                    )
                    .values(rating_change=deltas[participant.player_id])
                    .execution_options(synchronize_session=False)
                )
        await db.execute(
            update(Match)
            .where(Match.id == match.id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await db.commit()

        changes = ", ".join(f"{pid}: {delta:+d}" for pid, delta in deltas.items())
        match_logger.info(
            f"Match {match.id} finished: winner {winner_id or winner_team or 'none'}, "
            f"K={k}, changes {changes}"
        )
        result: Dict[str, Any] = {
            "match_id": str(match.id),
            "status": MatchStatus.FINISHED.value,
            "winner_id": str(winner_id) if winner_id else None,
        }
        if winner_team is not None:
            result["winner_team"] = winner_team
        return result

    # ------------------------------------------------------------------
    # Poll

    async def poll(
        self,
        session_factory: async_sessionmaker,
        concurrency: int = Config.POLL_CONCURRENCY,
        deadline: float = Config.POLL_TICK_DEADLINE_SECONDS,
    ) -> PollOutcome:
        """
        Advance every active match once.

        Each match runs in its own task and session. Tasks still running at
        the deadline are cancelled (their transactions roll back) and the
        outcome is flagged as partial. A failing match is logged and skipped.
        """
        async with session_factory() as db:
            match_ids = [match.id for match in await get_active_matches(db)]
        if not match_ids:
            return PollOutcome()

        semaphore = asyncio.Semaphore(max(1, concurrency))

        async def guarded(match_id: UUID4) -> List[Dict[str, Any]]:
            async with semaphore:
                return await self.poll_match(session_factory, match_id)

        tasks = [asyncio.create_task(guarded(match_id)) for match_id in match_ids]
        done, pending = await asyncio.wait(tasks, timeout=deadline)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            match_logger.warning(
                f"Poll deadline of {deadline}s hit; {len(pending)} match(es) deferred"
            )

        outcome = PollOutcome(match_count=len(match_ids), partial=bool(pending))
        for match_id, task in zip(match_ids, tasks):
            if task not in done:
                continue
            error = task.exception()
            if error is not None:
                match_logger.error(
                    f"Poll failed for match {match_id}: {error}", exc_info=error
                )
                outcome.partial = True
                continue
            outcome.results.extend(task.result())
        return outcome

    async def poll_match(
        self, session_factory: async_sessionmaker, match_id: UUID4
    ) -> List[Dict[str, Any]]:
        async with session_factory() as db:
            try:
                return await self._poll_match(db, match_id)
            except IntegrityError:
                # A concurrent pass recorded the same solve first
                await db.rollback()
                match_logger.info(f"Match {match_id}: solve already recorded by another pass")
                return []

    async def _poll_match(self, db: AsyncSession, match_id: UUID4) -> List[Dict[str, Any]]:
        match = await get_match_by_id(db, match_id)
        if match.status != MatchStatus.ACTIVE:
            return []

        now = self.now()
        participants = await self.get_participants(db, match, with_handles=True)
        problems = await get_match_problems(db, match.id)
        submissions = await get_match_submissions(db, match.id)

        if now < match.start_time:
            return []

        # Release the connection while waiting on the judge
        await db.commit()
        results = await self._detect_solves(db, match, participants, problems, submissions)

        submissions = await get_match_submissions(db, match.id)
        if now > match.end_time:
            # Solves made before the end still count even if not yet polled
            placements = compute_placements(match, participants, submissions)
            finished = await self._finalize(db, match, participants, placements)
            if finished:
                results.append(finished)
            return results

        solved = {(s.player_id, s.problem_order) for s in submissions}
        everyone_done = all(
            (p.player_id, problem.problem_order) in solved
            for p in participants
            for problem in problems
        )
        if everyone_done and len(participants) >= 2:
            match = await get_match_by_id(db, match.id)
            placements = compute_placements(match, participants, submissions)
            finished = await self._finalize(db, match, participants, placements)
            if finished:
                results.append(finished)
        return results

    async def _detect_solves(
        self,
        db: AsyncSession,
        match: Match,
        participants: Sequence[Participant],
        problems: Sequence[MatchProblem],
        submissions: Sequence[MatchSubmission],
    ) -> List[Dict[str, Any]]:
        solved = {(s.player_id, s.problem_order): s.solved_at for s in submissions}
        pending = [
            p
            for p in participants
            if p.handle
            and any((p.player_id, prob.problem_order) not in solved for prob in problems)
        ]
        if not pending:
            return []

        fetched = await asyncio.gather(
            *(fetch_submissions_async(self.judge_client, p.handle) for p in pending),
            return_exceptions=True,
        )

        start_ts = to_epoch(match.start_time)
        end_ts = to_epoch(match.end_time)
        results = []
        for participant, judge_submissions in zip(pending, fetched):
            if isinstance(judge_submissions, UpstreamTimeoutException):
                match_logger.warning(
                    f"Match {match.id}: judge unavailable for {participant.handle}: "
                    f"{judge_submissions.detail}"
                )
                continue
            if isinstance(judge_submissions, BaseException):
                raise judge_submissions

            for problem in problems:
                if (participant.player_id, problem.problem_order) in solved:
                    continue
                accepted = [
                    s.creation_time_seconds
                    for s in judge_submissions
                    if is_qualifying_solve(s, problem, start_ts, end_ts)
                ]
                if not accepted:
                    continue

                solved_at = from_epoch(min(accepted))
                recorded = await add_match_submission(
                    db,
                    MatchSubmission(
                        match_id=match.id,
                        player_id=participant.player_id,
                        problem_order=problem.problem_order,
                        solved_at=solved_at,
                    ),
                )
                if not recorded:
                    continue
                solved[(participant.player_id, problem.problem_order)] = solved_at
                if not match.is_classic:
                    await db.execute(
                        update(MatchPlayer)
                        .where(
                            MatchPlayer.match_id == match.id,
                            MatchPlayer.player_id == participant.player_id,
                        )
                        .values(solved_count=MatchPlayer.solved_count + 1)
                        .execution_options(synchronize_session=False)
                    )
                results.append(
                    {
                        "match_id": str(match.id),
                        "player_id": str(participant.player_id),
                        "problem_order": problem.problem_order,
                        "solved_at": solved_at.isoformat(),
                    }
                )
                match_logger.info(
                    f"Match {match.id}: {participant.handle} solved "
                    f"{problem.problem_ref} at {solved_at.isoformat()}"
                )

            if match.is_classic and all(
                (participant.player_id, prob.problem_order) in solved for prob in problems
            ):
                finished_at = max(
                    solved[(participant.player_id, prob.problem_order)] for prob in problems
                )
                await stamp_player_solved_at(db, match.id, participant.slot, finished_at)

        await db.commit()
        return results


def get_match_lifecycle(
    judge_client: CodeforcesClient = Depends(get_judge_client),
) -> MatchLifecycleManager:
    return MatchLifecycleManager(judge_client)
