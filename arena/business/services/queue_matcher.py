import random
from bisect import bisect_right
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, FrozenSet, Iterator, List, Optional, Sequence, Tuple

from fastapi import Depends
from pydantic import UUID4
from redis.exceptions import LockError
from sqlalchemy.ext.asyncio import AsyncSession

from arena.business.services.judge_client import (
    CodeforcesClient,
    fetch_problem_catalog_async,
    get_judge_client,
)
from arena.business.services.problem_selector import select_problems
from arena.config import Config, logger
from arena.data.repositories import (
    delete_queue_entries,
    get_blacklisted_refs,
    get_queue_entries,
)
from arena.data.repositories.redis import RedisClient, get_redis_client
from arena.data.schemas import (
    CatalogProblem,
    LobbyMode,
    Match,
    MatchProblem,
    MatchStatus,
    QueueEntry,
)
from arena.errors import InsufficientCandidatesException

queue_logger = logger.getChild("queue")

MATCHMAKE_LOCK_NAME = "arena:matchmake"

NOT_ENOUGH_PLAYERS = "Not enough players"
NO_COMPATIBLE_PAIRS = "No compatible pairs"
MATCHMAKING_BUSY = "Matchmaking already in progress"


@dataclass(frozen=True)
class QueueSlot:
    """Detached snapshot of a queue row, safe to use after a rollback."""

    id: UUID4
    user_id: UUID4
    rating_min: int
    rating_max: int
    duration: int
    tags: FrozenSet[str] = field(default_factory=frozenset)

    @classmethod
    def from_entry(cls, entry: QueueEntry) -> "QueueSlot":
        return cls(
            id=entry.id,
            user_id=entry.user_id,
            rating_min=entry.rating_min,
            rating_max=entry.rating_max,
            duration=entry.duration,
            tags=frozenset(entry.tags or []),
        )


@dataclass
class PairTerms:
    rating_min: int
    rating_max: int
    duration: int
    tags: FrozenSet[str]


@dataclass
class MatchmakeResult:
    match: Optional[Match] = None
    message: Optional[str] = None


def pair_terms(a: QueueSlot, b: QueueSlot) -> Optional[PairTerms]:
    """
    Terms both players accept, or None if they cannot be paired.

    The rating bands must overlap, the durations must be equal and, when both
    players asked for tags, the tag sets must intersect.
    """
    low = max(a.rating_min, b.rating_min)
    high = min(a.rating_max, b.rating_max)
    if low > high or a.duration != b.duration:
        return None
    if a.tags and b.tags:
        tags = a.tags & b.tags
        if not tags:
            return None
    else:
        tags = a.tags or b.tags
    return PairTerms(rating_min=low, rating_max=high, duration=a.duration, tags=tags)


def candidate_pairs(
    slots: Sequence[QueueSlot],
) -> Iterator[Tuple[QueueSlot, QueueSlot, PairTerms]]:
    """
    Yield compatible pairs, earliest arrivals first.

    ``slots`` must be in arrival order. Partners are looked up through an
    index sorted by ``rating_min``: only entries whose band starts at or below
    ``a.rating_max`` can overlap with ``a``.
    """
    by_min = sorted(range(len(slots)), key=lambda i: slots[i].rating_min)
    mins = [slots[i].rating_min for i in by_min]
    for i, a in enumerate(slots):
        reach = bisect_right(mins, a.rating_max)
        partners = sorted(
            j for j in by_min[:reach] if j > i and slots[j].rating_max >= a.rating_min
        )
        for j in partners:
            terms = pair_terms(a, slots[j])
            if terms is not None:
                yield a, slots[j], terms


class QueueMatcher:
    """Pairs queued players into active 1v1 matches."""

    def __init__(
        self,
        judge_client: CodeforcesClient,
        redis_client: RedisClient,
        now: Callable[[], datetime] = datetime.utcnow,
        rng: Optional[random.Random] = None,
    ):
        self.judge_client = judge_client
        self.redis_client = redis_client
        self.now = now
        self.rng = rng

    async def matchmake(self, db: AsyncSession) -> MatchmakeResult:
        """
        Run one matching pass under the cross-process matchmake lock.

        Returns a result holding either the created match or a message.

        Raises:
            UpstreamTimeoutException: the problem catalog could not be fetched;
                nothing has been written in that case
        """
        lock = await self.redis_client.lock(
            MATCHMAKE_LOCK_NAME,
            timeout=Config.MATCHMAKE_LOCK_TIMEOUT_SECONDS,
            blocking_timeout=Config.MATCHMAKE_LOCK_WAIT_SECONDS,
        )
        if not await lock.acquire():
            queue_logger.info("Matchmake pass skipped: lock held by another pass")
            return MatchmakeResult(message=MATCHMAKING_BUSY)
        try:
            return await self._matchmake_locked(db)
        finally:
            try:
                await lock.release()
            except LockError as e:
                queue_logger.warning(f"Matchmake lock expired before release: {e}")

    async def _matchmake_locked(self, db: AsyncSession) -> MatchmakeResult:
        slots = [QueueSlot.from_entry(entry) for entry in await get_queue_entries(db)]
        if len(slots) < 2:
            queue_logger.debug(f"Matchmake pass: {len(slots)} player(s) in queue")
            return MatchmakeResult(message=NOT_ENOUGH_PLAYERS)

        queue_logger.info(f"Matchmake pass over {len(slots)} queue entries")
        catalog = await fetch_problem_catalog_async(self.judge_client)
        blacklist = await get_blacklisted_refs(db)

        for a, b, terms in candidate_pairs(slots):
            try:
                problem = select_problems(
                    catalog,
                    terms.rating_min,
                    terms.rating_max,
                    count=1,
                    tags=terms.tags,
                    blacklist=blacklist,
                    rng=self.rng,
                )[0]
            except InsufficientCandidatesException:
                queue_logger.debug(
                    f"No problem for pair {a.user_id}/{b.user_id} "
                    f"in {terms.rating_min}-{terms.rating_max}"
                )
                continue

            match = await self._create_match(db, a, b, terms, problem)
            if match is not None:
                return MatchmakeResult(match=match)

        queue_logger.info("Matchmake pass found no compatible pair")
        return MatchmakeResult(message=NO_COMPATIBLE_PAIRS)

    async def _create_match(
        self,
        db: AsyncSession,
        a: QueueSlot,
        b: QueueSlot,
        terms: PairTerms,
        problem: CatalogProblem,
    ) -> Optional[Match]:
        start_time = self.now() + timedelta(seconds=Config.MATCH_START_GRACE_SECONDS)
        match = Match(
            status=MatchStatus.ACTIVE,
            lobby_mode=LobbyMode.ONE_VS_ONE,
            max_players=2,
            problem_count=1,
            player1_id=a.user_id,
            player2_id=b.user_id,
            contest_id=problem.contest_id,
            problem_index=problem.index,
            problem_name=problem.name,
            problem_rating=problem.rating,
            start_time=start_time,
            duration=terms.duration,
        )
        db.add(match)
        await db.flush()
        db.add(
            MatchProblem(
                match_id=match.id,
                problem_order=0,
                contest_id=problem.contest_id,
                problem_index=problem.index,
                problem_name=problem.name,
                rating=problem.rating,
            )
        )

        deleted = await delete_queue_entries(db, [a.id, b.id])
        if deleted != 2:
            await db.rollback()
            queue_logger.warning(
                f"Queue entries for {a.user_id}/{b.user_id} were consumed concurrently; "
                f"match discarded"
            )
            return None

        await db.commit()
        await db.refresh(match)
        queue_logger.info(
            f"Match created: {match.id} between {a.user_id} and {b.user_id}, "
            f"problem {problem.problem_ref} ({problem.rating}), starts {start_time.isoformat()}"
        )
        return match


def get_queue_matcher(
    judge_client: CodeforcesClient = Depends(get_judge_client),
    redis_client: RedisClient = Depends(get_redis_client),
) -> QueueMatcher:
    return QueueMatcher(judge_client, redis_client)
