import random
from typing import Iterable, List, Optional, Set

from arena.config import logger
from arena.data.schemas import CatalogProblem
from arena.errors import InsufficientCandidatesException

selector_logger = logger.getChild("problem_selector")


def filter_candidates(
    catalog: Iterable[CatalogProblem],
    rating_min: int,
    rating_max: int,
    tags: Optional[Iterable[str]] = None,
    blacklist: Optional[Set[str]] = None,
) -> List[CatalogProblem]:
    """
    Problems rated within [rating_min, rating_max], not blacklisted and, when
    tags are given, carrying at least one of them.
    """
    wanted_tags = set(tags or [])
    blacklist = blacklist or set()
    seen = set()
    candidates = []
    for problem in catalog:
        if problem.rating is None or not rating_min <= problem.rating <= rating_max:
            continue
        if problem.problem_ref in blacklist or problem.problem_ref in seen:
            continue
        if wanted_tags and not wanted_tags.intersection(problem.tags):
            continue
        seen.add(problem.problem_ref)
        candidates.append(problem)
    return candidates


def select_problems(
    catalog: Iterable[CatalogProblem],
    rating_min: int,
    rating_max: int,
    count: int = 1,
    tags: Optional[Iterable[str]] = None,
    blacklist: Optional[Set[str]] = None,
    rng: Optional[random.Random] = None,
) -> List[CatalogProblem]:
    """
    Pick ``count`` problems for a match.

    A single problem is drawn uniformly. Several problems are spread over the
    rating band: candidates are sorted by rating, cut into ``count`` buckets by
    stride and one problem is drawn per bucket, so the returned list is in
    increasing difficulty.

    Raises:
        InsufficientCandidatesException: fewer candidates than ``count``
    """
    rng = rng or random
    candidates = filter_candidates(catalog, rating_min, rating_max, tags, blacklist)
    if len(candidates) < count:
        selector_logger.warning(
            f"Only {len(candidates)} candidates in {rating_min}-{rating_max} "
            f"(tags={sorted(tags or [])}), {count} requested"
        )
        raise InsufficientCandidatesException(
            detail=f"Only {len(candidates)} problems match rating {rating_min}-{rating_max}, "
            f"{count} requested"
        )

    if count == 1:
        return [rng.choice(candidates)]

    candidates.sort(key=lambda p: (p.rating, p.problem_ref))
    stride = len(candidates) // count
    picked: List[CatalogProblem] = []
    picked_refs: Set[str] = set()
    for bucket_no in range(count):
        start = bucket_no * stride
        end = len(candidates) if bucket_no == count - 1 else start + stride
        choice = rng.choice(candidates[start:end])
        if choice.problem_ref in picked_refs:
            remaining = [p for p in candidates if p.problem_ref not in picked_refs]
            choice = rng.choice(remaining)
        picked.append(choice)
        picked_refs.add(choice.problem_ref)

    picked.sort(key=lambda p: (p.rating, p.problem_ref))
    selector_logger.info(
        f"Selected problems {[p.problem_ref for p in picked]} from {len(candidates)} candidates"
    )
    return picked
