import asyncio
import time
from typing import Any, Dict, List, Optional

import requests
from pydantic import ValidationError

from arena.config import Config, logger
from arena.data.schemas import CatalogProblem, JudgeSubmission, MatchProblem
from arena.errors import UpstreamTimeoutException

judge_logger = logger.getChild("judge")

ACCEPTED_VERDICT = "OK"


class CodeforcesClient:
    """Thin adapter over the public Codeforces API."""

    def __init__(
        self,
        base_url: str = Config.CODEFORCES_API_URL,
        timeout: float = Config.JUDGE_TIMEOUT_SECONDS,
        catalog_ttl: int = Config.CATALOG_CACHE_SECONDS,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.catalog_ttl = catalog_ttl
        self._catalog_cache: Optional[List[CatalogProblem]] = None
        self._catalog_fetched_at = 0.0

    def _get(self, method: str, params: Optional[Dict[str, Any]] = None) -> Any:
        try:
            response = requests.get(
                f"{self.base_url}/{method}", params=params, timeout=self.timeout
            )
            response.raise_for_status()
            payload = response.json()
        except requests.Timeout as e:
            raise UpstreamTimeoutException(
                detail=f"Codeforces {method} timed out"
            ) from e
        except (requests.RequestException, ValueError) as e:
            raise UpstreamTimeoutException(
                detail=f"Codeforces {method} failed: {str(e)}"
            ) from e

        if not isinstance(payload, dict):
            raise UpstreamTimeoutException(
                detail=f"Codeforces {method} returned a malformed payload"
            )
        if payload.get("status") != "OK":
            raise UpstreamTimeoutException(
                detail=f"Codeforces {method} answered: {payload.get('comment', 'FAILED')}"
            )
        return payload.get("result")

    def fetch_submissions(
        self, handle: str, count: int = Config.SUBMISSIONS_FETCH_COUNT
    ) -> List[JudgeSubmission]:
        result = self._get("user.status", {"handle": handle, "count": count})
        if not isinstance(result, list):
            raise UpstreamTimeoutException(
                detail="Codeforces user.status returned a malformed result"
            )
        submissions = []
        try:
            for raw in result:
                problem = raw.get("problem") or {}
                submissions.append(
                    JudgeSubmission(
                        id=raw.get("id", 0),
                        contest_id=problem.get("contestId", raw.get("contestId")),
                        index=problem.get("index", ""),
                        verdict=raw.get("verdict"),
                        creation_time_seconds=raw.get("creationTimeSeconds", 0),
                    )
                )
        except (AttributeError, TypeError, ValidationError) as e:
            raise UpstreamTimeoutException(
                detail=f"Codeforces user.status returned a malformed submission: {str(e)}"
            ) from e
        return submissions

    def fetch_problem_catalog(self) -> List[CatalogProblem]:
        now = time.monotonic()
        if (
            self._catalog_cache is not None
            and now - self._catalog_fetched_at < self.catalog_ttl
        ):
            return self._catalog_cache

        result = self._get("problemset.problems")
        if not isinstance(result, dict):
            raise UpstreamTimeoutException(
                detail="Codeforces problemset.problems returned a malformed result"
            )
        try:
            catalog = [
                CatalogProblem(
                    contest_id=raw["contestId"],
                    index=raw.get("index", ""),
                    name=raw.get("name", ""),
                    rating=raw["rating"],
                    tags=raw.get("tags", []),
                )
                for raw in result.get("problems") or []
                if raw.get("rating") and raw.get("contestId")
            ]
        except (AttributeError, TypeError, ValidationError) as e:
            raise UpstreamTimeoutException(
                detail=f"Codeforces problemset.problems returned a malformed problem: {str(e)}"
            ) from e
        judge_logger.info(f"Fetched problem catalog with {len(catalog)} rated problems")
        self._catalog_cache = catalog
        self._catalog_fetched_at = now
        return catalog


def is_qualifying_solve(
    submission: JudgeSubmission,
    problem: MatchProblem,
    start_ts: float,
    end_ts: Optional[float] = None,
) -> bool:
    """Accepted, for this problem, and submitted within the match window."""
    return (
        submission.verdict == ACCEPTED_VERDICT
        and submission.contest_id == problem.contest_id
        and submission.index == problem.problem_index
        and submission.creation_time_seconds >= start_ts
        and (end_ts is None or submission.creation_time_seconds <= end_ts)
    )


async def fetch_submissions_async(
    client: CodeforcesClient, handle: str
) -> List[JudgeSubmission]:
    """Run the blocking fetch off the event loop with a hard deadline."""
    try:
        return await asyncio.wait_for(
            asyncio.to_thread(client.fetch_submissions, handle),
            timeout=Config.JUDGE_TIMEOUT_SECONDS,
        )
    except asyncio.TimeoutError as e:
        raise UpstreamTimeoutException(
            detail=f"Codeforces user.status timed out for {handle}"
        ) from e


async def fetch_problem_catalog_async(client: CodeforcesClient) -> List[CatalogProblem]:
    try:
        return await asyncio.wait_for(
            asyncio.to_thread(client.fetch_problem_catalog),
            timeout=Config.JUDGE_TIMEOUT_SECONDS,
        )
    except asyncio.TimeoutError as e:
        raise UpstreamTimeoutException(detail="Codeforces catalog timed out") from e


judge_client = CodeforcesClient()


def get_judge_client() -> CodeforcesClient:
    return judge_client
