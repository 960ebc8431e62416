# Set environment variables before anything from arena is imported
import os
import tempfile

_tmp_dir = tempfile.mkdtemp(prefix="arena-tests-")
os.environ["TESTING"] = "True"
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_tmp_dir}/test.db"
os.environ["LOG_FILE"] = f"{_tmp_dir}/logs/app.log"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["POLL_CONCURRENCY"] = "1"
os.environ["SCHEDULER_ENABLED"] = "false"

import uuid
from datetime import datetime, timedelta

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

import arena.data.schemas  # noqa: F401
from arena.business.services.auth_util import create_access_token
from arena.business.services.judge_client import get_judge_client
from arena.business.services.match_lifecycle import (
    MatchLifecycleManager,
    get_match_lifecycle,
)
from arena.business.services.queue_matcher import QueueMatcher, get_queue_matcher
from arena.business.services.rating import FixedKPolicy
from arena.data.repositories import get_redis_client, get_session, get_session_factory
from arena.data.schemas import CatalogProblem, JudgeSubmission, Profile, QueueEntry
from arena.errors import UpstreamTimeoutException
from arena.main import app

# A fresh connection per session keeps aiosqlite usable from both the test
# event loop and the TestClient portal thread
test_engine = create_async_engine(os.environ["DATABASE_URL"], poolclass=NullPool)
TestingSessionLocal = async_sessionmaker(
    bind=test_engine, class_=AsyncSession, expire_on_commit=False
)

START = datetime(2024, 5, 1, 12, 0, 0)

CATALOG = [
    CatalogProblem(contest_id=4, index="A", name="Watermelon", rating=800, tags=["math"]),
    CatalogProblem(contest_id=71, index="A", name="Way Too Long Words", rating=800, tags=["strings"]),
    CatalogProblem(contest_id=1352, index="C", name="K-th Not Divisible by n", rating=1200, tags=["math", "binary search"]),
    CatalogProblem(contest_id=1359, index="B", name="New Theatre Square", rating=1000, tags=["greedy"]),
    CatalogProblem(contest_id=1520, index="D", name="Same Differences", rating=1200, tags=["math", "hashing"]),
    CatalogProblem(contest_id=1472, index="D", name="Even-Odd Game", rating=1200, tags=["games", "greedy"]),
    CatalogProblem(contest_id=1633, index="D", name="Make Them Equal", rating=1600, tags=["dp", "greedy"]),
    CatalogProblem(contest_id=1400, index="E", name="Clear the Multiset", rating=1800, tags=["dp", "greedy"]),
    CatalogProblem(contest_id=1, index="A", name="Theatre Square", rating=1000, tags=["math"]),
]


class FrozenClock:
    """Callable clock the engine uses instead of datetime.utcnow."""

    def __init__(self, start: datetime = START):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> datetime:
        self.current += timedelta(seconds=seconds)
        return self.current


class FakeJudgeClient:
    """Stands in for the Codeforces client; same synchronous interface."""

    def __init__(self, catalog=None):
        self.catalog = list(CATALOG if catalog is None else catalog)
        self.submissions = {}
        self.failing_handles = set()
        self.catalog_error = None
        self.catalog_calls = 0
        self.submission_calls = []

    def fetch_problem_catalog(self):
        self.catalog_calls += 1
        if self.catalog_error is not None:
            raise self.catalog_error
        return list(self.catalog)

    def fetch_submissions(self, handle, count=20):
        self.submission_calls.append(handle)
        if handle in self.failing_handles:
            raise UpstreamTimeoutException(detail=f"Codeforces user.status timed out for {handle}")
        return list(self.submissions.get(handle, []))

    def accept(self, handle, contest_id, index, at: datetime, submission_id=None):
        """Record an accepted submission made at ``at`` (naive UTC)."""
        self.submissions.setdefault(handle, []).append(
            JudgeSubmission(
                id=submission_id or len(self.submissions.get(handle, [])) + 1,
                contest_id=contest_id,
                index=index,
                verdict="OK",
                creation_time_seconds=int((at - datetime(1970, 1, 1)).total_seconds()),
            )
        )


class FakeLock:
    def __init__(self, owner, name):
        self.owner = owner
        self.name = name

    async def acquire(self):
        if self.name in self.owner.held:
            return False
        self.owner.held.add(self.name)
        return True

    async def release(self):
        self.owner.held.discard(self.name)


class FakeRedisClient:
    def __init__(self):
        self.held = set()

    async def lock(self, name, timeout, blocking_timeout):
        return FakeLock(self, name)

    async def close(self):
        pass


@pytest_asyncio.fixture
async def session_factory():
    async with test_engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield TestingSessionLocal
    async with test_engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.drop_all)


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def judge():
    return FakeJudgeClient()


@pytest.fixture
def fake_redis():
    return FakeRedisClient()


@pytest.fixture
def matcher(judge, fake_redis, clock):
    return QueueMatcher(judge, fake_redis, now=clock)


@pytest.fixture
def lifecycle(judge, clock):
    return MatchLifecycleManager(judge, policy=FixedKPolicy(32), now=clock)


@pytest.fixture
def make_profile(session_factory):
    async def _make_profile(username, rating=1000, cf_handle=None, **counters):
        profile = Profile(
            username=username,
            rating=rating,
            cf_handle=cf_handle if cf_handle is not None else username,
            **counters,
        )
        async with session_factory() as db:
            db.add(profile)
            await db.commit()
            await db.refresh(profile)
        return profile

    return _make_profile


@pytest.fixture
def enqueue(session_factory):
    async def _enqueue(user_id, rating_min=800, rating_max=1600, duration=900, tags=None, created_at=None):
        entry = QueueEntry(
            user_id=user_id,
            rating_min=rating_min,
            rating_max=rating_max,
            duration=duration,
            tags=tags or [],
        )
        if created_at is not None:
            entry.created_at = created_at
        async with session_factory() as db:
            db.add(entry)
            await db.commit()
            await db.refresh(entry)
        return entry

    return _enqueue


def _auth_headers(user_id, role="user"):
    token = create_access_token({"id": str(user_id), "role": role})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers():
    return _auth_headers


@pytest.fixture
def admin_headers():
    return _auth_headers(uuid.uuid4(), role="admin")


# Create test client
@pytest.fixture
def client(session_factory, judge, fake_redis, matcher, lifecycle):
    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_judge_client] = lambda: judge
    app.dependency_overrides[get_redis_client] = lambda: fake_redis
    app.dependency_overrides[get_queue_matcher] = lambda: matcher
    app.dependency_overrides[get_match_lifecycle] = lambda: lifecycle

    with TestClient(app) as test_client:
        yield test_client

    # Remove the overrides after the test
    app.dependency_overrides.clear()
