import asyncio
from datetime import datetime
from unittest.mock import patch

import pytest

from arena.business.services.match_lifecycle import PollOutcome
from arena.business.services.queue_matcher import MatchmakeResult
from arena.business.services.scheduler import ArenaScheduler


class ScriptedMatcher:
    def __init__(self, results):
        self.results = list(results)
        self.calls = 0

    async def matchmake(self, db):
        self.calls += 1
        return self.results.pop(0)


class CountingLifecycle:
    def __init__(self):
        self.calls = 0

    async def poll(self, session_factory):
        self.calls += 1
        return PollOutcome()


class Created:
    def __init__(self, match_id):
        self.id = match_id


@pytest.mark.asyncio
async def test_loop_survives_a_failing_step():
    scheduler = ArenaScheduler(None, None, matchmake_interval=0, poll_interval=0)
    calls = []

    async def step():
        calls.append(datetime.utcnow())
        if len(calls) == 1:
            raise RuntimeError("judge exploded")
        scheduler.running = False

    scheduler.running = True
    await scheduler._loop("test", 0, step)

    assert len(calls) == 2


@pytest.mark.asyncio
async def test_matchmake_tick_pairs_until_nothing_is_left(session_factory):
    matcher = ScriptedMatcher(
        [
            MatchmakeResult(match=Created("m1")),
            MatchmakeResult(match=Created("m2")),
            MatchmakeResult(message="Not enough players"),
        ]
    )
    scheduler = ArenaScheduler(matcher, CountingLifecycle())

    with patch(
        "arena.business.services.scheduler.get_session_factory",
        return_value=session_factory,
    ):
        created = await scheduler.matchmake_once()

    assert created == 2
    assert matcher.calls == 3


@pytest.mark.asyncio
async def test_start_and_stop_run_both_loops():
    lifecycle = CountingLifecycle()
    matcher = ScriptedMatcher([MatchmakeResult(message="Not enough players")] * 100)
    scheduler = ArenaScheduler(matcher, lifecycle, matchmake_interval=0.01, poll_interval=0.01)

    with patch("arena.business.services.scheduler.get_session_factory"):
        scheduler.start()
        while lifecycle.calls == 0 or matcher.calls == 0:
            await asyncio.sleep(0.01)
        await scheduler.stop()

    assert not scheduler.running
    assert scheduler._tasks == []
