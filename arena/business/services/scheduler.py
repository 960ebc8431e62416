import asyncio
from typing import List, Optional

from arena.business.services.judge_client import get_judge_client
from arena.business.services.match_lifecycle import MatchLifecycleManager
from arena.business.services.queue_matcher import QueueMatcher
from arena.config import Config, logger
from arena.data.repositories.database import get_session_factory
from arena.data.repositories.redis import redis_client

scheduler_logger = logger.getChild("scheduler")


class ArenaScheduler:
    """
    Drives the engine without any client calling it: one loop runs matchmake
    passes, another runs poll passes. A failing pass is logged and the loop
    carries on with the next tick.
    """

    def __init__(
        self,
        matcher: QueueMatcher,
        lifecycle: MatchLifecycleManager,
        matchmake_interval: float = Config.MATCHMAKE_INTERVAL_SECONDS,
        poll_interval: float = Config.POLL_INTERVAL_SECONDS,
    ):
        self.matcher = matcher
        self.lifecycle = lifecycle
        self.matchmake_interval = matchmake_interval
        self.poll_interval = poll_interval
        self.running = False
        self._tasks: List[asyncio.Task] = []

    async def matchmake_once(self) -> int:
        """Pair players until a pass creates nothing. Returns the number of matches."""
        session_factory = get_session_factory()
        created = 0
        while True:
            async with session_factory() as db:
                result = await self.matcher.matchmake(db)
            if result.match is None:
                break
            created += 1
            scheduler_logger.info(f"Scheduled matchmake created match {result.match.id}")
        return created

    async def poll_once(self) -> None:
        outcome = await self.lifecycle.poll(get_session_factory())
        if outcome.results:
            scheduler_logger.info(
                f"Scheduled poll over {outcome.match_count} match(es): "
                f"{len(outcome.results)} event(s), partial={outcome.partial}"
            )

    async def _loop(self, name: str, interval: float, step) -> None:
        scheduler_logger.info(f"Starting {name} loop every {interval}s")
        while self.running:
            try:
                await step()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                scheduler_logger.error(f"Error in {name} loop: {str(e)}", exc_info=True)
            await asyncio.sleep(interval)

    def start(self) -> None:
        if self.running:
            return
        self.running = True
        self._tasks = [
            asyncio.create_task(
                self._loop("matchmake", self.matchmake_interval, self.matchmake_once)
            ),
            asyncio.create_task(self._loop("poll", self.poll_interval, self.poll_once)),
        ]

    async def stop(self) -> None:
        self.running = False
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        scheduler_logger.info("Scheduler stopped")


_scheduler: Optional[ArenaScheduler] = None


def get_scheduler() -> ArenaScheduler:
    global _scheduler
    if _scheduler is None:
        judge_client = get_judge_client()
        _scheduler = ArenaScheduler(
            QueueMatcher(judge_client, redis_client),
            MatchLifecycleManager(judge_client),
        )
    return _scheduler


async def run_scheduler():
    """Run both loops in a standalone worker process."""
    await redis_client.connect()
    scheduler = get_scheduler()
    scheduler.start()
    try:
        await asyncio.gather(*scheduler._tasks)
    finally:
        await scheduler.stop()
        await redis_client.close()


def main():
    asyncio.run(run_scheduler())


if __name__ == "__main__":
    main()
