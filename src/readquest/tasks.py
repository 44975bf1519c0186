"""Fire-and-forget background work with failure logging.

Work scheduled here runs after the caller has returned. Failures are
logged and never reach the code path that scheduled the task.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Coroutine
from datetime import datetime
from typing import Any

import structlog
from arq import create_pool
from arq.connections import ArqRedis, RedisSettings

from readquest.progression.ranking import refresh_user_rankings
from readquest.progression.repository import ProgressRepository

logger = structlog.get_logger()


class TaskRunner:
    """Tracks background asyncio tasks so they are not garbage collected
    mid-flight and can be drained on shutdown."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()
        self.failures = 0

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(self, name: str, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.info("background_task_cancelled", task=task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            self.failures += 1
            logger.error("background_task_failed", task=task.get_name(), exc_info=exc)

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for every scheduled task; cancel whatever is left after ``timeout``."""
        if not self._tasks:
            return
        _done, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning("background_tasks_cancelled", count=len(pending))


class RankingScheduler(ABC):
    """Queues a recomputation of one user's ranking snapshots."""

    @abstractmethod
    async def schedule(self, user_id: str, now: datetime | None = None) -> None:
        ...


class InProcessRankingScheduler(RankingScheduler):
    """Runs the refresh as a background task in this process.

    The repository must tolerate use from a concurrent task; a
    session-bound SQL repository should go through ``ArqRankingScheduler``.
    """

    def __init__(self, repo: ProgressRepository, runner: TaskRunner) -> None:
        self.repo = repo
        self.runner = runner

    async def schedule(self, user_id: str, now: datetime | None = None) -> None:
        self.runner.spawn(f"rankings:{user_id}", refresh_user_rankings(self.repo, user_id, now))


class ArqRankingScheduler(RankingScheduler):
    """Enqueues the refresh on the ranking worker's arq queue."""

    def __init__(self, pool: ArqRedis) -> None:
        self.pool = pool

    async def schedule(self, user_id: str, now: datetime | None = None) -> None:
        # The worker computes windows at run time; ``now`` is not forwarded
        await self.pool.enqueue_job(
            "refresh_rankings_for_user",
            user_id,
            _job_id=f"rankings:{user_id}",
        )

    @classmethod
    async def connect(cls, redis_url: str) -> ArqRankingScheduler:
        """Open an arq pool on ``redis_url`` (see ``Settings.arq_redis_url``)."""
        return cls(await create_pool(RedisSettings.from_dsn(redis_url)))
