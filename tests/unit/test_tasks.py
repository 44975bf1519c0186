"""Background task runner and ranking schedulers."""

from __future__ import annotations

import asyncio

import pytest

from readquest.progression.locks import UserLocks
from readquest.progression.schemas import RankingPeriod, UserProgress
from readquest.tasks import ArqRankingScheduler, InProcessRankingScheduler, TaskRunner

pytestmark = pytest.mark.asyncio


class RecordingPool:
    def __init__(self) -> None:
        self.jobs: list[tuple] = []

    async def enqueue_job(self, function: str, *args, **kwargs):
        self.jobs.append((function, args, kwargs))


class TestTaskRunner:
    async def test_failure_is_logged_not_raised(self):
        runner = TaskRunner()

        async def boom():
            raise RuntimeError("refresh failed")

        runner.spawn("boom", boom())
        await runner.drain(timeout=1)

        assert runner.failures == 1
        assert runner.pending == 0

    async def test_drain_cancels_stragglers(self):
        runner = TaskRunner()
        task = runner.spawn("slow", asyncio.sleep(10))
        await runner.drain(timeout=0.01)

        assert task.cancelled()
        assert runner.pending == 0
        assert runner.failures == 0

    async def test_drain_with_nothing_pending(self):
        await TaskRunner().drain()


class TestSchedulers:
    async def test_in_process_refresh(self, repo):
        repo.progress["u1"] = UserProgress(user_id="u1", exp=42)
        runner = TaskRunner()
        await InProcessRankingScheduler(repo, runner).schedule("u1")
        await runner.drain(timeout=1)

        assert repo.snapshots[("u1", RankingPeriod.ALL_TIME)].total_exp == 42

    async def test_arq_enqueue_uses_per_user_job_id(self):
        pool = RecordingPool()
        await ArqRankingScheduler(pool).schedule("u1")

        assert pool.jobs == [("refresh_rankings_for_user", ("u1",), {"_job_id": "rankings:u1"})]


class TestUserLocks:
    async def test_serializes_same_user(self):
        locks = UserLocks()
        order: list[str] = []

        async def worker(name: str) -> None:
            async with locks.hold("u1"):
                order.append(f"{name}:in")
                await asyncio.sleep(0)
                order.append(f"{name}:out")

        await asyncio.gather(worker("a"), worker("b"))
        assert order == ["a:in", "a:out", "b:in", "b:out"]

    async def test_locks_released_after_use(self):
        locks = UserLocks()
        async with locks.hold("u1"):
            assert len(locks) == 1
        assert len(locks) == 0

    async def test_released_on_error(self):
        locks = UserLocks()
        with pytest.raises(ValueError):
            async with locks.hold("u1"):
                raise ValueError("bad")
        assert len(locks) == 0
