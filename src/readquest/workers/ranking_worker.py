"""arq worker that keeps ranking snapshots fresh.

Two entry points:
- ``refresh_rankings_for_user``: enqueued after every progress write
- ``refresh_all_rankings_job``: periodic full recomputation, which also
  rolls snapshots over when a day/week/month window closes
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from arq import cron
from arq.connections import RedisSettings

from readquest.config import get_settings
from readquest.database import close_db, get_session_factory, init_db
from readquest.db.repository import SqlAlchemyProgressRepository
from readquest.log_setup import setup_logging
from readquest.progression.ranking import refresh_all_rankings, refresh_user_rankings

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _repository() -> AsyncIterator[SqlAlchemyProgressRepository]:
    async with get_session_factory()() as session:
        yield SqlAlchemyProgressRepository(session)


async def startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Initialize logging and the database pool on worker startup."""
    settings = get_settings()
    setup_logging(settings)
    await init_db(settings.database_url, pool_size=5)
    logger.info("Ranking worker started (refresh every %d min)", settings.ranking_refresh_minutes)


async def shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    """Clean up on worker shutdown."""
    await close_db()
    logger.info("Ranking worker shut down")


async def refresh_rankings_for_user(ctx: dict, user_id: str) -> dict[str, int]:  # type: ignore[type-arg]
    """Recompute every period snapshot for one user."""
    async with _repository() as repo:
        totals = await refresh_user_rankings(repo, user_id)
    return {period.value: total for period, total in totals.items()}


async def refresh_all_rankings_job(ctx: dict) -> int:  # type: ignore[type-arg]
    """Recompute snapshots for every user with progress."""
    async with _repository() as repo:
        return await refresh_all_rankings(repo)


def _refresh_minutes() -> set[int]:
    step = max(1, min(get_settings().ranking_refresh_minutes, 60))
    return set(range(0, 60, step))


class WorkerSettings:
    """arq worker settings for ranking refreshes."""

    functions = [refresh_rankings_for_user, refresh_all_rankings_job]
    cron_jobs = [
        cron(refresh_all_rankings_job, minute=_refresh_minutes(), run_at_startup=True),
    ]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = RedisSettings.from_dsn(get_settings().arq_redis_url)
    max_jobs = 10
    job_timeout = get_settings().worker_job_timeout_seconds
    # No stored results, so the per-user job id only dedupes while queued
    keep_result = 0
