"""Weekly champions: composite-scored top readers of the current week.

Computed at read time from the weekly ranking listing. Streak counts 40%
and page volume 60% of the score, each normalized to 0-100 against the
best candidate (streak against at least a full 7-day week).
"""

from __future__ import annotations

import json
import logging
from datetime import datetime

from pydantic import TypeAdapter
from redis.asyncio import Redis

from readquest.config import get_settings
from readquest.progression.calendar import local_today
from readquest.progression.ranking import compute_period_exp, list_rankings, period_key, period_start
from readquest.progression.repository import ProgressRepository
from readquest.progression.schemas import RankingPeriod, WeeklyChampion
from readquest.progression.streak import weekly_streak
from readquest.redis_client import get_redis_or_none

logger = logging.getLogger(__name__)

STREAK_WEIGHT = 0.4
PAGES_WEIGHT = 0.6
FULL_WEEK_DAYS = 7

CHAMPIONS_CACHE_PREFIX = "champions:weekly"

_champions_adapter = TypeAdapter(list[WeeklyChampion])


def composite_score(weekly_streak_days: int, weekly_pages: int, max_streak: int, max_pages: int) -> float:
    norm_streak = min(weekly_streak_days / max(max_streak, FULL_WEEK_DAYS), 1) * 100
    norm_pages = min(weekly_pages / max(max_pages, 1), 1) * 100
    return STREAK_WEIGHT * norm_streak + PAGES_WEIGHT * norm_pages


def rank_champions(candidates: list[dict], limit: int) -> list[WeeklyChampion]:
    """Score, sort and re-rank candidates.

    Each candidate dict carries user_id, display_name, weekly_streak,
    weekly_pages and weekly_exp. Candidates without a reading day this
    week are dropped before the maxima are taken.
    """
    active = [c for c in candidates if c["weekly_streak"] > 0]
    if not active:
        return []

    max_streak = max(c["weekly_streak"] for c in active)
    max_pages = max(c["weekly_pages"] for c in active)

    scored = [
        {**c, "composite_score": composite_score(c["weekly_streak"], c["weekly_pages"], max_streak, max_pages)}
        for c in active
    ]
    scored.sort(key=lambda c: c["composite_score"], reverse=True)

    return [WeeklyChampion(**c, rank=idx + 1) for idx, c in enumerate(scored[:limit])]


async def _weekly_stats(repo: ProgressRepository, user_id: str, now: datetime | None) -> dict:
    week_start = period_start(RankingPeriod.WEEKLY, now)
    today = local_today(now)

    logs = [log for log in await repo.list_reading_logs(user_id) if log.date >= week_start]
    progress = await repo.get_user_progress(user_id)

    return {
        "weekly_streak": weekly_streak((log.date for log in logs), today, week_start),
        "weekly_pages": sum(log.pages_read for log in logs),
        "weekly_exp": await compute_period_exp(repo, user_id, RankingPeriod.WEEKLY, progress, now),
    }


async def select_weekly_champions(
    repo: ProgressRepository,
    limit: int | None = None,
    candidates: int | None = None,
    now: datetime | None = None,
    redis: Redis | None = None,
) -> list[WeeklyChampion]:
    """Top ``limit`` readers of the current week.

    Reads the top ``candidates`` of the weekly ranking and rescores them.
    A candidate whose stats fail to load is logged and skipped. With a
    Redis client (passed in, or the shared pool when one is initialized)
    the result is cached briefly per ISO week.
    """
    settings = get_settings()
    if redis is None:
        redis = get_redis_or_none()
    limit = limit if limit is not None else settings.champion_limit
    candidates = candidates if candidates is not None else settings.champion_candidates

    cache_key = f"{CHAMPIONS_CACHE_PREFIX}:{period_key(RankingPeriod.WEEKLY, now)}:{limit}:{candidates}"
    if redis is not None:
        try:
            cached = await redis.get(cache_key)
            if cached:
                return _champions_adapter.validate_json(cached)
        except Exception:
            logger.debug("Cache miss for weekly champions", exc_info=True)

    rankings = await list_rankings(repo, RankingPeriod.WEEKLY, candidates)

    pool = []
    for item in rankings:
        try:
            stats = await _weekly_stats(repo, item.user_id, now)
        except Exception:
            logger.exception("Failed to load weekly stats for %s", item.user_id)
            continue
        pool.append({"user_id": item.user_id, "display_name": item.display_name, **stats})

    champions = rank_champions(pool, limit)

    if redis is not None:
        try:
            payload = json.dumps([c.model_dump(mode="json") for c in champions])
            await redis.set(cache_key, payload, ex=settings.champion_cache_ttl_seconds)
        except Exception:
            logger.debug("Failed to cache weekly champions", exc_info=True)

    return champions
