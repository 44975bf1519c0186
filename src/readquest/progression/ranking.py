"""Period rankings re-derived from the raw reading log.

Each (user, period) pair has exactly one snapshot row holding the EXP the
user earned inside the period window. Snapshots are recomputed from
scratch, so refreshing twice with the same inputs stores the same value.
"""

from __future__ import annotations

import logging
from datetime import date, datetime

from readquest.config import get_settings
from readquest.progression.calendar import get_monday, get_week_iso, local_today, to_local_date
from readquest.progression.repository import ProgressRepository
from readquest.progression.schemas import RankingItem, RankingPeriod, UserProgress

logger = logging.getLogger(__name__)

USER_RANKING_SCAN_LIMIT = 1000


def period_start(period: RankingPeriod | str, now: datetime | None = None) -> date | None:
    """First local day of the window for ``period``; None for all-time."""
    period = RankingPeriod(period)
    today = local_today(now)

    if period is RankingPeriod.DAILY:
        return today
    elif period is RankingPeriod.WEEKLY:
        return get_monday(today)
    elif period is RankingPeriod.MONTHLY:
        return today.replace(day=1)
    return None


def period_key(period: RankingPeriod | str, now: datetime | None = None) -> str:
    """Human-readable window id, e.g. '2026-10-19', '2026-W43', '2026-10'."""
    period = RankingPeriod(period)
    today = local_today(now)
    if period is RankingPeriod.DAILY:
        return today.isoformat()
    elif period is RankingPeriod.WEEKLY:
        return get_week_iso(today)
    elif period is RankingPeriod.MONTHLY:
        return today.strftime("%Y-%m")
    return "all-time"


async def compute_period_exp(
    repo: ProgressRepository,
    user_id: str,
    period: RankingPeriod | str,
    progress: UserProgress,
    now: datetime | None = None,
) -> int:
    """EXP the user earned inside the period window.

    All-time is the user's total EXP. Other periods sum ``exp_gained`` of
    logs dated on/after the window start plus the review bonus for each
    review written on/after it. Badge EXP only counts toward all-time.
    """
    period = RankingPeriod(period)
    start = period_start(period, now)
    if start is None:
        return progress.exp

    review_exp = get_settings().review_exp
    logs = await repo.list_reading_logs(user_id)
    reviews = await repo.list_reviews(user_id)

    exp = sum(log.exp_gained for log in logs if log.date >= start)
    exp += review_exp * sum(1 for review in reviews if to_local_date(review.created_at) >= start)
    return exp


async def upsert_snapshot(
    repo: ProgressRepository, user_id: str, period: RankingPeriod | str, total_exp: int,
) -> None:
    await repo.upsert_ranking_snapshot(user_id, RankingPeriod(period), max(0, total_exp))


async def refresh_user_rankings(
    repo: ProgressRepository,
    user_id: str,
    now: datetime | None = None,
) -> dict[RankingPeriod, int]:
    """Recompute and store every period snapshot for one user.

    Periods are independent: a failing period is logged and skipped.
    Returns the stored totals by period.
    """
    progress = await repo.get_user_progress(user_id)
    totals: dict[RankingPeriod, int] = {}

    for period in RankingPeriod:
        try:
            total = await compute_period_exp(repo, user_id, period, progress, now)
            await upsert_snapshot(repo, user_id, period, total)
            totals[period] = total
        except Exception:
            logger.exception("Ranking refresh failed for %s (%s)", user_id, period.value)

    return totals


async def refresh_all_rankings(repo: ProgressRepository, now: datetime | None = None) -> int:
    """Recompute snapshots for every user. Returns the number of users refreshed."""
    processed = 0
    for user_id in await repo.list_user_ids():
        try:
            await refresh_user_rankings(repo, user_id, now)
            processed += 1
        except Exception:
            logger.exception("Skipping ranking refresh for %s", user_id)

    logger.info("Ranking refresh complete: processed %d users", processed)
    return processed


async def list_rankings(
    repo: ProgressRepository,
    period: RankingPeriod | str,
    limit: int | None = None,
) -> list[RankingItem]:
    """Ranked listing for a period, administrators excluded.

    Ties keep the order the store returned them in and still get
    distinct sequential ranks.
    """
    period = RankingPeriod(period)
    if limit is None:
        limit = get_settings().ranking_limit
    snapshots = await repo.list_ranking_snapshots(period, limit)

    eligible = [s for s in snapshots if not await repo.is_administrator(s.user_id)]
    eligible.sort(key=lambda s: s.total_exp, reverse=True)

    items = []
    for idx, snapshot in enumerate(eligible):
        items.append(RankingItem(
            user_id=snapshot.user_id,
            display_name=await repo.get_display_name(snapshot.user_id),
            total_exp=snapshot.total_exp,
            rank=idx + 1,
        ))
    return items


async def get_user_ranking(
    repo: ProgressRepository,
    user_id: str,
    period: RankingPeriod | str,
) -> RankingItem | None:
    """A user's entry in the period listing, or None if unranked."""
    for item in await list_rankings(repo, period, USER_RANKING_SCAN_LIMIT):
        if item.user_id == user_id:
            return item
    return None

