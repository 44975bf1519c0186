"""Badge rules, evaluation and awarding.

``find_new_badges`` is a pure filter over the rule set. ``award_badge``
is the side-effecting half: it records the award (idempotent on
user/badge) and then grants the badge EXP.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone

from readquest.progression.calendar import local_today, month_bounds
from readquest.progression.experience import apply_exp
from readquest.progression.locks import UserLocks
from readquest.progression.repository import ProgressRepository
from readquest.progression.schemas import (
    ActivityHistory,
    BadgeCondition,
    BadgeDefinition,
    BadgeProgress,
    UserProgress,
)

logger = logging.getLogger(__name__)

BADGE_DEFINITIONS: list[BadgeDefinition] = [
    BadgeDefinition(
        id="first_book",
        name="First Step",
        description="Add your first book",
        condition=BadgeCondition.FIRST_BOOK,
        threshold=1,
        exp_reward=20,
        order=1,
    ),
    BadgeDefinition(
        id="reading_habit_7",
        name="Reading Habit",
        description="Read 7 days in a row",
        condition=BadgeCondition.STREAK_DAYS,
        threshold=7,
        exp_reward=50,
        order=2,
    ),
    BadgeDefinition(
        id="reading_habit_30",
        name="Bookworm",
        description="Read 30 days in a row",
        condition=BadgeCondition.STREAK_DAYS,
        threshold=30,
        exp_reward=100,
        order=3,
    ),
    BadgeDefinition(
        id="reading_habit_100",
        name="Unstoppable",
        description="Read 100 days in a row",
        condition=BadgeCondition.STREAK_DAYS,
        threshold=100,
        exp_reward=200,
        order=4,
    ),
    BadgeDefinition(
        id="first_completed",
        name="Finisher",
        description="Finish your first book",
        condition=BadgeCondition.BOOKS_COMPLETED,
        threshold=1,
        exp_reward=50,
        order=5,
    ),
    BadgeDefinition(
        id="many_books_10",
        name="Voracious Reader",
        description="Finish 10 books",
        condition=BadgeCondition.BOOKS_COMPLETED,
        threshold=10,
        exp_reward=150,
        order=6,
    ),
    BadgeDefinition(
        id="first_review",
        name="Critic",
        description="Write your first review",
        condition=BadgeCondition.REVIEWS_WRITTEN,
        threshold=1,
        exp_reward=30,
        order=7,
    ),
    BadgeDefinition(
        id="pages_month_500",
        name="Enthusiast",
        description="Read 500 pages in one month",
        condition=BadgeCondition.PAGES_IN_MONTH,
        threshold=500,
        exp_reward=100,
        order=8,
    ),
    BadgeDefinition(
        id="pages_month_1000",
        name="Marathoner",
        description="Read 1000 pages in one month",
        condition=BadgeCondition.PAGES_IN_MONTH,
        threshold=1000,
        exp_reward=200,
        order=9,
    ),
    BadgeDefinition(
        id="level_10",
        name="Master",
        description="Reach level 10",
        condition=BadgeCondition.LEVEL_REACHED,
        threshold=10,
        exp_reward=300,
        order=10,
    ),
]


def _rules(definitions: list[BadgeDefinition] | None) -> list[BadgeDefinition]:
    rules = definitions if definitions is not None else BADGE_DEFINITIONS
    return sorted(rules, key=lambda b: b.order)


def get_badge(badge_id: str, definitions: list[BadgeDefinition] | None = None) -> BadgeDefinition | None:
    for badge in _rules(definitions):
        if badge.id == badge_id:
            return badge
    return None


def pages_in_month(history: ActivityHistory, today: date) -> int:
    first, last = month_bounds(today)
    return sum(log.pages_read for log in history.reading_logs if first <= log.date <= last)


def condition_value(
    condition: BadgeCondition,
    progress: UserProgress,
    history: ActivityHistory,
    today: date,
) -> int:
    """The user's current value for a badge condition."""
    if condition is BadgeCondition.FIRST_BOOK:
        return len(history.books)
    elif condition is BadgeCondition.STREAK_DAYS:
        return progress.current_streak
    elif condition is BadgeCondition.BOOKS_COMPLETED:
        return sum(1 for book in history.books if book.status == "completed")
    elif condition is BadgeCondition.REVIEWS_WRITTEN:
        return len(history.reviews)
    elif condition is BadgeCondition.LEVEL_REACHED:
        return progress.level
    elif condition is BadgeCondition.PAGES_IN_MONTH:
        return pages_in_month(history, today)
    raise ValueError(f"Unknown badge condition: {condition}")


def check_condition(
    badge: BadgeDefinition,
    progress: UserProgress,
    history: ActivityHistory,
    today: date,
) -> bool:
    return condition_value(badge.condition, progress, history, today) >= badge.threshold


def find_new_badges(
    progress: UserProgress,
    history: ActivityHistory,
    awarded_badge_ids: list[str] | set[str],
    definitions: list[BadgeDefinition] | None = None,
    today: date | None = None,
) -> list[BadgeDefinition]:
    """Badges not yet awarded whose condition now holds, in rule order."""
    if today is None:
        today = local_today()
    awarded = set(awarded_badge_ids)

    return [
        badge
        for badge in _rules(definitions)
        if badge.id not in awarded and check_condition(badge, progress, history, today)
    ]


def badge_progress(
    progress: UserProgress,
    history: ActivityHistory,
    awarded_badge_ids: list[str] | set[str],
    definitions: list[BadgeDefinition] | None = None,
    today: date | None = None,
) -> list[BadgeProgress]:
    """Every badge with the user's progress toward it."""
    if today is None:
        today = local_today()
    awarded = set(awarded_badge_ids)

    items = []
    for badge in _rules(definitions):
        earned = badge.id in awarded
        current = condition_value(badge.condition, progress, history, today)
        if earned or badge.threshold <= 0:
            percent = 100
        else:
            percent = min(100, int(current / badge.threshold * 100))
        items.append(BadgeProgress(
            badge=badge,
            earned=earned,
            current=current,
            target=badge.threshold,
            percent=percent,
        ))
    return items


async def award_badge(
    repo: ProgressRepository,
    user_id: str,
    badge: BadgeDefinition,
    locks: UserLocks | None = None,
    earned_at: datetime | None = None,
) -> bool:
    """Award a badge and grant its EXP.

    Returns True if awarded, False if the user already had it. The award
    row and the EXP grant are two writes: if the grant fails after the
    award was recorded the error is logged and re-raised, and the EXP is
    not retried later.
    """
    if earned_at is None:
        earned_at = datetime.now(timezone.utc)

    if not await repo.record_badge_award(user_id, badge.id, earned_at):
        return False

    if badge.exp_reward == 0:
        return True

    try:
        if locks is None:
            await _grant_badge_exp(repo, user_id, badge)
        else:
            async with locks.hold(user_id):
                await _grant_badge_exp(repo, user_id, badge)
    except Exception:
        logger.exception(
            "Badge %s recorded for %s but EXP grant of %d failed",
            badge.id, user_id, badge.exp_reward,
        )
        raise

    logger.info("Awarded badge %s to %s (+%d EXP)", badge.id, user_id, badge.exp_reward)
    return True


async def _grant_badge_exp(repo: ProgressRepository, user_id: str, badge: BadgeDefinition) -> None:
    progress = await repo.get_user_progress(user_id, for_update=True)
    apply_exp(progress, badge.exp_reward)
    await repo.save_user_progress(user_id, progress)
