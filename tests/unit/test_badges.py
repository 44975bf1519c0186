"""Badge rule evaluation and awarding."""

from __future__ import annotations

import asyncio
from datetime import date, datetime, timezone

import pytest

from readquest.progression.badges import (
    BADGE_DEFINITIONS,
    award_badge,
    badge_progress,
    condition_value,
    find_new_badges,
    get_badge,
    pages_in_month,
)
from readquest.progression.locks import UserLocks
from readquest.progression.schemas import (
    ActivityHistory,
    BadgeCondition,
    BadgeDefinition,
    Book,
    ReadingLogEntry,
    Review,
    UserProgress,
)

TODAY = date(2024, 1, 20)


def _log(day: date, pages: int) -> ReadingLogEntry:
    return ReadingLogEntry(user_id="u1", book_id="b1", date=day, pages_read=pages)


def _ids(badges: list[BadgeDefinition]) -> list[str]:
    return [badge.id for badge in badges]


class TestDefinitions:
    def test_ten_stock_badges_with_unique_ids(self):
        ids = _ids(BADGE_DEFINITIONS)
        assert len(ids) == 10
        assert len(set(ids)) == 10

    def test_get_badge(self):
        assert get_badge("reading_habit_7").threshold == 7
        assert get_badge("nope") is None


class TestConditionValue:
    def test_every_condition(self):
        progress = UserProgress(user_id="u1", exp=1200, current_streak=4)
        history = ActivityHistory(
            books=[
                Book(id="b1", user_id="u1", status="completed"),
                Book(id="b2", user_id="u1", status="reading"),
            ],
            reviews=[Review(user_id="u1", book_id="b1", created_at=datetime(2024, 1, 3, tzinfo=timezone.utc))],
            reading_logs=[_log(date(2024, 1, 2), 40), _log(date(2023, 12, 31), 99)],
        )
        assert condition_value(BadgeCondition.FIRST_BOOK, progress, history, TODAY) == 2
        assert condition_value(BadgeCondition.STREAK_DAYS, progress, history, TODAY) == 4
        assert condition_value(BadgeCondition.BOOKS_COMPLETED, progress, history, TODAY) == 1
        assert condition_value(BadgeCondition.REVIEWS_WRITTEN, progress, history, TODAY) == 1
        assert condition_value(BadgeCondition.LEVEL_REACHED, progress, history, TODAY) == 5
        assert condition_value(BadgeCondition.PAGES_IN_MONTH, progress, history, TODAY) == 40

    def test_pages_in_month_ignores_other_months(self):
        history = ActivityHistory(reading_logs=[
            _log(date(2024, 1, 1), 300),
            _log(date(2024, 1, 31), 250),
            _log(date(2024, 2, 1), 1000),
        ])
        assert pages_in_month(history, TODAY) == 550


class TestFindNewBadges:
    def test_streak_badge_at_threshold(self):
        progress = UserProgress(user_id="u1", current_streak=7)
        assert _ids(find_new_badges(progress, ActivityHistory(), [], today=TODAY)) == ["reading_habit_7"]

    def test_already_awarded_is_not_returned(self):
        progress = UserProgress(user_id="u1", current_streak=7)
        assert find_new_badges(progress, ActivityHistory(), ["reading_habit_7"], today=TODAY) == []

    def test_evaluation_is_idempotent(self):
        progress = UserProgress(user_id="u1", current_streak=30)
        history = ActivityHistory(books=[Book(id="b1", user_id="u1")])
        first = find_new_badges(progress, history, [], today=TODAY)
        second = find_new_badges(progress, history, _ids(first), today=TODAY)
        assert _ids(first) == ["first_book", "reading_habit_7", "reading_habit_30"]
        assert second == []

    def test_results_follow_rule_order(self):
        progress = UserProgress(user_id="u1", current_streak=7)
        history = ActivityHistory(
            books=[Book(id="b1", user_id="u1", status="completed")],
            reviews=[Review(user_id="u1", book_id="b1", created_at=datetime(2024, 1, 3, tzinfo=timezone.utc))],
        )
        assert _ids(find_new_badges(progress, history, [], today=TODAY)) == [
            "first_book", "reading_habit_7", "first_completed", "first_review",
        ]

    def test_custom_rules(self):
        rules = [BadgeDefinition(
            id="pages_3", name="Sampler", condition=BadgeCondition.PAGES_IN_MONTH, threshold=3, exp_reward=5,
        )]
        history = ActivityHistory(reading_logs=[_log(TODAY, 3)])
        progress = UserProgress(user_id="u1")
        assert _ids(find_new_badges(progress, history, [], rules, TODAY)) == ["pages_3"]
        assert find_new_badges(progress, history, [], [], TODAY) == []


class TestBadgeProgress:
    def test_partial_and_earned(self):
        progress = UserProgress(user_id="u1", current_streak=3)
        items = {item.badge.id: item for item in badge_progress(progress, ActivityHistory(), ["first_book"], today=TODAY)}
        assert items["reading_habit_7"].percent == 42
        assert items["reading_habit_7"].earned is False
        assert items["reading_habit_7"].current == 3
        assert items["first_book"].earned is True
        assert items["first_book"].percent == 100

    def test_percent_capped(self):
        progress = UserProgress(user_id="u1", current_streak=50)
        items = {item.badge.id: item for item in badge_progress(progress, ActivityHistory(), [], today=TODAY)}
        assert items["reading_habit_30"].percent == 100


class TestAwardBadge:
    @pytest.mark.asyncio
    async def test_award_grants_exp_once(self, repo):
        badge = get_badge("reading_habit_7")
        assert await award_badge(repo, "u1", badge) is True
        assert await award_badge(repo, "u1", badge) is False

        progress = await repo.get_user_progress("u1")
        assert progress.exp == badge.exp_reward
        assert [award.badge_id for award in await repo.list_awarded_badges("u1")] == ["reading_habit_7"]

    @pytest.mark.asyncio
    async def test_concurrent_awards_grant_exp_once(self, repo):
        badge = get_badge("level_10")
        locks = UserLocks()
        results = await asyncio.gather(*(award_badge(repo, "u1", badge, locks) for _ in range(5)))

        assert sorted(results) == [False, False, False, False, True]
        assert (await repo.get_user_progress("u1")).exp == 300

    @pytest.mark.asyncio
    async def test_award_can_level_up(self, repo):
        await repo.save_user_progress("u1", UserProgress(user_id="u1", exp=90))
        await award_badge(repo, "u1", get_badge("first_book"))
        progress = await repo.get_user_progress("u1")
        assert progress.exp == 110
        assert progress.level == 2

    @pytest.mark.asyncio
    async def test_failed_exp_grant_is_raised_after_recording(self, repo, monkeypatch):
        async def broken_save(user_id, progress):
            raise ConnectionError("db down")

        monkeypatch.setattr(repo, "save_user_progress", broken_save)
        with pytest.raises(ConnectionError):
            await award_badge(repo, "u1", get_badge("first_review"))

        assert [award.badge_id for award in await repo.list_awarded_badges("u1")] == ["first_review"]
