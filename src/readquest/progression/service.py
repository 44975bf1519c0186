"""Progression orchestration: what happens when a user logs reading or writes a review.

The EXP/level/streak write is the only part a caller waits on and the
only part allowed to fail the request. Badge evaluation runs right
after it and ranking snapshots are refreshed in the background; both
log their failures and move on.
"""

from __future__ import annotations

from datetime import datetime, timezone

import structlog

from readquest.config import Settings, get_settings
from readquest.progression.badges import award_badge, find_new_badges
from readquest.progression.calendar import local_today
from readquest.progression.experience import apply_exp, exp_from_pages
from readquest.progression.locks import UserLocks
from readquest.progression.repository import ProgressRepository
from readquest.progression.schemas import (
    ActivityHistory,
    BadgeDefinition,
    LogSubmissionResult,
    ReadingLogEntry,
    ReadingLogSubmission,
    Review,
    UserProgress,
)
from readquest.progression.streak import calculate_streak, update_streak
from readquest.tasks import RankingScheduler

logger = structlog.get_logger()


class ProgressionService:
    """Applies reading activity to a user's progression state."""

    def __init__(
        self,
        repo: ProgressRepository,
        rankings: RankingScheduler | None = None,
        locks: UserLocks | None = None,
        definitions: list[BadgeDefinition] | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.repo = repo
        self.rankings = rankings
        self.locks = locks or UserLocks()
        self.definitions = definitions
        self.settings = settings or get_settings()

    # ------------------------------------------------------------------
    # Reading logs
    # ------------------------------------------------------------------

    async def submit_reading_log(
        self,
        submission: ReadingLogSubmission,
        now: datetime | None = None,
    ) -> LogSubmissionResult:
        """Store a reading log and apply its EXP, streak and page totals.

        The streak bonus is paid once per calendar day: a second log on the
        same day earns page EXP only.
        """
        user_id = submission.user_id
        pages = submission.pages_read or 0

        async with self.locks.hold(user_id):
            progress = await self.repo.get_user_progress(user_id, for_update=True)
            streak = update_streak(
                submission.date,
                progress.current_streak,
                progress.longest_streak,
                progress.last_reading_date,
            )
            bonus_days = streak.current_streak if streak.advanced else 0
            exp = exp_from_pages(pages, bonus_days, self.settings.streak_bonus_per_day)

            entry = await self.repo.add_reading_log(ReadingLogEntry(
                user_id=user_id,
                book_id=submission.book_id,
                date=submission.date,
                start_page=submission.start_page,
                end_page=submission.end_page,
                pages_read=pages,
                exp_gained=exp,
                completes_book=submission.completes_book,
                created_at=now or datetime.now(timezone.utc),
            ))

            leveled_up = apply_exp(progress, exp)
            progress.current_streak = streak.current_streak
            progress.longest_streak = streak.longest_streak
            progress.last_reading_date = streak.last_reading_date
            progress.total_pages_read += pages
            if submission.completes_book:
                progress.total_books_completed += 1

            await self.repo.save_user_progress(user_id, progress)

        logger.info(
            "reading_log_applied",
            user_id=user_id,
            pages=pages,
            exp=exp,
            streak=progress.current_streak,
            level=progress.level,
            leveled_up=leveled_up,
        )

        new_badges = await self.check_badges(user_id, now)
        await self._schedule_rankings(user_id, now)

        if new_badges:
            progress = await self.repo.get_user_progress(user_id)
        return LogSubmissionResult(
            entry=entry,
            progress=progress,
            exp_gained=exp,
            leveled_up=leveled_up,
            new_badges=new_badges,
        )

    async def retract_reading_log(
        self,
        entry: ReadingLogEntry,
        now: datetime | None = None,
    ) -> UserProgress:
        """Delete a log and take back what it contributed.

        The stored row, not ``entry``, decides what is taken back: EXP,
        pages and a completed book are subtracted (never below zero) and
        the streak is re-derived from the remaining logs. Badges stay
        awarded. Raises ValueError if the log no longer exists.
        """
        user_id = entry.user_id

        async with self.locks.hold(user_id):
            progress = await self.repo.get_user_progress(user_id, for_update=True)
            removed = await self.repo.delete_reading_log(entry)
            if removed is None:
                msg = f"Reading log {entry.id} not found for user {user_id}"
                raise ValueError(msg)

            apply_exp(progress, -removed.exp_gained)
            progress.total_pages_read = max(0, progress.total_pages_read - removed.pages_read)
            if removed.completes_book:
                progress.total_books_completed = max(0, progress.total_books_completed - 1)
            remaining = await self.repo.list_reading_logs(user_id)
            self._apply_derived_streak(progress, remaining, now)

            await self.repo.save_user_progress(user_id, progress)

        logger.info("reading_log_retracted", user_id=user_id, exp=removed.exp_gained, pages=removed.pages_read)
        await self._schedule_rankings(user_id, now)
        return progress

    # ------------------------------------------------------------------
    # Reviews
    # ------------------------------------------------------------------

    async def submit_review(self, review: Review, now: datetime | None = None) -> UserProgress:
        """Store a review and grant the review bonus."""
        user_id = review.user_id

        async with self.locks.hold(user_id):
            progress = await self.repo.get_user_progress(user_id, for_update=True)
            await self.repo.add_review(review)
            leveled_up = apply_exp(progress, self.settings.review_exp)
            await self.repo.save_user_progress(user_id, progress)

        logger.info(
            "review_applied",
            user_id=user_id,
            exp=self.settings.review_exp,
            level=progress.level,
            leveled_up=leveled_up,
        )

        if await self.check_badges(user_id, now):
            progress = await self.repo.get_user_progress(user_id)
        await self._schedule_rankings(user_id, now)
        return progress

    # ------------------------------------------------------------------
    # Badges
    # ------------------------------------------------------------------

    async def check_badges(self, user_id: str, now: datetime | None = None) -> list[BadgeDefinition]:
        """Evaluate and award every newly satisfied badge.

        Awards can push the user over a level threshold, so evaluation is
        repeated until a pass awards nothing. Never raises.
        """
        today = local_today(now)
        earned: list[BadgeDefinition] = []

        try:
            history = ActivityHistory(
                books=await self.repo.list_books(user_id),
                reviews=await self.repo.list_reviews(user_id),
                reading_logs=await self.repo.list_reading_logs(user_id),
            )
        except Exception:
            logger.error("badge_history_load_failed", user_id=user_id, exc_info=True)
            return earned

        while True:
            try:
                progress = await self.repo.get_user_progress(user_id)
                awarded_ids = [award.badge_id for award in await self.repo.list_awarded_badges(user_id)]
                candidates = find_new_badges(progress, history, awarded_ids, self.definitions, today)
            except Exception:
                logger.error("badge_evaluation_failed", user_id=user_id, exc_info=True)
                break

            awarded_this_pass = 0
            for badge in candidates:
                try:
                    if await award_badge(self.repo, user_id, badge, self.locks):
                        earned.append(badge)
                        awarded_this_pass += 1
                except Exception:
                    logger.error("badge_award_failed", user_id=user_id, badge_id=badge.id, exc_info=True)

            if awarded_this_pass == 0:
                break

        if earned:
            logger.info("badges_awarded", user_id=user_id, badges=[b.id for b in earned])
        return earned

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def reconcile_progress(self, user_id: str, now: datetime | None = None) -> UserProgress:
        """Re-derive page total and streak fields from the full log history.

        EXP is left as stored: it also holds review and badge grants whose
        history is not replayed here.
        """
        async with self.locks.hold(user_id):
            # Lock the row before reading logs
            progress = await self.repo.get_user_progress(user_id, for_update=True)
            logs = await self.repo.list_reading_logs(user_id)
            progress.total_pages_read = sum(log.pages_read for log in logs)
            self._apply_derived_streak(progress, logs, now)
            await self.repo.save_user_progress(user_id, progress)

        logger.info(
            "progress_reconciled",
            user_id=user_id,
            pages=progress.total_pages_read,
            streak=progress.current_streak,
            longest=progress.longest_streak,
        )
        await self._schedule_rankings(user_id, now)
        return progress

    def _apply_derived_streak(
        self,
        progress: UserProgress,
        logs: list[ReadingLogEntry],
        now: datetime | None,
    ) -> None:
        state = calculate_streak((log.date for log in logs), local_today(now))
        progress.current_streak = state.current_streak
        progress.longest_streak = state.longest_streak
        progress.last_reading_date = state.last_reading_date

    async def _schedule_rankings(self, user_id: str, now: datetime | None) -> None:
        if self.rankings is None:
            return
        try:
            await self.rankings.schedule(user_id, now)
        except Exception:
            logger.error("ranking_schedule_failed", user_id=user_id, exc_info=True)
