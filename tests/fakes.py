"""In-memory ProgressRepository for service and aggregation tests."""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timezone

from readquest.progression.repository import ProgressRepository
from readquest.progression.schemas import (
    BadgeAward,
    Book,
    RankingPeriod,
    RankingSnapshot,
    ReadingLogEntry,
    Review,
    UserProgress,
)


class InMemoryProgressRepository(ProgressRepository):
    """Dict-backed store. ``yield_every_call`` forces a context switch on
    every read so lost-update races surface in concurrency tests."""

    def __init__(self, yield_every_call: bool = False) -> None:
        self.yield_every_call = yield_every_call
        self.logs: list[ReadingLogEntry] = []
        self.reviews: list[Review] = []
        self.books: list[Book] = []
        self.progress: dict[str, UserProgress] = {}
        self.awards: dict[str, dict[str, datetime]] = {}
        self.snapshots: dict[tuple[str, RankingPeriod], RankingSnapshot] = {}
        self.admins: set[str] = set()
        self.display_names: dict[str, str] = {}
        self.fail_snapshot_upserts = False

    async def _tick(self) -> None:
        if self.yield_every_call:
            await asyncio.sleep(0)

    # --- Event store ---

    async def list_reading_logs(
        self, user_id: str, book_id: str | None = None, limit: int | None = None,
    ) -> list[ReadingLogEntry]:
        await self._tick()
        logs = [
            log for log in self.logs
            if log.user_id == user_id and (book_id is None or log.book_id == book_id)
        ]
        logs.sort(key=lambda log: log.date, reverse=True)
        return logs[:limit] if limit is not None else logs

    async def add_reading_log(self, entry: ReadingLogEntry) -> ReadingLogEntry:
        stored = entry.model_copy(update={"id": entry.id or str(uuid.uuid4())})
        self.logs.append(stored)
        return stored

    async def delete_reading_log(self, entry: ReadingLogEntry) -> ReadingLogEntry | None:
        for stored in self.logs:
            if stored.id == entry.id and stored.user_id == entry.user_id:
                self.logs.remove(stored)
                return stored
        return None

    async def list_reviews(self, user_id: str) -> list[Review]:
        return [review for review in self.reviews if review.user_id == user_id]

    async def add_review(self, review: Review) -> Review:
        stored = review.model_copy(update={"id": review.id or str(uuid.uuid4())})
        self.reviews.append(stored)
        return stored

    async def list_books(self, user_id: str) -> list[Book]:
        return [book for book in self.books if book.user_id == user_id]

    # --- Progress ---

    async def get_user_progress(self, user_id: str, for_update: bool = False) -> UserProgress:
        await self._tick()
        if user_id not in self.progress:
            self.progress[user_id] = UserProgress(user_id=user_id)
        return self.progress[user_id].model_copy()

    async def save_user_progress(self, user_id: str, progress: UserProgress) -> None:
        await self._tick()
        self.progress[user_id] = progress.model_copy()

    # --- Badges ---

    async def list_awarded_badges(self, user_id: str) -> list[BadgeAward]:
        return [
            BadgeAward(user_id=user_id, badge_id=badge_id, earned_at=earned_at)
            for badge_id, earned_at in self.awards.get(user_id, {}).items()
        ]

    async def record_badge_award(
        self, user_id: str, badge_id: str, earned_at: datetime | None = None,
    ) -> bool:
        awarded = self.awards.setdefault(user_id, {})
        if badge_id in awarded:
            return False
        awarded[badge_id] = earned_at or datetime.now(timezone.utc)
        return True

    # --- Rankings ---

    async def upsert_ranking_snapshot(self, user_id: str, period: RankingPeriod, total_exp: int) -> None:
        if self.fail_snapshot_upserts:
            raise ConnectionError("snapshot store unavailable")
        self.snapshots[(user_id, period)] = RankingSnapshot(
            user_id=user_id,
            period=period,
            total_exp=total_exp,
            updated_at=datetime.now(timezone.utc),
        )

    async def list_ranking_snapshots(self, period: RankingPeriod, limit: int) -> list[RankingSnapshot]:
        rows = [s for (_, p), s in self.snapshots.items() if p == period]
        rows.sort(key=lambda s: s.total_exp, reverse=True)
        return rows[:limit]

    # --- Users ---

    async def is_administrator(self, user_id: str) -> bool:
        return user_id in self.admins

    async def get_display_name(self, user_id: str) -> str:
        return self.display_names.get(user_id, user_id)

    async def list_user_ids(self) -> list[str]:
        return sorted(self.progress)
