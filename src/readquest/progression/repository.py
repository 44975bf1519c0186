"""Storage contract consumed by the progression components.

Any durable store can back this interface; the shipped adapter is
``readquest.db.repository.SqlAlchemyProgressRepository``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from readquest.progression.schemas import (
    BadgeAward,
    Book,
    RankingPeriod,
    RankingSnapshot,
    ReadingLogEntry,
    Review,
    UserProgress,
)


class ProgressRepository(ABC):
    """Abstract read/write access to progression data."""

    # --- Event store ---

    @abstractmethod
    async def list_reading_logs(
        self, user_id: str, book_id: str | None = None, limit: int | None = None,
    ) -> list[ReadingLogEntry]:
        """Reading logs for a user, newest first."""
        ...

    @abstractmethod
    async def add_reading_log(self, entry: ReadingLogEntry) -> ReadingLogEntry:
        """Persist a log; returns it with its storage id assigned."""
        ...

    @abstractmethod
    async def delete_reading_log(self, entry: ReadingLogEntry) -> ReadingLogEntry | None:
        """Delete the user's log with ``entry.id``.

        Returns the stored row as it was before deletion, or None if no
        such log exists (already deleted, or owned by another user).
        """
        ...

    @abstractmethod
    async def list_reviews(self, user_id: str) -> list[Review]:
        ...

    @abstractmethod
    async def add_review(self, review: Review) -> Review:
        ...

    @abstractmethod
    async def list_books(self, user_id: str) -> list[Book]:
        ...

    # --- Progress ---

    @abstractmethod
    async def get_user_progress(self, user_id: str, for_update: bool = False) -> UserProgress:
        """Get (or create with zero values) a user's progress.

        ``for_update`` asks the store to hold a write lock on the row until
        the next ``save_user_progress`` for the same user.
        """
        ...

    @abstractmethod
    async def save_user_progress(self, user_id: str, progress: UserProgress) -> None:
        ...

    # --- Badges ---

    @abstractmethod
    async def list_awarded_badges(self, user_id: str) -> list[BadgeAward]:
        ...

    @abstractmethod
    async def record_badge_award(
        self, user_id: str, badge_id: str, earned_at: datetime | None = None,
    ) -> bool:
        """Idempotently record an award. Returns False if it already existed."""
        ...

    # --- Rankings ---

    @abstractmethod
    async def upsert_ranking_snapshot(self, user_id: str, period: RankingPeriod, total_exp: int) -> None:
        ...

    @abstractmethod
    async def list_ranking_snapshots(self, period: RankingPeriod, limit: int) -> list[RankingSnapshot]:
        """Snapshots for a period ordered by total_exp descending."""
        ...

    # --- Users ---

    @abstractmethod
    async def is_administrator(self, user_id: str) -> bool:
        ...

    @abstractmethod
    async def get_display_name(self, user_id: str) -> str:
        ...

    @abstractmethod
    async def list_user_ids(self) -> list[str]:
        """Every user with a progress row, for batch recomputation."""
        ...
