"""PostgreSQL-backed ProgressRepository on an AsyncSession.

Event writes (logs, reviews) only flush; ``save_user_progress`` commits,
so a submission's log row and its progress update land in one
transaction. Row locks taken by ``get_user_progress(for_update=True)``
are released by that commit.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import delete, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from readquest.db.models import (
    BookRow,
    RankingSnapshotRow,
    ReadingLogRow,
    ReviewRow,
    User,
    UserBadgeRow,
    UserProgressRow,
)
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

_PROGRESS_FIELDS = (
    "exp",
    "level",
    "current_streak",
    "longest_streak",
    "last_reading_date",
    "total_pages_read",
    "total_books_completed",
)


def _log_from_row(row: ReadingLogRow) -> ReadingLogEntry:
    return ReadingLogEntry(
        id=row.id,
        user_id=row.user_id,
        book_id=row.book_id,
        date=row.date,
        start_page=row.start_page,
        end_page=row.end_page,
        pages_read=row.pages_read,
        exp_gained=row.exp_gained,
        completes_book=row.completes_book,
        created_at=row.created_at,
    )


def _review_from_row(row: ReviewRow) -> Review:
    return Review(id=row.id, user_id=row.user_id, book_id=row.book_id, rating=row.rating, created_at=row.created_at)


def _progress_from_row(row: UserProgressRow) -> UserProgress:
    return UserProgress(user_id=row.user_id, **{field: getattr(row, field) for field in _PROGRESS_FIELDS})


class SqlAlchemyProgressRepository(ProgressRepository):
    """ProgressRepository bound to one session; not safe for concurrent tasks."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    # --- Event store ---

    async def list_reading_logs(
        self, user_id: str, book_id: str | None = None, limit: int | None = None,
    ) -> list[ReadingLogEntry]:
        query = (
            select(ReadingLogRow)
            .where(ReadingLogRow.user_id == user_id)
            .order_by(ReadingLogRow.date.desc(), ReadingLogRow.created_at.desc())
        )
        if book_id is not None:
            query = query.where(ReadingLogRow.book_id == book_id)
        if limit is not None:
            query = query.limit(limit)
        result = await self.session.execute(query)
        return [_log_from_row(row) for row in result.scalars().all()]

    async def add_reading_log(self, entry: ReadingLogEntry) -> ReadingLogEntry:
        row = ReadingLogRow(
            user_id=entry.user_id,
            book_id=entry.book_id,
            date=entry.date,
            start_page=entry.start_page,
            end_page=entry.end_page,
            pages_read=entry.pages_read,
            exp_gained=entry.exp_gained,
            completes_book=entry.completes_book,
            created_at=entry.created_at or datetime.now(timezone.utc),
        )
        if entry.id is not None:
            row.id = entry.id
        self.session.add(row)
        await self.session.flush()
        return _log_from_row(row)

    async def delete_reading_log(self, entry: ReadingLogEntry) -> ReadingLogEntry | None:
        if entry.id is None:
            raise ValueError("Cannot delete a reading log without an id")
        stmt = (
            delete(ReadingLogRow)
            .where(ReadingLogRow.id == entry.id, ReadingLogRow.user_id == entry.user_id)
            .returning(ReadingLogRow)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        row = result.scalar_one_or_none()
        await self.session.flush()
        return _log_from_row(row) if row is not None else None

    async def list_reviews(self, user_id: str) -> list[Review]:
        result = await self.session.execute(
            select(ReviewRow).where(ReviewRow.user_id == user_id).order_by(ReviewRow.created_at.desc())
        )
        return [_review_from_row(row) for row in result.scalars().all()]

    async def add_review(self, review: Review) -> Review:
        row = ReviewRow(
            user_id=review.user_id,
            book_id=review.book_id,
            rating=review.rating,
            created_at=review.created_at,
        )
        if review.id is not None:
            row.id = review.id
        self.session.add(row)
        await self.session.flush()
        return _review_from_row(row)

    async def list_books(self, user_id: str) -> list[Book]:
        result = await self.session.execute(select(BookRow).where(BookRow.user_id == user_id))
        return [
            Book(
                id=row.id,
                user_id=row.user_id,
                title=row.title,
                status=row.status,
                total_pages=row.total_pages,
                current_page=row.current_page,
                cover_image=row.cover_image,
                updated_at=row.updated_at,
            )
            for row in result.scalars().all()
        ]

    # --- Progress ---

    async def _select_progress(self, user_id: str, for_update: bool) -> UserProgressRow | None:
        query = (
            select(UserProgressRow)
            .where(UserProgressRow.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def get_user_progress(self, user_id: str, for_update: bool = False) -> UserProgress:
        row = await self._select_progress(user_id, for_update)
        if row is None:
            await self.session.execute(
                pg_insert(UserProgressRow)
                .values(user_id=user_id)
                .on_conflict_do_nothing(index_elements=["user_id"])
            )
            row = await self._select_progress(user_id, for_update)
        return _progress_from_row(row)

    async def save_user_progress(self, user_id: str, progress: UserProgress) -> None:
        values = {field: getattr(progress, field) for field in _PROGRESS_FIELDS}
        await self.session.execute(
            update(UserProgressRow)
            .where(UserProgressRow.user_id == user_id)
            .values(**values, updated_at=datetime.now(timezone.utc))
        )
        await self.session.commit()

    # --- Badges ---

    async def list_awarded_badges(self, user_id: str) -> list[BadgeAward]:
        result = await self.session.execute(
            select(UserBadgeRow).where(UserBadgeRow.user_id == user_id).order_by(UserBadgeRow.earned_at)
        )
        return [
            BadgeAward(user_id=row.user_id, badge_id=row.badge_id, earned_at=row.earned_at)
            for row in result.scalars().all()
        ]

    async def record_badge_award(
        self, user_id: str, badge_id: str, earned_at: datetime | None = None,
    ) -> bool:
        stmt = (
            pg_insert(UserBadgeRow)
            .values(user_id=user_id, badge_id=badge_id, earned_at=earned_at or datetime.now(timezone.utc))
            .on_conflict_do_nothing(constraint="user_badges_user_id_badge_id_key")
            .returning(UserBadgeRow.id)
        )
        result = await self.session.execute(stmt)
        inserted = result.scalar_one_or_none() is not None
        await self.session.commit()
        return inserted

    # --- Rankings ---

    async def upsert_ranking_snapshot(self, user_id: str, period: RankingPeriod, total_exp: int) -> None:
        now = datetime.now(timezone.utc)
        stmt = pg_insert(RankingSnapshotRow).values(
            user_id=user_id,
            period=period.value,
            total_exp=total_exp,
            updated_at=now,
        ).on_conflict_do_update(
            constraint="ranking_snapshots_user_id_period_key",
            set_={"total_exp": total_exp, "updated_at": now},
        )
        await self.session.execute(stmt)
        await self.session.commit()

    async def list_ranking_snapshots(self, period: RankingPeriod, limit: int) -> list[RankingSnapshot]:
        result = await self.session.execute(
            select(RankingSnapshotRow)
            .where(RankingSnapshotRow.period == period.value)
            .order_by(RankingSnapshotRow.total_exp.desc())
            .limit(limit)
        )
        return [
            RankingSnapshot(
                user_id=row.user_id,
                period=RankingPeriod(row.period),
                total_exp=row.total_exp,
                updated_at=row.updated_at,
            )
            for row in result.scalars().all()
        ]

    # --- Users ---

    async def is_administrator(self, user_id: str) -> bool:
        result = await self.session.execute(select(User.is_admin).where(User.id == user_id))
        return bool(result.scalar_one_or_none())

    async def get_display_name(self, user_id: str) -> str:
        result = await self.session.execute(select(User.display_name).where(User.id == user_id))
        return result.scalar_one_or_none() or user_id

    async def list_user_ids(self) -> list[str]:
        result = await self.session.execute(select(UserProgressRow.user_id).order_by(UserProgressRow.user_id))
        return list(result.scalars().all())
