"""Pydantic models for progression state and the events that feed it."""

from __future__ import annotations

import datetime as dt
from datetime import date, datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field, model_validator


class RankingPeriod(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    ALL_TIME = "all-time"


class BadgeCondition(str, Enum):
    FIRST_BOOK = "first_book"
    STREAK_DAYS = "streak_days"
    BOOKS_COMPLETED = "books_completed"
    PAGES_IN_MONTH = "pages_month"
    REVIEWS_WRITTEN = "reviews_written"
    LEVEL_REACHED = "level_reached"


# --- Progress ---


class UserProgress(BaseModel):
    """Denormalized progression summary, one per user.

    ``level`` is always derived from ``exp``: it is normalized on
    construction and every later EXP change goes through
    ``experience.apply_exp``.
    """

    user_id: str
    exp: int = Field(default=0, ge=0)
    level: int = Field(default=1, ge=1)
    current_streak: int = Field(default=0, ge=0)
    longest_streak: int = Field(default=0, ge=0)
    last_reading_date: date | None = None
    total_pages_read: int = Field(default=0, ge=0)
    total_books_completed: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def _sync_level(self) -> UserProgress:
        from readquest.progression.experience import level_from_exp

        self.level = level_from_exp(self.exp)
        return self


# --- Activity ---


class Book(BaseModel):
    id: str
    user_id: str
    title: str = ""
    status: Literal["reading", "completed", "paused"] = "reading"
    total_pages: int = 0
    current_page: int = 0
    cover_image: str | None = None
    updated_at: datetime | None = None


class ReadingLogEntry(BaseModel):
    id: str | None = None
    user_id: str
    book_id: str
    date: dt.date
    start_page: int | None = None
    end_page: int | None = None
    pages_read: int = Field(gt=0)
    exp_gained: int = Field(default=0, ge=0)
    # Set when this session finished the book
    completes_book: bool = False
    created_at: datetime | None = None


class ReadingLogSubmission(BaseModel):
    """A reading session as submitted by a client.

    Either ``pages_read`` or both page bounds must be given; bounds win
    when both are present.
    """

    user_id: str
    book_id: str
    date: dt.date
    pages_read: int | None = Field(default=None, gt=0)
    start_page: int | None = Field(default=None, ge=1)
    end_page: int | None = Field(default=None, ge=1)
    completes_book: bool = False

    @model_validator(mode="after")
    def _resolve_pages(self) -> ReadingLogSubmission:
        if self.start_page is not None and self.end_page is not None:
            if self.end_page < self.start_page:
                raise ValueError("end_page must be greater than or equal to start_page")
            self.pages_read = self.end_page - self.start_page + 1
        if self.pages_read is None:
            raise ValueError("pages_read or start_page/end_page is required")
        return self


class Review(BaseModel):
    id: str | None = None
    user_id: str
    book_id: str
    rating: int | None = Field(default=None, ge=1, le=5)
    created_at: datetime


class ActivityHistory(BaseModel):
    """Everything the badge rules look at besides UserProgress."""

    books: list[Book] = []
    reviews: list[Review] = []
    reading_logs: list[ReadingLogEntry] = []


# --- Badges ---


class BadgeDefinition(BaseModel):
    id: str
    name: str
    description: str = ""
    condition: BadgeCondition
    threshold: float
    exp_reward: int = Field(ge=0)
    order: int = 0


class BadgeAward(BaseModel):
    user_id: str
    badge_id: str
    earned_at: datetime


class BadgeProgress(BaseModel):
    badge: BadgeDefinition
    earned: bool
    current: float
    target: float
    percent: int


# --- Rankings ---


class RankingSnapshot(BaseModel):
    user_id: str
    period: RankingPeriod
    total_exp: int = Field(ge=0)
    updated_at: datetime | None = None


class RankingItem(BaseModel):
    user_id: str
    display_name: str
    total_exp: int
    rank: int


class WeeklyChampion(BaseModel):
    user_id: str
    display_name: str
    weekly_streak: int
    weekly_pages: int
    weekly_exp: int
    composite_score: float
    rank: int


# --- Service results ---


class LogSubmissionResult(BaseModel):
    entry: ReadingLogEntry
    progress: UserProgress
    exp_gained: int
    leveled_up: bool = False
    new_badges: list[BadgeDefinition] = []
