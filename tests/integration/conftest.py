"""PostgreSQL fixtures. Skipped unless READQUEST_TEST_DATABASE_URL is set."""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from readquest.database import close_db, get_engine, get_session_factory, init_db
from readquest.db.base import Base
from readquest.db.models import BookRow, User

TEST_DATABASE_URL = os.environ.get("READQUEST_TEST_DATABASE_URL")

_TABLES = ("ranking_snapshots", "user_badges", "reviews", "reading_logs", "books", "user_progress", "users")


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Fresh schema contents with two readers, one admin and a book each."""
    if TEST_DATABASE_URL is None:
        pytest.skip("READQUEST_TEST_DATABASE_URL not set")

    await init_db(TEST_DATABASE_URL, pool_size=2)
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        await conn.execute(text(f"TRUNCATE TABLE {', '.join(_TABLES)} CASCADE"))  # noqa: S608

    async with get_session_factory()() as session:
        session.add_all([
            User(id="u1", display_name="Ada"),
            User(id="u2", display_name="Bo"),
            User(id="root", display_name="Root", is_admin=True),
        ])
        await session.flush()
        session.add_all([
            BookRow(id="b1", user_id="u1", title="Dune", status="completed", total_pages=600),
            BookRow(id="b2", user_id="u2", title="Emma"),
            BookRow(id="b3", user_id="root", title="Ulysses"),
        ])
        await session.commit()
        yield session

    await close_db()
