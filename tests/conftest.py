"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Iterator

import pytest

from readquest.config import get_settings
from tests.fakes import InMemoryProgressRepository


@pytest.fixture(autouse=True)
def _fresh_settings(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Pin calendar math to UTC and drop cached settings around each test."""
    monkeypatch.setenv("READQUEST_TIMEZONE", "UTC")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def repo() -> InMemoryProgressRepository:
    return InMemoryProgressRepository()
