"""Shared test fixtures."""

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest_asyncio

from src.db.token_store import TokenStore


@pytest_asyncio.fixture(scope="function")
async def store(tmp_path: Path) -> AsyncGenerator[TokenStore, None]:
    """Fresh SQLite-backed store per test, schema created on open."""
    async with TokenStore(f"sqlite+aiosqlite:///{tmp_path}/tokens.db") as s:
        yield s
