# Ensure backend is at sys.path[0] when pytest runs (from repo root or from backend dir)
from __future__ import annotations

import sys
from pathlib import Path
from typing import AsyncIterator

_backend = Path(__file__).resolve().parent.parent
if str(_backend) not in sys.path:
    sys.path.insert(0, str(_backend))

import pytest
import pytest_asyncio

from shared.config import Settings
from shared.store import SyncStore
from shared.utils.database import DatabaseManager

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
def settings() -> Settings:
    """Settings with every pause zeroed so resolver and scheduler tests run instantly."""
    return Settings(
        database_url=TEST_DATABASE_URL,
        club_backoff_base_s=0.0,
        club_backoff_cap_s=0.0,
        club_item_pause_s=0.0,
        club_batch_pause_s=0.0,
        upstream_timeout_s=1.0,
        # In-memory SQLite shares one connection across sessions
        fixture_upsert_concurrency=1,
        metrics_enabled=False,
        smtp_host="",
    )


@pytest_asyncio.fixture
async def db(settings: Settings) -> AsyncIterator[DatabaseManager]:
    manager = DatabaseManager(settings, url=TEST_DATABASE_URL)
    await manager.connect()
    await manager.create_all()
    yield manager
    await manager.disconnect()


@pytest_asyncio.fixture
async def store(db: DatabaseManager) -> SyncStore:
    return SyncStore(db)
