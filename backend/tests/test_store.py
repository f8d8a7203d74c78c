"""
SyncStore against in-memory SQLite.

Run: pytest backend/tests/test_store.py -v
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from shared.models.orm import UserORM
from shared.store import SyncStore
from shared.utils.database import DatabaseManager, StoreError

from factories import competition, stored_fixture


@pytest.mark.asyncio
async def test_upsert_competition_reports_creation(store: SyncStore) -> None:
    assert await store.upsert_competition(competition(100, "Oberliga")) is True
    assert await store.upsert_competition(competition(100, "Oberliga Nord")) is False
    stored = await store.list_competitions()
    assert [(c.competition_id, c.name) for c in stored] == [(100, "Oberliga Nord")]


@pytest.mark.asyncio
async def test_fixture_roundtrip_keeps_slot_state(store: SyncStore) -> None:
    fixture = stored_fixture(7)
    assert await store.create_fixture(fixture) is True
    await store.update_fixture(7, {"slot_a_listed": True, "slot_a_claimant": "Erika", "slot_a_note": "Halle 2"})

    loaded = await store.get_fixture(7)
    assert loaded is not None
    assert loaded.slot_a.listed_on_market is True
    assert loaded.slot_a.claimant_name == "Erika"
    assert loaded.slot_a.note == "Halle 2"
    assert loaded.slot_b.raw_identity == "Pool"


@pytest.mark.asyncio
async def test_duplicate_fixture_is_rejected(store: SyncStore) -> None:
    assert await store.create_fixture(stored_fixture(3)) is True
    assert await store.create_fixture(stored_fixture(3)) is False
    assert await store.count_fixtures() == 1


@pytest.mark.asyncio
async def test_save_club_refreshes_timestamp(store: SyncStore) -> None:
    await store.save_club(7, "TV Sieben")
    club = await store.get_club(7)
    assert club is not None
    assert club.display_name == "TV Sieben"
    assert not club.is_stale(7)
    assert club.is_stale(7, now=datetime.now(timezone.utc) + timedelta(days=8))
    assert await store.existing_club_ids([7, 8]) == {7}


@pytest.mark.asyncio
async def test_recipients_match_raw_id_or_club_name(store: SyncStore, db: DatabaseManager) -> None:
    async with db.write_session() as session:
        session.add_all(
            [
                UserORM(email="a@example.org", clubs=["7"]),
                UserORM(email="b@example.org", clubs=["TV Sieben", "12"]),
                UserORM(email="c@example.org", clubs=["12"]),
                UserORM(email="d@example.org", clubs=None),
            ]
        )

    emails = await store.find_recipient_emails(["7", "TV Sieben"])
    assert emails == ["a@example.org", "b@example.org"]
    assert await store.find_recipient_emails([]) == []


@pytest.mark.asyncio
async def test_disconnected_store_raises_store_error(db: DatabaseManager, store: SyncStore) -> None:
    await db.disconnect()
    assert await store.ping() is False
    # A fresh in-memory database has no tables
    await db.connect()
    with pytest.raises(StoreError):
        await store.get_fixture(1)
