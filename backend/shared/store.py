"""
Persistent store for competitions, fixtures and club identities.
Every public method opens its own session, so each call commits independently.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from shared.models.domain import ClubIdentity, Competition, Fixture, RefereeSlot
from shared.models.enums import SlotName
from shared.models.orm import ClubORM, CompetitionORM, FixtureORM, UserORM
from shared.utils.database import DatabaseManager
from shared.utils.logging import get_logger

logger = get_logger(__name__)

_SLOT_FIELDS: dict[str, str] = {
    "raw_identity": "raw",
    "resolved_club_name": "club_name",
    "listed_on_market": "listed",
    "claimed": "claimed",
    "claimant_contact": "contact",
    "claimant_name": "claimant",
    "bonus": "bonus",
    "note": "note",
}

_FIXTURE_FIELDS = (
    "competition_id",
    "competition_name",
    "match_day",
    "match_no",
    "kickoff_date",
    "kickoff_time",
    "venue",
    "home_team_name",
    "guest_team_name",
    "withdrawn",
    "cancelled",
)


def slot_columns(name: SlotName, slot: RefereeSlot) -> dict[str, Any]:
    """Flat column values for one slot, e.g. {"slot_a_raw": "123", ...}."""
    return {f"slot_{name.value}_{col}": getattr(slot, field) for field, col in _SLOT_FIELDS.items()}


def fixture_columns(fixture: Fixture) -> dict[str, Any]:
    values: dict[str, Any] = {"fixture_id": fixture.fixture_id}
    values.update({field: getattr(fixture, field) for field in _FIXTURE_FIELDS})
    values.update(slot_columns(SlotName.A, fixture.slot_a))
    values.update(slot_columns(SlotName.B, fixture.slot_b))
    return values


def _slot_from_row(row: FixtureORM, name: SlotName) -> RefereeSlot:
    return RefereeSlot(
        **{field: getattr(row, f"slot_{name.value}_{col}") for field, col in _SLOT_FIELDS.items()}
    )


def fixture_from_orm(row: FixtureORM) -> Fixture:
    return Fixture(
        fixture_id=row.fixture_id,
        **{field: getattr(row, field) for field in _FIXTURE_FIELDS},
        slot_a=_slot_from_row(row, SlotName.A),
        slot_b=_slot_from_row(row, SlotName.B),
    )


def _club_from_orm(row: ClubORM) -> ClubIdentity:
    return ClubIdentity(club_id=row.club_id, display_name=row.display_name, last_refreshed=row.last_refreshed)


class SyncStore:
    """Repository over the SQLAlchemy models used by the sync engine."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    # ── Health ──────────────────────────────────────────────────────────

    async def ping(self) -> bool:
        return await self._db.ping()

    async def housekeeping(self) -> None:
        """Bring the schema up to date; touches no fixture or competition rows."""
        await self._db.create_all()
        logger.info("store_housekeeping_done")

    # ── Competitions ────────────────────────────────────────────────────

    async def list_competitions(self) -> list[Competition]:
        async with self._db.read_session() as session:
            rows = (
                await session.execute(select(CompetitionORM).order_by(CompetitionORM.competition_id))
            ).scalars().all()
            return [Competition.model_validate(r) for r in rows]

    async def upsert_competition(self, competition: Competition) -> bool:
        """Create or update by competition_id. Returns True when created."""
        values = competition.model_dump()
        async with self._db.write_session() as session:
            row = (
                await session.execute(
                    select(CompetitionORM).where(CompetitionORM.competition_id == competition.competition_id)
                )
            ).scalar_one_or_none()
            if row is None:
                session.add(CompetitionORM(**values))
                return True
            for key, value in values.items():
                setattr(row, key, value)
            return False

    # ── Clubs ───────────────────────────────────────────────────────────

    async def get_club(self, club_id: int) -> Optional[ClubIdentity]:
        async with self._db.read_session() as session:
            row = (
                await session.execute(select(ClubORM).where(ClubORM.club_id == club_id))
            ).scalar_one_or_none()
            return _club_from_orm(row) if row else None

    async def list_clubs(self) -> list[ClubIdentity]:
        async with self._db.read_session() as session:
            rows = (await session.execute(select(ClubORM).order_by(ClubORM.club_id))).scalars().all()
            return [_club_from_orm(r) for r in rows]

    async def existing_club_ids(self, club_ids: Iterable[int]) -> set[int]:
        ids = list(set(club_ids))
        if not ids:
            return set()
        async with self._db.read_session() as session:
            rows = await session.execute(select(ClubORM.club_id).where(ClubORM.club_id.in_(ids)))
            return {r[0] for r in rows.all()}

    async def save_club(self, club_id: int, display_name: str) -> ClubIdentity:
        """Create or update a club with a fresh refresh timestamp."""
        now = datetime.now(timezone.utc)
        async with self._db.write_session() as session:
            row = (
                await session.execute(select(ClubORM).where(ClubORM.club_id == club_id))
            ).scalar_one_or_none()
            if row is None:
                row = ClubORM(club_id=club_id, display_name=display_name, last_refreshed=now)
                session.add(row)
            else:
                row.display_name = display_name
                row.last_refreshed = now
        return ClubIdentity(club_id=club_id, display_name=display_name, last_refreshed=now)

    # ── Fixtures ────────────────────────────────────────────────────────

    async def get_fixture(self, fixture_id: int) -> Optional[Fixture]:
        async with self._db.read_session() as session:
            row = (
                await session.execute(select(FixtureORM).where(FixtureORM.fixture_id == fixture_id))
            ).scalar_one_or_none()
            return fixture_from_orm(row) if row else None

    async def create_fixture(self, fixture: Fixture) -> bool:
        """Insert a fixture. Returns False when the fixture_id already exists."""
        try:
            async with self._db.write_session() as session:
                session.add(FixtureORM(**fixture_columns(fixture)))
        except IntegrityError:
            logger.warning("fixture_already_exists", fixture_id=fixture.fixture_id)
            return False
        return True

    async def update_fixture(self, fixture_id: int, values: dict[str, Any]) -> None:
        if not values:
            return
        async with self._db.write_session() as session:
            await session.execute(
                update(FixtureORM).where(FixtureORM.fixture_id == fixture_id).values(**values)
            )

    async def count_fixtures(self) -> int:
        async with self._db.read_session() as session:
            rows = await session.execute(select(FixtureORM.fixture_id))
            return len(rows.all())

    # ── Users ───────────────────────────────────────────────────────────

    async def find_recipient_emails(self, club_keys: Iterable[str]) -> list[str]:
        """Emails of users whose club list contains any of the given keys."""
        keys = {k for k in club_keys if k}
        if not keys:
            return []
        async with self._db.read_session() as session:
            rows = (
                await session.execute(select(UserORM.email, UserORM.clubs).order_by(UserORM.id))
            ).all()
        emails: list[str] = []
        for email, clubs in rows:
            if clubs and keys.intersection(str(c) for c in clubs):
                emails.append(email)
        return emails
