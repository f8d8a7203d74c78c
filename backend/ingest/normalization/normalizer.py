"""
Normalization layer for the sync engine.
Turns a validated schedule entry plus its match detail into a domain Fixture:
classifies the two referee values and labels club slots with the display
names resolved for the current run.
"""
from __future__ import annotations

from typing import Iterable, Mapping, Optional

from pydantic import BaseModel, ConfigDict

from shared.models.domain import ClubIdentity, Fixture, RefereeSlot
from shared.models.enums import SlotKind
from shared.utils.logging import get_logger

from ingest.providers.schemas import FixtureDetail, ScheduleEntry, TeamRef

logger = get_logger(__name__)

CLUB_MARKER = "verein"
POOL_SENTINEL = "Pool"
INDIVIDUAL_MARKER = "besetzt"

SLOT_COUNT = 2


class MalformedFixtureError(ValueError):
    """The fixture detail lacks data needed to build a record (e.g. a team)."""


class FetchedFixture(BaseModel):
    """A schedule entry together with its fetched match detail."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    competition_id: int
    competition_name: Optional[str] = None
    entry: ScheduleEntry
    detail: FixtureDetail

    @property
    def fixture_id(self) -> int:
        return self.entry.match_id

    @property
    def home_team(self) -> Optional[TeamRef]:
        return self.detail.home_team

    @property
    def guest_team(self) -> Optional[TeamRef]:
        return self.detail.guest_team


# ── Slot classification ─────────────────────────────────────────────────

def classify_slot(raw: Optional[str]) -> SlotKind:
    if raw is None or not raw.strip():
        return SlotKind.EMPTY
    if raw.strip().lower() == POOL_SENTINEL.lower():
        return SlotKind.POOL
    if raw.strip().isdigit():
        return SlotKind.CLUB
    return SlotKind.INDIVIDUAL


def numeric_club_id(raw: Optional[str]) -> Optional[int]:
    """Club id carried by a slot value, or None for pool/individual/empty."""
    if classify_slot(raw) != SlotKind.CLUB:
        return None
    return int(raw.strip())


def upstream_slot_value(detail: FixtureDetail, index: int) -> Optional[str]:
    """
    Raw referee value of one slot as listed upstream.

    Club-level entries are published as a person with first name "Verein" and
    the club id (or the pool sentinel) as last name. Any other person means
    an individual referee is already assigned.
    """
    referees = detail.info.referees if detail.info else []
    if index >= len(referees):
        return None
    entry = referees[index]
    if entry is None or entry.person is None:
        return None
    person = entry.person
    if (person.first_name or "").strip().lower() == CLUB_MARKER:
        value = (person.last_name or "").strip()
        if value.lower() == POOL_SENTINEL.lower():
            return POOL_SENTINEL
        return value or None
    return INDIVIDUAL_MARKER


def slot_raw_values(fetched: FetchedFixture) -> list[Optional[str]]:
    """Raw identities of both slots; a missing entry defaults to the home club."""
    home = fetched.home_team
    home_default = str(home.club_id) if home is not None and home.club_id is not None else None
    values: list[Optional[str]] = []
    for index in range(SLOT_COUNT):
        value = upstream_slot_value(fetched.detail, index)
        values.append(value if value is not None else home_default)
    return values


def validate_fetched(fetched: FetchedFixture) -> None:
    if fetched.home_team is None or fetched.guest_team is None:
        raise MalformedFixtureError(f"fixture {fetched.fixture_id} has no home or guest team")


def collect_club_ids(fixtures: Iterable[FetchedFixture]) -> list[int]:
    """Distinct numeric club ids referenced by teams or slots, in first-seen order."""
    seen: dict[int, None] = {}
    for fetched in fixtures:
        candidates: list[Optional[int]] = [
            fetched.home_team.club_id if fetched.home_team else None,
            fetched.guest_team.club_id if fetched.guest_team else None,
        ]
        candidates.extend(numeric_club_id(raw) for raw in slot_raw_values(fetched))
        for club_id in candidates:
            if club_id is not None:
                seen.setdefault(club_id, None)
    return list(seen)


# ── Fixture assembly ────────────────────────────────────────────────────

class FixtureNormalizer:
    """
    Builds domain fixtures from a fixed id -> identity map.

    The map is produced by the identity phase of a run; an id missing from it
    is labelled with its raw value. Normalizing never reaches the upstream.
    """

    def __init__(self, identities: Mapping[int, ClubIdentity] | None = None) -> None:
        self._identities = dict(identities or {})

    def _slot(self, raw: Optional[str]) -> RefereeSlot:
        club_id = numeric_club_id(raw)
        name: Optional[str] = None
        if club_id is not None:
            identity = self._identities.get(club_id) or ClubIdentity.fallback(club_id)
            name = identity.display_name
        return RefereeSlot.unassigned(raw, name)

    def normalize(self, fetched: FetchedFixture) -> Fixture:
        validate_fetched(fetched)
        entry, detail = fetched.entry, fetched.detail
        raw_a, raw_b = slot_raw_values(fetched)

        competition_name = fetched.competition_name
        if detail.league and detail.league.name:
            competition_name = detail.league.name

        fixture = Fixture(
            fixture_id=entry.match_id,
            competition_id=fetched.competition_id,
            competition_name=competition_name,
            match_day=entry.match_day,
            match_no=entry.match_no,
            kickoff_date=entry.kickoff_date,
            kickoff_time=entry.kickoff_time,
            venue=detail.info.court.name if detail.info and detail.info.court else None,
            home_team_name=fetched.home_team.name,
            guest_team_name=fetched.guest_team.name,
            withdrawn=bool(entry.withdrawn),
            cancelled=bool(entry.cancelled),
            slot_a=self._slot(raw_a),
            slot_b=self._slot(raw_b),
        )
        logger.debug(
            "fixture_normalized",
            fixture_id=fixture.fixture_id,
            slot_a=fixture.slot_a.raw_identity,
            slot_b=fixture.slot_b.raw_identity,
        )
        return fixture
