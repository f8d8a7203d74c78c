"""
Pydantic v2 domain models for the sync engine.
These are the canonical internal representations, NOT ORM models.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from shared.models.enums import ChangeKind, NotificationReason, SlotName, SyncState


# ── Base ────────────────────────────────────────────────────────────────
class DomainModel(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


# ── Catalogue ───────────────────────────────────────────────────────────
class Competition(DomainModel):
    competition_id: int
    name: Optional[str] = None
    sequence_no: Optional[int] = None
    age_group: Optional[str] = None
    gender_id: Optional[int] = None
    gender: Optional[str] = None
    association_id: Optional[int] = None
    association: Optional[str] = None


class ClubIdentity(DomainModel):
    club_id: int
    display_name: str
    last_refreshed: Optional[datetime] = None
    placeholder: bool = False

    @classmethod
    def fallback(cls, club_id: int) -> "ClubIdentity":
        """Identity labelled with the raw id, used when nothing better is known."""
        return cls(club_id=club_id, display_name=str(club_id), placeholder=True)

    def is_stale(self, max_age_days: int, now: Optional[datetime] = None) -> bool:
        if self.last_refreshed is None:
            return True
        now = now or datetime.now(timezone.utc)
        refreshed = self.last_refreshed
        if refreshed.tzinfo is None:
            refreshed = refreshed.replace(tzinfo=timezone.utc)
        return (now - refreshed).total_seconds() > max_age_days * 86400


# ── Fixtures ────────────────────────────────────────────────────────────
class RefereeSlot(DomainModel):
    """One of the two referee positions on a fixture."""
    raw_identity: Optional[str] = None
    resolved_club_name: Optional[str] = None
    listed_on_market: bool = False
    claimed: bool = False
    claimant_contact: Optional[str] = None
    claimant_name: Optional[str] = None
    bonus: Optional[int] = None
    note: Optional[str] = None

    @property
    def is_committed(self) -> bool:
        """Listed on the market or claimed: someone relies on this assignment."""
        return self.listed_on_market or self.claimed

    @property
    def is_unassigned(self) -> bool:
        return not self.listed_on_market and not self.claimed

    @classmethod
    def unassigned(cls, raw_identity: Optional[str], resolved_club_name: Optional[str]) -> "RefereeSlot":
        """Slot carrying the given identity with no market state attached."""
        return cls(raw_identity=raw_identity, resolved_club_name=resolved_club_name)


class Fixture(DomainModel):
    fixture_id: int
    competition_id: int
    competition_name: Optional[str] = None
    match_day: Optional[int] = None
    match_no: Optional[int] = None
    kickoff_date: Optional[str] = None
    kickoff_time: Optional[str] = None
    venue: Optional[str] = None
    home_team_name: Optional[str] = None
    guest_team_name: Optional[str] = None
    withdrawn: bool = False
    cancelled: bool = False
    slot_a: RefereeSlot = Field(default_factory=RefereeSlot)
    slot_b: RefereeSlot = Field(default_factory=RefereeSlot)

    def slot(self, name: SlotName) -> RefereeSlot:
        return self.slot_a if name == SlotName.A else self.slot_b


# ── Diff output ─────────────────────────────────────────────────────────
class NotificationIntent(DomainModel):
    """A message to send because a stored assignment is affected by an upstream change."""
    fixture_id: int
    slot: Optional[SlotName] = None
    reason: NotificationReason
    voids_assignment: bool = False
    club_keys: list[str] = Field(default_factory=list)
    contact: Optional[str] = None
    recipients: list[str] = Field(default_factory=list)
    subject: str
    body_old: str = ""
    body_new: str = ""


class ChangeSet(DomainModel):
    """Store write derived from a comparison; `values` uses flat column names."""
    fixture_id: int
    kind: ChangeKind
    values: dict[str, Any] = Field(default_factory=dict)
    create: Optional[Fixture] = None

    @property
    def is_noop(self) -> bool:
        return self.kind == ChangeKind.UNCHANGED


class Decision(DomainModel):
    change_set: ChangeSet
    notifications: list[NotificationIntent] = Field(default_factory=list)


# ── Run bookkeeping ─────────────────────────────────────────────────────
class RunReport(DomainModel):
    leagues: int = 0
    leagues_failed: int = 0
    fixtures_seen: int = 0
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    notifications: int = 0
    clubs_resolved: int = 0
    duration_s: float = 0.0


class SyncStatus(DomainModel):
    last_run_at: Optional[datetime] = None
    last_error: Optional[str] = None
    run_count: int = 0
    error_count: int = 0
    consecutive_failures: int = 0
    state: SyncState = SyncState.IDLE
    jobs: list[str] = Field(default_factory=list)
