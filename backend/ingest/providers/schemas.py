"""
Wire schemas for the basketball-bund.net REST API.

Every endpoint answers with an envelope ``{"status": "0", "message": "", "data": {...}}``.
The models below validate the ``data`` part on ingress and map it to domain
entities before any business logic sees it. Unknown fields are ignored.
"""
from __future__ import annotations

from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from shared.models.domain import Competition


class WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


def numeric_id(value: Union[int, str, None]) -> Optional[int]:
    """Parse an upstream id that may arrive as int or digit string."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    text = value.strip()
    return int(text) if text.isdigit() else None


class Envelope(WireModel):
    status: Union[int, str, None] = None
    message: Optional[str] = None
    data: Any = None


# ── League catalogue ────────────────────────────────────────────────────
class LeagueQuery(WireModel):
    """Filter body of the league list endpoint."""
    age_gender_ids: list[int] = Field(default_factory=list, alias="akgGeschlechtIds")
    age_class_ids: list[int] = Field(default_factory=list, alias="altersklasseIds")
    area_ids: list[int] = Field(default_factory=list, alias="gebietIds")
    league_type_ids: list[int] = Field(default_factory=list, alias="ligatypIds")
    sort_by: int = Field(default=0, alias="sortBy")
    class_ids: list[int] = Field(default_factory=list, alias="spielklasseIds")
    token: str = ""
    association_ids: list[int] = Field(default_factory=list, alias="verbandIds")

    def body(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class LeagueEntry(WireModel):
    league_id: int = Field(alias="ligaId")
    name: Optional[str] = Field(default=None, alias="liganame")
    number: Optional[int] = Field(default=None, alias="liganr")
    age_group: Optional[str] = Field(default=None, alias="akName")
    gender_id: Optional[int] = Field(default=None, alias="geschlechtId")
    gender: Optional[str] = Field(default=None, alias="geschlecht")
    association_id: Optional[int] = Field(default=None, alias="verbandId")
    association: Optional[str] = Field(default=None, alias="verbandName")

    def to_competition(self) -> Competition:
        return Competition(
            competition_id=self.league_id,
            name=self.name,
            sequence_no=self.number,
            age_group=self.age_group,
            gender_id=self.gender_id,
            gender=self.gender,
            association_id=self.association_id,
            association=self.association,
        )


class LeaguePage(WireModel):
    start_index: int = Field(default=0, alias="startAtIndex")
    entries: list[LeagueEntry] = Field(default_factory=list, alias="ligen")
    has_more: bool = Field(default=False, alias="hasMoreData")
    size: int = 0


# ── Fixtures ────────────────────────────────────────────────────────────
class TeamRef(WireModel):
    name: Optional[str] = Field(default=None, alias="teamname")
    club_ref: Union[int, str, None] = Field(default=None, alias="clubId")

    @property
    def club_id(self) -> Optional[int]:
        return numeric_id(self.club_ref)


class LeagueData(WireModel):
    name: Optional[str] = Field(default=None, alias="liganame")


class ScheduleEntry(WireModel):
    match_id: int = Field(alias="matchId")
    match_day: Optional[int] = Field(default=None, alias="matchDay")
    match_no: Optional[int] = Field(default=None, alias="matchNo")
    kickoff_date: Optional[str] = Field(default=None, alias="kickoffDate")
    kickoff_time: Optional[str] = Field(default=None, alias="kickoffTime")
    home_team: Optional[TeamRef] = Field(default=None, alias="homeTeam")
    guest_team: Optional[TeamRef] = Field(default=None, alias="guestTeam")
    withdrawn: Optional[bool] = Field(default=False, alias="verzicht")
    cancelled: Optional[bool] = Field(default=False, alias="abgesagt")


class Schedule(WireModel):
    league: Optional[LeagueData] = Field(default=None, alias="ligaData")
    matches: list[ScheduleEntry] = Field(default_factory=list)


class PersonData(WireModel):
    first_name: Optional[str] = Field(default=None, alias="vorname")
    last_name: Optional[str] = Field(default=None, alias="nachname")


class RefereeEntry(WireModel):
    person: Optional[PersonData] = Field(default=None, alias="personData")


class Court(WireModel):
    name: Optional[str] = Field(default=None, alias="bezeichnung")


class MatchInfo(WireModel):
    court: Optional[Court] = Field(default=None, alias="spielfeld")
    referees: list[Optional[RefereeEntry]] = Field(default_factory=list, alias="srList")


class FixtureDetail(WireModel):
    match_id: Optional[int] = Field(default=None, alias="matchId")
    home_team: Optional[TeamRef] = Field(default=None, alias="homeTeam")
    guest_team: Optional[TeamRef] = Field(default=None, alias="guestTeam")
    league: Optional[LeagueData] = Field(default=None, alias="ligaData")
    info: Optional[MatchInfo] = Field(default=None, alias="matchInfo")


# ── Clubs ───────────────────────────────────────────────────────────────
class ClubData(WireModel):
    name: Optional[str] = Field(default=None, alias="vereinsname")
    number: Union[int, str, None] = Field(default=None, alias="vereinsnummer")


class ClubInfo(WireModel):
    club: Optional[ClubData] = None

    @property
    def display_name(self) -> Optional[str]:
        if self.club and self.club.name and self.club.name.strip():
            return self.club.name.strip()
        return None
