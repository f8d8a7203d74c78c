"""Builders for upstream payloads and stored fixtures used across the test suite."""
from __future__ import annotations

from typing import Optional

from shared.models.domain import Competition, Fixture, RefereeSlot

from ingest.providers.schemas import (
    ClubInfo,
    FixtureDetail,
    Schedule,
    ScheduleEntry,
)


def referee(value: Optional[str], first_name: str = "Verein") -> dict:
    return {"personData": {"vorname": first_name, "nachname": value}}


def schedule_entry(
    match_id: int,
    kickoff_date: str = "2025-03-01",
    kickoff_time: str = "18:00",
    home_club: int = 10,
    guest_club: int = 20,
) -> ScheduleEntry:
    return ScheduleEntry.model_validate(
        {
            "matchId": match_id,
            "matchDay": 1,
            "matchNo": match_id,
            "kickoffDate": kickoff_date,
            "kickoffTime": kickoff_time,
            "homeTeam": {"teamname": f"Home {home_club}", "clubId": home_club},
            "guestTeam": {"teamname": f"Guest {guest_club}", "clubId": guest_club},
            "verzicht": False,
            "abgesagt": False,
        }
    )


def schedule(*entries: ScheduleEntry, league_name: str = "Oberliga") -> Schedule:
    return Schedule(league={"liganame": league_name}, matches=list(entries))


def fixture_detail(
    match_id: int,
    referees: Optional[list] = None,
    venue: str = "Sporthalle Nord",
    home_club: Optional[int] = 10,
    guest_club: Optional[int] = 20,
) -> FixtureDetail:
    payload: dict = {
        "matchId": match_id,
        "ligaData": {"liganame": "Oberliga"},
        "matchInfo": {
            "spielfeld": {"bezeichnung": venue},
            "srList": referees if referees is not None else [referee("Pool"), referee("Pool")],
        },
    }
    if home_club is not None:
        payload["homeTeam"] = {"teamname": f"Home {home_club}", "clubId": home_club}
    if guest_club is not None:
        payload["guestTeam"] = {"teamname": f"Guest {guest_club}", "clubId": guest_club}
    return FixtureDetail.model_validate(payload)


def club_info(name: Optional[str]) -> ClubInfo:
    return ClubInfo.model_validate({"club": {"vereinsname": name, "vereinsnummer": "4711"}})


def stored_fixture(fixture_id: int = 1, **overrides) -> Fixture:
    values = dict(
        fixture_id=fixture_id,
        competition_id=100,
        competition_name="Oberliga",
        match_day=1,
        match_no=fixture_id,
        kickoff_date="2025-03-01",
        kickoff_time="18:00",
        venue="Sporthalle Nord",
        home_team_name="Home 10",
        guest_team_name="Guest 20",
        slot_a=RefereeSlot(raw_identity="7", resolved_club_name="TV Sieben"),
        slot_b=RefereeSlot(raw_identity="Pool"),
    )
    values.update(overrides)
    return Fixture(**values)


def competition(competition_id: int = 100, name: str = "Oberliga") -> Competition:
    return Competition(competition_id=competition_id, name=name)
