"""
Mail texts for fixture change notifications and operator alerts.
Bodies are small HTML fragments; render() wraps them into a document.
"""
from __future__ import annotations

from datetime import date
from html import escape
from typing import Optional

from shared.models.domain import Fixture, RefereeSlot

SUBJECT_SCHEDULE_CHANGE = "Info Veränderung Spielplan"
SUBJECT_OPERATOR_ALERT = "Synchronisierung fehlgeschlagen"

INTRO_VOIDED = (
    "du erhältst diese Mail, da es eine Veränderung im Spielplan gab und du dieses Spiel "
    "im Basar oder als besetzt markiert hast. Die Ansetzung entfällt!"
)
INTRO_KEPT = (
    "du erhältst diese Mail, da es eine Veränderung im Spielplan gab und du dieses Spiel "
    "im Basar oder als besetzt markiert hast. Die Ansetzung bleibt bestehen!"
)

NO_NAME = "[*Kein Name hinterlegt*]"
NO_NOTE = "[*Keine Informationen hinterlegt*]"


def subject(prefix: str, text: str) -> str:
    return f"{prefix} {text}".strip()


def format_date(value: Optional[str]) -> str:
    """ISO date to the German d.m.yyyy form; anything else passes through."""
    if not value:
        return ""
    try:
        parsed = date.fromisoformat(value[:10])
    except ValueError:
        return value
    return f"{parsed.day}.{parsed.month}.{parsed.year}"


def _text(value: object) -> str:
    return escape("" if value is None else str(value))


def _slot_label(slot: RefereeSlot) -> str:
    return _text(slot.resolved_club_name or slot.raw_identity)


def fixture_summary(fixture: Fixture) -> str:
    return "<br/>".join(
        [
            f"{_text(fixture.competition_name)} {_text(fixture.match_no)}",
            f"{format_date(fixture.kickoff_date)} {_text(fixture.kickoff_time)}",
            _text(fixture.venue),
            f"{_text(fixture.home_team_name)} - {_text(fixture.guest_team_name)}",
            f"{_slot_label(fixture.slot_a)} {_slot_label(fixture.slot_b)}",
        ]
    )


def stored_slot_details(slot: RefereeSlot) -> str:
    return "<br/>".join(
        [
            "<strong>Folgende Infos hattest du hinterlegt:</strong>",
            f"Bonus: {_text(slot.bonus)}",
            _text(slot.claimant_name) if slot.claimant_name else NO_NAME,
            _text(slot.note) if slot.note else NO_NOTE,
        ]
    )


def change_body(stored: Fixture, incoming: Fixture, slot: RefereeSlot, voided: bool) -> tuple[str, str]:
    """Old and new halves of a change mail for one affected slot."""
    intro = INTRO_VOIDED if voided else INTRO_KEPT
    old = f"Hallo,<br/>{intro}<br/><br/><strong>Spiel (alt):</strong><br/>{fixture_summary(stored)}"
    new = (
        f"<strong>Spiel (neu):</strong><br/>{fixture_summary(incoming)}"
        f"<br/><br/>{stored_slot_details(slot)}"
    )
    return old, new


def render(body_old: str, body_new: str) -> str:
    parts = [p for p in (body_old, body_new) if p]
    return "<html><body>" + "<br/><br/>".join(parts) + "</body></html>"


def operator_alert(job: str, failures: int, error: Optional[str]) -> str:
    return (
        "<html><body>"
        f"Job <strong>{_text(job)}</strong> ist fehlgeschlagen.<br/>"
        f"Fehler in Folge: {failures}<br/>"
        f"Letzter Fehler: {_text(error)}"
        "</body></html>"
    )
