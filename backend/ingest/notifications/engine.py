"""
Diff & notification engine.

decide() compares a stored fixture with its incoming version and returns the
store write plus the notifications it implies, without touching anything.
NotificationEngine.apply() and dispatch() perform the side effects.
"""
from __future__ import annotations

from typing import Any, Optional

from shared.models.domain import (
    ChangeSet,
    Decision,
    Fixture,
    NotificationIntent,
    RefereeSlot,
)
from shared.models.enums import ChangeKind, NotificationReason, SlotName
from shared.store import SyncStore, fixture_columns, slot_columns
from shared.utils.logging import get_logger
from shared.utils.metrics import FIXTURE_CHANGES, NOTIFICATIONS

from ingest.notifications import messages
from ingest.notifications.notifier import Notifier

logger = get_logger(__name__)

DEFAULT_SUBJECT_PREFIX = "[SPIELEBASAR]"

SCHEDULE_FIELDS = ("kickoff_date", "kickoff_time", "withdrawn", "cancelled")
METADATA_FIELDS = ("home_team_name", "guest_team_name", "competition_name", "match_day", "match_no")


def _differs(stored: Fixture, incoming: Fixture, fields: tuple[str, ...]) -> list[str]:
    return [f for f in fields if getattr(stored, f) != getattr(incoming, f)]


def _intent(
    stored: Fixture,
    incoming: Fixture,
    name: SlotName,
    reason: NotificationReason,
    voids: bool,
    subject_prefix: str,
) -> NotificationIntent:
    slot = stored.slot(name)
    body_old, body_new = messages.change_body(stored, incoming, slot, voided=voids)
    return NotificationIntent(
        fixture_id=stored.fixture_id,
        slot=name,
        reason=reason,
        voids_assignment=voids,
        club_keys=[k for k in (slot.raw_identity, slot.resolved_club_name) if k],
        contact=slot.claimant_contact,
        subject=messages.subject(subject_prefix, messages.SUBJECT_SCHEDULE_CHANGE),
        body_old=body_old,
        body_new=body_new,
    )


def _committed_slots(fixture: Fixture) -> list[SlotName]:
    return [name for name in SlotName if fixture.slot(name).is_committed]


def _fresh_slot(incoming: Fixture, name: SlotName) -> RefereeSlot:
    slot = incoming.slot(name)
    return RefereeSlot.unassigned(slot.raw_identity, slot.resolved_club_name)


def decide(
    stored: Optional[Fixture],
    incoming: Fixture,
    subject_prefix: str = DEFAULT_SUBJECT_PREFIX,
) -> Decision:
    """
    Classify the change between the stored and incoming fixture.

    Precedence: create, schedule change, venue change, slot identity change,
    descriptive metadata change, unchanged. Only the first matching class is
    applied in one pass.
    """
    fixture_id = incoming.fixture_id

    if stored is None:
        created = incoming.model_copy(
            update={"slot_a": _fresh_slot(incoming, SlotName.A), "slot_b": _fresh_slot(incoming, SlotName.B)}
        )
        return Decision(change_set=ChangeSet(fixture_id=fixture_id, kind=ChangeKind.CREATED, create=created))

    if _differs(stored, incoming, SCHEDULE_FIELDS):
        notifications = [
            _intent(stored, incoming, name, NotificationReason.SCHEDULE_CHANGED, True, subject_prefix)
            for name in _committed_slots(stored)
        ]
        values = fixture_columns(incoming)
        values.pop("fixture_id")
        for name in SlotName:
            values.update(slot_columns(name, _fresh_slot(incoming, name)))
        return Decision(
            change_set=ChangeSet(fixture_id=fixture_id, kind=ChangeKind.SCHEDULE_CHANGED, values=values),
            notifications=notifications,
        )

    if stored.venue != incoming.venue:
        notifications = [
            _intent(stored, incoming, name, NotificationReason.VENUE_CHANGED, False, subject_prefix)
            for name in _committed_slots(stored)
        ]
        return Decision(
            change_set=ChangeSet(
                fixture_id=fixture_id, kind=ChangeKind.VENUE_CHANGED, values={"venue": incoming.venue}
            ),
            notifications=notifications,
        )

    changed_slots = [
        name for name in SlotName if stored.slot(name).raw_identity != incoming.slot(name).raw_identity
    ]
    if changed_slots:
        slot_values: dict[str, Any] = {}
        notifications = []
        for name in changed_slots:
            if stored.slot(name).is_committed:
                notifications.append(
                    _intent(stored, incoming, name, NotificationReason.SLOT_REASSIGNED, True, subject_prefix)
                )
            slot_values.update(slot_columns(name, _fresh_slot(incoming, name)))
        return Decision(
            change_set=ChangeSet(fixture_id=fixture_id, kind=ChangeKind.SLOT_CHANGED, values=slot_values),
            notifications=notifications,
        )

    values = {f: getattr(incoming, f) for f in _differs(stored, incoming, METADATA_FIELDS)}
    for name in SlotName:
        old_slot, new_slot = stored.slot(name), incoming.slot(name)
        # A placeholder name equals the raw id and never replaces a real one
        if (
            new_slot.resolved_club_name
            and new_slot.resolved_club_name != new_slot.raw_identity
            and new_slot.resolved_club_name != old_slot.resolved_club_name
        ):
            values[f"slot_{name.value}_club_name"] = new_slot.resolved_club_name
    if values:
        return Decision(change_set=ChangeSet(fixture_id=fixture_id, kind=ChangeKind.METADATA_CHANGED, values=values))

    return Decision(change_set=ChangeSet(fixture_id=fixture_id, kind=ChangeKind.UNCHANGED))


class NotificationEngine:
    """Applies change sets to the store and delivers notification intents."""

    def __init__(self, store: SyncStore, notifier: Notifier) -> None:
        self._store = store
        self._notifier = notifier

    async def apply(self, change_set: ChangeSet) -> bool:
        """Write the change set. Returns True when a row was written."""
        FIXTURE_CHANGES.labels(change=change_set.kind.value).inc()
        if change_set.kind == ChangeKind.CREATED:
            if change_set.create is None:
                raise ValueError(f"created change set without fixture for {change_set.fixture_id}")
            written = await self._store.create_fixture(change_set.create)
            if written:
                logger.info("fixture_created", fixture_id=change_set.fixture_id)
            return written
        if change_set.is_noop or not change_set.values:
            return False
        await self._store.update_fixture(change_set.fixture_id, change_set.values)
        logger.info(
            "fixture_updated",
            fixture_id=change_set.fixture_id,
            change=change_set.kind.value,
            columns=sorted(change_set.values),
        )
        return True

    async def recipients(self, intent: NotificationIntent) -> list[str]:
        emails = list(await self._store.find_recipient_emails(intent.club_keys))
        if intent.contact:
            emails.append(intent.contact)
        return list(dict.fromkeys(e.strip() for e in emails if e and e.strip()))

    async def dispatch(self, intents: list[NotificationIntent]) -> int:
        """Send every intent with a non-empty recipient list; returns the number sent."""
        sent = 0
        for intent in intents:
            recipients = await self.recipients(intent)
            if not recipients:
                logger.info(
                    "notification_skipped_no_recipients",
                    fixture_id=intent.fixture_id,
                    slot=intent.slot.value if intent.slot else None,
                )
                NOTIFICATIONS.labels(reason=intent.reason.value, outcome="no_recipients").inc()
                continue
            intent = intent.model_copy(update={"recipients": recipients})
            body = messages.render(intent.body_old, intent.body_new)
            try:
                ok = await self._notifier.send(intent.recipients, intent.subject, body)
            except Exception as exc:
                logger.error("notification_dispatch_error", fixture_id=intent.fixture_id, error=str(exc))
                ok = False
            NOTIFICATIONS.labels(reason=intent.reason.value, outcome="sent" if ok else "failed").inc()
            if ok:
                sent += 1
        return sent
