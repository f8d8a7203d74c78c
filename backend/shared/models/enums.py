"""Domain enumerations for the Spielebasar sync engine."""
from __future__ import annotations

from enum import Enum


class SlotName(str, Enum):
    A = "a"
    B = "b"


class SlotKind(str, Enum):
    """How an upstream referee value is interpreted."""
    POOL = "pool"
    CLUB = "club"
    INDIVIDUAL = "individual"
    EMPTY = "empty"


class ChangeKind(str, Enum):
    """Mutually exclusive outcomes of comparing a stored fixture with an incoming one."""
    CREATED = "created"
    SCHEDULE_CHANGED = "schedule_changed"
    VENUE_CHANGED = "venue_changed"
    SLOT_CHANGED = "slot_changed"
    METADATA_CHANGED = "metadata_changed"
    UNCHANGED = "unchanged"


class NotificationReason(str, Enum):
    SCHEDULE_CHANGED = "schedule_changed"
    VENUE_CHANGED = "venue_changed"
    SLOT_REASSIGNED = "slot_reassigned"
    OPERATOR_ALERT = "operator_alert"


class SyncState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    FAILED = "failed"
