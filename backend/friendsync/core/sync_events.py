"""Sync Events: normalization of committed changes into per-viewer domain events.

Invariants:
    - derive_edge_event is PURE: same (change, viewer) always yields the same event
    - A change whose viewer-centric state did not move yields no event
    - VersionTracker accepts a version for a key at most once, and never an older one
    - Every event carries the version it was derived from

Design Decisions:
    - EdgeChange carries before AND after so the viewer diff needs no extra read
    - Declined vs cancelled are indistinguishable from states alone
      (pending -> none); the operation on the change disambiguates them
    - SSE wire shape {"type", "data"} shared with error events (errors.to_sse_event)
"""

from dataclasses import dataclass, field
from typing import Any

from friendsync.core.domain_types import (
    RelationshipOperation, RelationshipState, SyncEventType, UserId,
)
from friendsync.core.presence_state import PresenceRecord
from friendsync.core.relationship_edge import RelationshipEdge


@dataclass(frozen=True)
class EdgeChange:
    """A committed edge transition, as published on the change feed."""
    before: RelationshipEdge
    after: RelationshipEdge
    operation: RelationshipOperation
    actor: UserId
    was_friend: bool = False

    @property
    def version(self) -> int:
        return self.after.version


@dataclass(frozen=True)
class PresenceChange:
    """A committed presence update, as published on the change feed."""
    record: PresenceRecord

    @property
    def version(self) -> int:
        return self.record.version


@dataclass(frozen=True)
class SyncEvent:
    """Normalized event delivered to one subscriber."""
    type: SyncEventType
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"type": self.type.value, "data": self.data}


_PENDING = (RelationshipState.INCOMING_PENDING, RelationshipState.OUTGOING_PENDING)
_BLOCKED = (RelationshipState.BLOCKED_BY_ME, RelationshipState.BLOCKED_BY_THEM)


def _classify(
    before: RelationshipState, after: RelationshipState,
    operation: RelationshipOperation,
) -> SyncEventType | None:
    if before == after:
        return None
    if after in _BLOCKED:
        return SyncEventType.BLOCKED
    if before in _BLOCKED:
        return SyncEventType.UNBLOCKED
    if after == RelationshipState.INCOMING_PENDING:
        return SyncEventType.REQUEST_RECEIVED
    if after == RelationshipState.OUTGOING_PENDING:
        return SyncEventType.REQUEST_SENT
    if after == RelationshipState.FRIENDS:
        return SyncEventType.REQUEST_ACCEPTED
    if before == RelationshipState.FRIENDS:
        return SyncEventType.FRIEND_REMOVED
    if before in _PENDING:
        if operation == RelationshipOperation.CANCEL_REQUEST:
            return SyncEventType.REQUEST_CANCELLED
        return SyncEventType.REQUEST_DECLINED
    return None


def derive_edge_event(change: EdgeChange, viewer: UserId) -> SyncEvent | None:
    """Domain event `viewer` should observe for `change`, or None."""
    if not change.after.involves(viewer):
        return None
    before = change.before.state_for(viewer)
    after = change.after.state_for(viewer)
    event_type = _classify(before, after, change.operation)
    if event_type is None:
        return None
    data = {
        "other_id": change.after.key.other(viewer),
        "state": after.value,
        "previous_state": before.value,
        "actor_id": change.actor,
        "version": change.version,
        "edge": change.after.to_dict(viewer),
    }
    if event_type == SyncEventType.BLOCKED:
        data["blocked_by"] = change.after.blocked_by
        data["was_friend"] = change.was_friend
    return SyncEvent(event_type, data)


def presence_event(view_data: dict) -> SyncEvent:
    return SyncEvent(SyncEventType.PRESENCE_CHANGED, view_data)


def snapshot_event(
    *,
    friends: list[dict],
    incoming: list[dict],
    outgoing: list[dict],
    blocked: list[dict],
    presence: list[dict],
    versions: dict[str, int],
) -> SyncEvent:
    return SyncEvent(SyncEventType.SNAPSHOT, {
        "friends": friends,
        "incoming_requests": incoming,
        "outgoing_requests": outgoing,
        "blocked": blocked,
        "presence": presence,
        "versions": versions,
    })


class VersionTracker:
    """Per-key high-water mark of delivered versions (exactly-once delivery)."""

    def __init__(self, seen: dict[str, int] | None = None):
        self._seen: dict[str, int] = dict(seen or {})

    def accept(self, key: str, version: int) -> bool:
        """Record `version` for `key`; False if it was already delivered."""
        if version <= self._seen.get(key, 0):
            return False
        self._seen[key] = version
        return True

    def reset(self, seen: dict[str, int]) -> None:
        self._seen = dict(seen)

    def forget(self, key: str) -> None:
        """Drop `key`; the next version seen for it is delivered again."""
        self._seen.pop(key, None)

    def last(self, key: str) -> int:
        return self._seen.get(key, 0)
