"""Presence State: pure online/offline transitions and per-viewer redaction.

Invariants:
    - Offline -> Online only on session start; Online -> Offline on sign-out or an
      externally detected disconnect (this module never invents a disconnect)
    - version increases on every recorded change, never on a redacted read
    - Redaction never raises: hidden fields come back as None
    - Only the owner and the owner's friends see presence; everyone else sees
      a fully redacted view
    - An Online record with a heartbeat older than the staleness window reads
      as offline (bounds the damage of a missed "went offline" update)

Design Decisions:
    - PresenceRecord is frozen; transitions return new records
    - status_animation_id travels with the online flag: hidden together
"""

from dataclasses import dataclass, replace
from datetime import datetime, timedelta

from friendsync.core.domain_types import UserId


@dataclass(frozen=True)
class PrivacySettings:
    """Owner-controlled visibility of presence fields."""
    show_online_status: bool = True
    show_last_seen: bool = True

    def to_dict(self) -> dict:
        return {
            "show_online_status": self.show_online_status,
            "show_last_seen": self.show_last_seen,
        }


@dataclass(frozen=True)
class PresenceRecord:
    """Stored presence of one user, mutated only by that user's session."""
    user_id: UserId
    is_online: bool = False
    last_seen_at: datetime | None = None
    status_animation_id: str | None = None
    version: int = 0


@dataclass(frozen=True)
class PresenceView:
    """What one viewer is allowed to see of another user's presence."""
    user_id: UserId
    is_online: bool | None = None
    last_seen_at: datetime | None = None
    status_animation_id: str | None = None
    version: int = 0

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "is_online": self.is_online,
            "last_seen_at": (
                self.last_seen_at.isoformat() if self.last_seen_at else None
            ),
            "status_animation_id": self.status_animation_id,
            "version": self.version,
        }


# ─── Transitions ─────────────────────────────────────────────────

def go_online(
    record: PresenceRecord, now: datetime,
    status_animation_id: str | None = None,
) -> PresenceRecord:
    """Session start / app foreground."""
    return replace(
        record,
        is_online=True,
        last_seen_at=now,
        status_animation_id=status_animation_id or record.status_animation_id,
        version=record.version + 1,
    )


def record_heartbeat(record: PresenceRecord, now: datetime) -> PresenceRecord:
    """Refresh last_seen_at; a heartbeat from a live session also means online."""
    return replace(
        record, is_online=True, last_seen_at=now, version=record.version + 1,
    )


def go_offline(record: PresenceRecord, now: datetime) -> PresenceRecord:
    """Sign-out or consumed disconnect signal. No-op when already offline."""
    if not record.is_online:
        return record
    return replace(
        record, is_online=False, last_seen_at=now, version=record.version + 1,
    )


def set_status_animation(
    record: PresenceRecord, animation_id: str | None,
) -> PresenceRecord:
    if record.status_animation_id == animation_id:
        return record
    return replace(
        record, status_animation_id=animation_id, version=record.version + 1,
    )


def touch(record: PresenceRecord) -> PresenceRecord:
    """New version with unchanged fields (visibility changed, e.g. privacy update)."""
    return replace(record, version=record.version + 1)


# ─── Reads ───────────────────────────────────────────────────────

def is_effectively_online(
    record: PresenceRecord, now: datetime, stale_after: timedelta,
) -> bool:
    if not record.is_online or record.last_seen_at is None:
        return False
    return now - record.last_seen_at <= stale_after


def redact_presence(
    record: PresenceRecord,
    privacy: PrivacySettings,
    *,
    viewer: UserId,
    is_friend: bool,
    now: datetime,
    stale_after: timedelta,
) -> PresenceView:
    """Presence of record.user_id as `viewer` may see it."""
    online = is_effectively_online(record, now, stale_after)
    if viewer == record.user_id:
        return PresenceView(
            user_id=record.user_id,
            is_online=online,
            last_seen_at=record.last_seen_at,
            status_animation_id=record.status_animation_id,
            version=record.version,
        )
    if not is_friend:
        return PresenceView(user_id=record.user_id, version=record.version)
    show_online = privacy.show_online_status
    return PresenceView(
        user_id=record.user_id,
        is_online=online if show_online else None,
        last_seen_at=record.last_seen_at if privacy.show_last_seen else None,
        status_animation_id=(
            record.status_animation_id if show_online and online else None
        ),
        version=record.version,
    )
