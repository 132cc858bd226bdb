"""Domain Types: rich types that replace bare primitives across the codebase.

Invariants:
    - UserId is opaque and issued externally; never parsed or generated here
    - PairKey is always ordered (low, high) with low < high
    - All valid states encoded as Enums, no raw string matching

Design Decisions:
    - NewType over dataclass wrappers for identifiers: zero runtime cost
    - str Enums: serialize to JSON (API responses, SSE events) without custom encoders
    - EdgeStatus is pair-centric (pending/blocked) and carries direction in separate
      fields; RelationshipState is the viewer-centric projection of the same edge
"""

from enum import Enum
from typing import NamedTuple, NewType


# ─── Identity Types ──────────────────────────────────────────────

UserId = NewType("UserId", str)
IdempotencyKey = NewType("IdempotencyKey", str)


class PairKey(NamedTuple):
    """Unordered user pair, stored in canonical (low, high) order."""
    low: UserId
    high: UserId

    def other(self, user_id: UserId) -> UserId:
        return self.high if user_id == self.low else self.low

    def __str__(self) -> str:
        return f"{self.low}:{self.high}"


def pair_key(a: UserId, b: UserId) -> PairKey:
    """Canonical key for the unordered pair {a, b}."""
    if a == b:
        raise ValueError("a pair requires two distinct users")
    return PairKey(a, b) if a < b else PairKey(b, a)


# ─── Enums ───────────────────────────────────────────────────────

class EdgeStatus(str, Enum):
    """Pair-centric status of a RelationshipEdge, maps to DB `status` column."""
    NONE = "none"
    PENDING = "pending"
    FRIENDS = "friends"
    BLOCKED = "blocked"


class RelationshipState(str, Enum):
    """Viewer-centric state of an edge, as seen by one side of the pair."""
    NONE = "none"
    OUTGOING_PENDING = "outgoing_pending"
    INCOMING_PENDING = "incoming_pending"
    FRIENDS = "friends"
    BLOCKED_BY_ME = "blocked_by_me"
    BLOCKED_BY_THEM = "blocked_by_them"


class RelationshipOperation(str, Enum):
    """Every mutating intent a client can issue against a pair."""
    SEND_REQUEST = "send_request"
    ACCEPT_REQUEST = "accept_request"
    DECLINE_REQUEST = "decline_request"
    CANCEL_REQUEST = "cancel_request"
    REMOVE_FRIEND = "remove_friend"
    BLOCK_USER = "block_user"
    UNBLOCK_USER = "unblock_user"
    REPORT_USER = "report_user"


# Safe to replay with the same idempotency key after TIMEOUT / TRANSIENT_STORE_FAILURE
IDEMPOTENT_OPERATIONS = frozenset({
    RelationshipOperation.REMOVE_FRIEND,
    RelationshipOperation.BLOCK_USER,
    RelationshipOperation.UNBLOCK_USER,
})

# Require a confirmation round-trip before the mutating call is issued
DESTRUCTIVE_OPERATIONS = frozenset({
    RelationshipOperation.REMOVE_FRIEND,
    RelationshipOperation.BLOCK_USER,
    RelationshipOperation.REPORT_USER,
})


class SyncEventType(str, Enum):
    """Normalized events published by the SyncGateway to local observers."""
    SNAPSHOT = "snapshot"
    REQUEST_RECEIVED = "request_received"
    REQUEST_SENT = "request_sent"
    REQUEST_ACCEPTED = "request_accepted"
    REQUEST_DECLINED = "request_declined"
    REQUEST_CANCELLED = "request_cancelled"
    FRIEND_REMOVED = "friend_removed"
    BLOCKED = "blocked"
    UNBLOCKED = "unblocked"
    PRESENCE_CHANGED = "presence_changed"
