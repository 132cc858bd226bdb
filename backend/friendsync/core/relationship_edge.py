"""Relationship Records: frozen value types for edges, blocks, reports and pair snapshots.

Invariants:
    - Exactly one RelationshipEdge per PairKey; a missing edge is NONE at version 0
    - initiator_id is set iff status == PENDING; blocked_by is set iff status == BLOCKED
    - version only ever increases; every committed transition bumps it by one
    - Friends is one symmetric edge, never two per-direction records

Design Decisions:
    - Frozen dataclasses: transitions build new records via dataclasses.replace,
      so a snapshot read from the store can never be mutated under the caller
    - state_for() is the only place pair-centric status becomes viewer-centric state
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from uuid import UUID, uuid4

from friendsync.core.domain_types import (
    EdgeStatus, PairKey, RelationshipState, UserId, pair_key,
)


@dataclass(frozen=True)
class RelationshipEdge:
    """The single relationship record for an unordered user pair."""
    key: PairKey
    status: EdgeStatus = EdgeStatus.NONE
    initiator_id: UserId | None = None
    blocked_by: UserId | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    accepted_at: datetime | None = None
    version: int = 0

    @classmethod
    def empty(cls, a: UserId, b: UserId) -> "RelationshipEdge":
        """Implicit NONE edge for a pair the store has never seen."""
        return cls(key=pair_key(a, b))

    @property
    def exists(self) -> bool:
        return self.version > 0

    def involves(self, user_id: UserId) -> bool:
        return user_id in self.key

    def state_for(self, viewer: UserId) -> RelationshipState:
        """Project the pair-centric status onto one side of the pair."""
        if self.status == EdgeStatus.PENDING:
            if self.initiator_id == viewer:
                return RelationshipState.OUTGOING_PENDING
            return RelationshipState.INCOMING_PENDING
        if self.status == EdgeStatus.FRIENDS:
            return RelationshipState.FRIENDS
        if self.status == EdgeStatus.BLOCKED:
            if self.blocked_by == viewer:
                return RelationshipState.BLOCKED_BY_ME
            return RelationshipState.BLOCKED_BY_THEM
        return RelationshipState.NONE

    def advance(self, now: datetime, **changes) -> "RelationshipEdge":
        """Next version of this edge with `changes` applied."""
        return replace(
            self,
            created_at=self.created_at or now,
            updated_at=now,
            version=self.version + 1,
            **changes,
        )

    def to_dict(self, viewer: UserId | None = None) -> dict:
        data = {
            "users": [self.key.low, self.key.high],
            "status": self.status.value,
            "initiator_id": self.initiator_id,
            "blocked_by": self.blocked_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "accepted_at": self.accepted_at.isoformat() if self.accepted_at else None,
            "version": self.version,
        }
        if viewer is not None:
            data["other_id"] = self.key.other(viewer)
            data["state"] = self.state_for(viewer).value
        return data


@dataclass(frozen=True)
class BlockRecord:
    """Denormalized block keyed by (blocker, blocked)."""
    blocker_id: UserId
    blocked_id: UserId
    blocked_at: datetime
    reason: str | None = None

    def to_dict(self) -> dict:
        return {
            "blocker_id": self.blocker_id,
            "blocked_id": self.blocked_id,
            "reason": self.reason,
            "blocked_at": self.blocked_at.isoformat(),
        }


@dataclass(frozen=True)
class ReportRecord:
    """Abuse report; a committed report always comes with a BlockRecord."""
    reporter_id: UserId
    reported_id: UserId
    reason: str
    reported_at: datetime
    resulting_block: bool = True
    id: UUID = field(default_factory=uuid4)


@dataclass(frozen=True)
class PairSnapshot:
    """Everything the state machine needs to decide a transition for one pair."""
    edge: RelationshipEdge
    blocks: tuple[BlockRecord, ...] = ()

    @property
    def key(self) -> PairKey:
        return self.edge.key

    def block_from(self, blocker: UserId) -> BlockRecord | None:
        for block in self.blocks:
            if block.blocker_id == blocker:
                return block
        return None

    @property
    def is_blocked(self) -> bool:
        return bool(self.blocks)


@dataclass(frozen=True)
class IdempotencyRecord:
    """Outcome of a keyed mutation, written in the same transaction as the mutation."""
    actor_id: UserId
    key: str
    operation: str
    other_id: UserId
    result: dict
    created_at: datetime
