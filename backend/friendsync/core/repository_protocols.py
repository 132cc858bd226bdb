"""Boundary Protocols: contracts between core and shell.

Invariants:
    - Core NEVER imports from shell; dependency arrows point inward only
    - All IO operations accessed through Protocol types
    - RelationshipRepository.commit is a compare-and-swap on the pair version:
      it returns None (and writes nothing) when the stored version moved

Design Decisions:
    - Protocol over ABC: structural subtyping, no inheritance hierarchy
    - Async in Protocol: boundary methods are async because implementations do IO,
      but the core functions that consume their results are never async
"""

from typing import Iterable, Protocol

from friendsync.core.domain_types import EdgeStatus, UserId
from friendsync.core.enforce_transitions import Transition
from friendsync.core.presence_state import PresenceRecord, PrivacySettings
from friendsync.core.relationship_edge import (
    BlockRecord, IdempotencyRecord, PairSnapshot, RelationshipEdge, ReportRecord,
)


class RelationshipRepository(Protocol):
    """Contract for relationship persistence (edges, blocks, reports, idempotency)."""
    async def load_pair(self, a: UserId, b: UserId) -> PairSnapshot: ...
    async def commit(
        self, snapshot: PairSnapshot, transition: Transition,
        idempotency: IdempotencyRecord | None = None,
    ) -> RelationshipEdge | None: ...
    async def find_idempotency(
        self, actor: UserId, key: str,
    ) -> IdempotencyRecord | None: ...
    async def list_edges(
        self, user: UserId, statuses: Iterable[EdgeStatus],
    ) -> list[RelationshipEdge]: ...
    async def list_blocks_by(self, user: UserId) -> list[BlockRecord]: ...
    async def list_reports(
        self, reporter: UserId, reported: UserId | None = None,
    ) -> list[ReportRecord]: ...


class PresenceRepository(Protocol):
    """Contract for presence and privacy persistence."""
    async def get_presence(self, user: UserId) -> PresenceRecord: ...
    async def get_presence_many(
        self, users: Iterable[UserId],
    ) -> dict[UserId, PresenceRecord]: ...
    async def save_presence(
        self, record: PresenceRecord, expected_version: int,
    ) -> bool: ...
    async def get_privacy(self, user: UserId) -> PrivacySettings: ...
    async def get_privacy_many(
        self, users: Iterable[UserId],
    ) -> dict[UserId, PrivacySettings]: ...
    async def save_privacy(
        self, user: UserId, settings: PrivacySettings,
    ) -> None: ...
