"""Relationship Projections: read-only views of one user's edges.

Invariants:
    - Projections are computed from committed edges only; no caller-side cache
    - friends / incoming / outgoing are mutually exclusive for any one edge
    - blocked lists only the blocks the viewer created, never blocks against them
    - Pagination is keyset-based on (updated_at desc, other_id): stable under inserts

Design Decisions:
    - Cursor is the other user's id of the last item returned; an unknown
      cursor restarts from the first page instead of failing
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Generic, TypeVar

from friendsync.core.domain_types import RelationshipState, UserId
from friendsync.core.relationship_edge import BlockRecord, RelationshipEdge


T = TypeVar("T")

DEFAULT_PAGE_SIZE = 15
_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class Page(Generic[T]):
    items: list[T]
    has_more: bool
    next_cursor: str | None = None


def select_by_state(
    edges: list[RelationshipEdge], viewer: UserId, state: RelationshipState,
) -> list[RelationshipEdge]:
    """Edges of `viewer` whose viewer-centric state equals `state`."""
    return [
        e for e in edges
        if e.involves(viewer) and e.state_for(viewer) == state
    ]


def paginate_edges(
    edges: list[RelationshipEdge], viewer: UserId,
    limit: int = DEFAULT_PAGE_SIZE, cursor: str | None = None,
) -> Page[RelationshipEdge]:
    ordered = sorted(
        edges,
        key=lambda e: (
            -(e.updated_at or _EPOCH).timestamp(), e.key.other(viewer),
        ),
    )
    ids = [e.key.other(viewer) for e in ordered]
    return _slice(ordered, ids, limit, cursor)


def paginate_blocks(
    blocks: list[BlockRecord],
    limit: int = DEFAULT_PAGE_SIZE, cursor: str | None = None,
) -> Page[BlockRecord]:
    ordered = sorted(
        blocks, key=lambda b: (-b.blocked_at.timestamp(), b.blocked_id),
    )
    ids = [b.blocked_id for b in ordered]
    return _slice(ordered, ids, limit, cursor)


def _slice(ordered: list, ids: list[str], limit: int, cursor: str | None) -> Page:
    start = 0
    if cursor is not None and cursor in ids:
        start = ids.index(cursor) + 1
    items = ordered[start:start + limit]
    has_more = start + limit < len(ordered)
    next_cursor = ids[start + limit - 1] if has_more and items else None
    return Page(items=items, has_more=has_more, next_cursor=next_cursor)


def summarize(
    edges: list[RelationshipEdge], blocks: list[BlockRecord], viewer: UserId,
) -> dict[str, int]:
    """Counts per projection (friends, incoming, outgoing, blocked)."""
    counts = {"friends": 0, "incoming": 0, "outgoing": 0}
    for edge in edges:
        if not edge.involves(viewer):
            continue
        state = edge.state_for(viewer)
        if state == RelationshipState.FRIENDS:
            counts["friends"] += 1
        elif state == RelationshipState.INCOMING_PENDING:
            counts["incoming"] += 1
        elif state == RelationshipState.OUTGOING_PENDING:
            counts["outgoing"] += 1
    counts["blocked"] = sum(1 for b in blocks if b.blocker_id == viewer)
    return counts


def friend_ids(edges: list[RelationshipEdge], viewer: UserId) -> set[UserId]:
    return {
        e.key.other(viewer)
        for e in select_by_state(edges, viewer, RelationshipState.FRIENDS)
    }
