"""Relationship Schemas: request bodies and responses for /relationships.

Invariants:
    - Destructive actions carry `confirmed`; the service rejects them without it
    - Report reason is NOT stripped or length-checked here: the state machine
      owns that rule and answers INVALID_REASON, not a generic validation error

Design Decisions:
    - Responses built from core value types via from_* classmethods, so routes
      never hand-assemble dicts
"""

from datetime import datetime

from pydantic import BaseModel, Field

from friendsync.core.domain_types import RelationshipState
from friendsync.core.projections import Page
from friendsync.core.relationship_edge import BlockRecord, RelationshipEdge


class ConfirmRequest(BaseModel):
    """Body for remove: the confirmation round-trip flag."""
    confirmed: bool = False


class BlockRequest(BaseModel):
    confirmed: bool = False
    reason: str | None = Field(None, max_length=2000)


class ReportRequest(BaseModel):
    confirmed: bool = False
    reason: str = ""


class EdgeResponse(BaseModel):
    """One relationship edge from the caller's side."""
    other_id: str
    state: RelationshipState
    status: str
    initiator_id: str | None = None
    blocked_by: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    accepted_at: datetime | None = None
    version: int = 0

    @classmethod
    def from_edge(cls, edge: RelationshipEdge, viewer: str) -> "EdgeResponse":
        return cls(
            other_id=edge.key.other(viewer),
            state=edge.state_for(viewer),
            status=edge.status.value,
            initiator_id=edge.initiator_id,
            blocked_by=edge.blocked_by,
            created_at=edge.created_at,
            updated_at=edge.updated_at,
            accepted_at=edge.accepted_at,
            version=edge.version,
        )


class TransitionResponse(BaseModel):
    """Outcome of a mutation (also the shape replayed for an idempotency key)."""
    operation: str
    other_id: str
    state: RelationshipState
    changed: bool
    was_friend: bool = False
    implicit_accept: bool = False
    replayed: bool = False
    report_id: str | None = None
    edge: dict


class EdgePage(BaseModel):
    items: list[EdgeResponse]
    has_more: bool
    next_cursor: str | None = None

    @classmethod
    def from_page(cls, page: Page[RelationshipEdge], viewer: str) -> "EdgePage":
        return cls(
            items=[EdgeResponse.from_edge(e, viewer) for e in page.items],
            has_more=page.has_more,
            next_cursor=page.next_cursor,
        )


class BlockResponse(BaseModel):
    blocked_id: str
    reason: str | None = None
    blocked_at: datetime


class BlockPage(BaseModel):
    items: list[BlockResponse]
    has_more: bool
    next_cursor: str | None = None

    @classmethod
    def from_page(cls, page: Page[BlockRecord]) -> "BlockPage":
        return cls(
            items=[
                BlockResponse(
                    blocked_id=b.blocked_id, reason=b.reason,
                    blocked_at=b.blocked_at,
                )
                for b in page.items
            ],
            has_more=page.has_more,
            next_cursor=page.next_cursor,
        )


class RelationshipStatusResponse(BaseModel):
    other_id: str
    state: RelationshipState
    version: int
    blocked_by_me: bool
    blocked_by_them: bool
    edge: dict


class SummaryResponse(BaseModel):
    friends: int
    incoming: int
    outgoing: int
    blocked: int
