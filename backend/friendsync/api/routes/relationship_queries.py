"""Relationship Projections: paginated lists, counts, and single-pair status.

Invariants:
    - Read-only: nothing here writes or publishes
    - limit is clamped by the service to max_page_size; cursor is opaque

Design Decisions:
    - GET /{other_id} is declared last so fixed paths (/friends, /summary) win
"""

from fastapi import APIRouter, Depends, Query

from friendsync.api.deps import current_user, get_relationship_service
from friendsync.core.domain_types import UserId
from friendsync.schemas.relationship import (
    BlockPage, EdgePage, RelationshipStatusResponse, SummaryResponse,
)
from friendsync.services.relationship_service import RelationshipService

router = APIRouter(prefix="/api/v1/relationships", tags=["relationships"])


@router.get("/friends", response_model=EdgePage)
async def list_friends(
    limit: int | None = Query(None, ge=1),
    cursor: str | None = None,
    actor: UserId = Depends(current_user),
    service: RelationshipService = Depends(get_relationship_service),
):
    page = await service.list_friends(actor, limit, cursor)
    return EdgePage.from_page(page, actor)


@router.get("/requests/incoming", response_model=EdgePage)
async def list_incoming_requests(
    limit: int | None = Query(None, ge=1),
    cursor: str | None = None,
    actor: UserId = Depends(current_user),
    service: RelationshipService = Depends(get_relationship_service),
):
    page = await service.list_incoming_requests(actor, limit, cursor)
    return EdgePage.from_page(page, actor)


@router.get("/requests/outgoing", response_model=EdgePage)
async def list_outgoing_requests(
    limit: int | None = Query(None, ge=1),
    cursor: str | None = None,
    actor: UserId = Depends(current_user),
    service: RelationshipService = Depends(get_relationship_service),
):
    page = await service.list_outgoing_requests(actor, limit, cursor)
    return EdgePage.from_page(page, actor)


@router.get("/blocked", response_model=BlockPage)
async def list_blocked(
    limit: int | None = Query(None, ge=1),
    cursor: str | None = None,
    actor: UserId = Depends(current_user),
    service: RelationshipService = Depends(get_relationship_service),
):
    page = await service.list_blocked(actor, limit, cursor)
    return BlockPage.from_page(page)


@router.get("/summary", response_model=SummaryResponse)
async def relationship_summary(
    actor: UserId = Depends(current_user),
    service: RelationshipService = Depends(get_relationship_service),
):
    return await service.relationship_summary(actor)


@router.get("/{other_id}", response_model=RelationshipStatusResponse)
async def relationship_status(
    other_id: str,
    actor: UserId = Depends(current_user),
    service: RelationshipService = Depends(get_relationship_service),
):
    """State of the pair as seen by the caller."""
    return await service.relationship_status(actor, UserId(other_id))
