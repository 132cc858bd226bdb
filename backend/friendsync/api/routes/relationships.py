"""Relationship Mutations: one POST per intent against another user.

Invariants:
    - Every route delegates to RelationshipService; no rule lives here
    - The Idempotency-Key header, when present, is passed through untouched
    - remove/block/report without `confirmed: true` answer 428 and write nothing

Design Decisions:
    - Intent in the path (/{other_id}/block) over a generic PATCH of the edge:
      the client expresses intent, the state machine decides the next state
"""

import logging

from fastapi import APIRouter, Depends

from friendsync.api.deps import current_user, get_relationship_service, idempotency_key
from friendsync.core.domain_types import UserId
from friendsync.schemas.relationship import (
    BlockRequest, ConfirmRequest, ReportRequest, TransitionResponse,
)
from friendsync.services.relationship_service import RelationshipService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/relationships", tags=["relationships"])


@router.post("/{other_id}/request", response_model=TransitionResponse)
async def send_request(
    other_id: str,
    actor: UserId = Depends(current_user),
    key: str | None = Depends(idempotency_key),
    service: RelationshipService = Depends(get_relationship_service),
):
    """Send a friend request (or accept theirs if they already asked)."""
    result = await service.send_request(actor, UserId(other_id), idempotency_key=key)
    return result.to_dict()


@router.post("/{other_id}/accept", response_model=TransitionResponse)
async def accept_request(
    other_id: str,
    actor: UserId = Depends(current_user),
    key: str | None = Depends(idempotency_key),
    service: RelationshipService = Depends(get_relationship_service),
):
    result = await service.accept_request(actor, UserId(other_id), idempotency_key=key)
    return result.to_dict()


@router.post("/{other_id}/decline", response_model=TransitionResponse)
async def decline_request(
    other_id: str,
    actor: UserId = Depends(current_user),
    key: str | None = Depends(idempotency_key),
    service: RelationshipService = Depends(get_relationship_service),
):
    result = await service.decline_request(actor, UserId(other_id), idempotency_key=key)
    return result.to_dict()


@router.post("/{other_id}/cancel", response_model=TransitionResponse)
async def cancel_request(
    other_id: str,
    actor: UserId = Depends(current_user),
    key: str | None = Depends(idempotency_key),
    service: RelationshipService = Depends(get_relationship_service),
):
    result = await service.cancel_request(actor, UserId(other_id), idempotency_key=key)
    return result.to_dict()


@router.post("/{other_id}/remove", response_model=TransitionResponse)
async def remove_friend(
    other_id: str,
    body: ConfirmRequest | None = None,
    actor: UserId = Depends(current_user),
    key: str | None = Depends(idempotency_key),
    service: RelationshipService = Depends(get_relationship_service),
):
    result = await service.remove_friend(
        actor, UserId(other_id),
        confirmed=bool(body and body.confirmed), idempotency_key=key,
    )
    return result.to_dict()


@router.post("/{other_id}/block", response_model=TransitionResponse)
async def block_user(
    other_id: str,
    body: BlockRequest | None = None,
    actor: UserId = Depends(current_user),
    key: str | None = Depends(idempotency_key),
    service: RelationshipService = Depends(get_relationship_service),
):
    body = body or BlockRequest()
    result = await service.block_user(
        actor, UserId(other_id), reason=body.reason,
        confirmed=body.confirmed, idempotency_key=key,
    )
    return result.to_dict()


@router.post("/{other_id}/unblock", response_model=TransitionResponse)
async def unblock_user(
    other_id: str,
    actor: UserId = Depends(current_user),
    key: str | None = Depends(idempotency_key),
    service: RelationshipService = Depends(get_relationship_service),
):
    result = await service.unblock_user(actor, UserId(other_id), idempotency_key=key)
    return result.to_dict()


@router.post("/{other_id}/report", response_model=TransitionResponse)
async def report_user(
    other_id: str,
    body: ReportRequest,
    actor: UserId = Depends(current_user),
    key: str | None = Depends(idempotency_key),
    service: RelationshipService = Depends(get_relationship_service),
):
    """Report and block in one step."""
    result = await service.report_user(
        actor, UserId(other_id), body.reason,
        confirmed=body.confirmed, idempotency_key=key,
    )
    logger.info(
        "User reported",
        extra={"actor_id": actor, "other_id": other_id, "operation": "report_user"},
    )
    return result.to_dict()
