"""Presence Routes: session lifecycle, privacy settings, and redacted reads.

Invariants:
    - A user only ever writes their own presence (identity from X-User-Id)
    - POST /{user_id}/disconnect is the transport's hook: it carries the user in
      the path because the disconnected client can no longer call in itself.
      It requires X-Transport-Token and answers 204 with no body
    - Every read is redacted for the caller

Design Decisions:
    - Fixed paths (/friends, /privacy) declared before GET /{other_id}
"""

from fastapi import APIRouter, Depends, Response, status

from friendsync.api.deps import current_user, get_presence_service, transport_caller
from friendsync.core.domain_types import UserId
from friendsync.schemas.presence import (
    PresenceResponse, PrivacyResponse, PrivacyUpdate, SessionStart,
    SessionStartResponse, StatusAnimationUpdate,
)
from friendsync.services.presence_service import PresenceService

router = APIRouter(prefix="/api/v1/presence", tags=["presence"])


@router.post("/session", response_model=SessionStartResponse)
async def start_session(
    body: SessionStart | None = None,
    actor: UserId = Depends(current_user),
    service: PresenceService = Depends(get_presence_service),
):
    """Go online; the response carries the heartbeat cadence to use."""
    animation = body.status_animation_id if body else None
    return await service.start_session(actor, animation)


@router.post("/heartbeat", response_model=PresenceResponse)
async def heartbeat(
    actor: UserId = Depends(current_user),
    service: PresenceService = Depends(get_presence_service),
):
    return PresenceResponse.from_view(await service.heartbeat(actor))


@router.post("/sign-out", response_model=PresenceResponse)
async def sign_out(
    actor: UserId = Depends(current_user),
    service: PresenceService = Depends(get_presence_service),
):
    return PresenceResponse.from_view(await service.sign_out(actor))


@router.post(
    "/{user_id}/disconnect",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(transport_caller)],
)
async def handle_disconnect(
    user_id: str,
    service: PresenceService = Depends(get_presence_service),
):
    """Transport-reported disconnect. Nothing about the user is returned."""
    await service.handle_disconnect(UserId(user_id))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put("/status-animation", response_model=PresenceResponse)
async def set_status_animation(
    body: StatusAnimationUpdate,
    actor: UserId = Depends(current_user),
    service: PresenceService = Depends(get_presence_service),
):
    view = await service.set_status_animation(actor, body.status_animation_id)
    return PresenceResponse.from_view(view)


@router.get("/privacy", response_model=PrivacyResponse)
async def get_privacy(
    actor: UserId = Depends(current_user),
    service: PresenceService = Depends(get_presence_service),
):
    return PrivacyResponse.from_settings(await service.get_privacy(actor))


@router.put("/privacy", response_model=PrivacyResponse)
async def update_privacy(
    body: PrivacyUpdate,
    actor: UserId = Depends(current_user),
    service: PresenceService = Depends(get_presence_service),
):
    settings = await service.update_privacy(
        actor,
        show_online_status=body.show_online_status,
        show_last_seen=body.show_last_seen,
    )
    return PrivacyResponse.from_settings(settings)


@router.get("/friends", response_model=list[PresenceResponse])
async def friends_presence(
    actor: UserId = Depends(current_user),
    service: PresenceService = Depends(get_presence_service),
):
    views = await service.friends_presence(actor)
    return [PresenceResponse.from_view(v) for v in views]


@router.get("/{other_id}", response_model=PresenceResponse)
async def presence_of(
    other_id: str,
    actor: UserId = Depends(current_user),
    service: PresenceService = Depends(get_presence_service),
):
    return PresenceResponse.from_view(
        await service.presence_of(actor, UserId(other_id)),
    )
