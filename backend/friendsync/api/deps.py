"""API Dependencies: caller identity and service construction per request.

Invariants:
    - The caller's UserId comes only from the X-User-Id header set by the
      upstream auth gateway; a missing or blank header is 401
    - The disconnect hook is authenticated by X-Transport-Token (transport_token
      setting), never by a user identity
    - Services are built from the module-level singletons at request time, so
      tests that swap database.db_manager / change_feed.change_feed take effect

Design Decisions:
    - Plain FastAPI Depends functions, no DI container
"""

import hmac

from fastapi import Depends, Header, HTTPException, status

from friendsync.config import Settings, get_settings
from friendsync.core.domain_types import UserId
from friendsync.infrastructure import change_feed, database
from friendsync.services.presence_service import PresenceService
from friendsync.services.presence_store import SqlPresenceStore
from friendsync.services.relationship_service import RelationshipService
from friendsync.services.relationship_store import SqlRelationshipStore
from friendsync.services.sync_gateway import SyncGateway


async def current_user(
    x_user_id: str | None = Header(None, alias="X-User-Id"),
) -> UserId:
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status.HTTP_401_UNAUTHORIZED,
            detail={"error": {
                "code": "UNAUTHENTICATED",
                "message": "Missing X-User-Id header",
            }},
        )
    return UserId(x_user_id.strip())


async def transport_caller(
    token: str | None = Header(None, alias="X-Transport-Token"),
    settings: Settings = Depends(get_settings),
) -> None:
    """Only the connection transport may report a disconnect."""
    expected = settings.transport_token
    if not expected or not token or not hmac.compare_digest(token, expected):
        raise HTTPException(
            status.HTTP_401_UNAUTHORIZED,
            detail={"error": {
                "code": "UNAUTHENTICATED",
                "message": "Missing or invalid X-Transport-Token header",
            }},
        )


async def idempotency_key(
    key: str | None = Header(None, alias="Idempotency-Key", max_length=128),
) -> str | None:
    return key.strip() if key and key.strip() else None


def get_relationship_service(
    settings: Settings = Depends(get_settings),
) -> RelationshipService:
    return RelationshipService(
        SqlRelationshipStore(database.get_db_manager()),
        change_feed.get_change_feed(),
        settings,
    )


def get_presence_service(
    relationships: RelationshipService = Depends(get_relationship_service),
    settings: Settings = Depends(get_settings),
) -> PresenceService:
    return PresenceService(
        SqlPresenceStore(database.get_db_manager()),
        relationships,
        change_feed.get_change_feed(),
        settings,
    )


def get_sync_gateway(
    relationships: RelationshipService = Depends(get_relationship_service),
    presence: PresenceService = Depends(get_presence_service),
) -> SyncGateway:
    return SyncGateway(relationships, presence, change_feed.get_change_feed())
