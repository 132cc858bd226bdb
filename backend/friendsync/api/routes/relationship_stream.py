"""Relationship Stream: SSE delivery of the caller's SyncGateway events.

Invariants:
    - First SSE event is always the snapshot
    - Client disconnect closes the feed subscription (generator finally)
    - A domain error mid-stream becomes an SSE error event, never a broken socket

Design Decisions:
    - StreamingResponse for SSE: event_generator yields formatted SSE lines
    - Registered in main.py before relationship_queries so /stream is not
      captured by GET /{other_id}
"""

import asyncio
import json
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from friendsync.api.deps import current_user, get_sync_gateway
from friendsync.core.domain_types import UserId
from friendsync.core.errors import FriendSyncError
from friendsync.services.sync_gateway import SyncGateway

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/relationships", tags=["sync"])

# SSE headers prevent proxy/browser buffering of streamed events
_SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "X-Accel-Buffering": "no",
    "Connection": "keep-alive",
}


@router.get("/stream")
async def stream_events(
    actor: UserId = Depends(current_user),
    gateway: SyncGateway = Depends(get_sync_gateway),
):
    """Subscribe to relationship and friends' presence changes."""

    async def event_generator():
        events = gateway.subscribe(actor)
        try:
            async for event in events:
                yield sse_line(event.to_dict())
        except FriendSyncError as e:
            logger.error(
                f"Sync stream failed: {e.message}",
                extra={"actor_id": actor, "error_code": e.code},
            )
            yield sse_line(e.to_sse_event())
        except asyncio.CancelledError:
            logger.info("Client disconnected from stream", extra={"actor_id": actor})
            raise
        finally:
            await events.aclose()

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers=_SSE_HEADERS,
    )


def sse_line(event: dict) -> str:
    """Format event as SSE data line."""
    return f"data: {json.dumps(event, ensure_ascii=False, default=str)}\n\n"
