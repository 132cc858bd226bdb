"""Sync Gateway: per-subscriber event stream, snapshot first, deduplicated by version.

Invariants:
    - The change-feed subscription is registered BEFORE the snapshot is read, so
      no change committed after the snapshot can be missed
    - The snapshot event is always the first event of a stream
    - An edge change whose version is <= the last version delivered for that pair
      is dropped; presence changes are deduplicated by presence version
    - Presence topics follow the friend set: gained friend -> subscribed,
      lost friend -> unsubscribed
    - A gained friend's presence is emitted right after request_accepted;
      a lost friend's presence version is forgotten
    - A RESYNC marker (queue overflow) is answered with a fresh snapshot

Design Decisions:
    - The gateway never writes; it only reads projections and relays the feed
    - Changes published between subscribe and snapshot are filtered by the
      snapshot's versions, which is what makes the ordering race-free
"""

import logging
from dataclasses import dataclass, field
from typing import AsyncIterator

from friendsync.core.domain_types import (
    EdgeStatus, RelationshipState, SyncEventType, UserId,
)
from friendsync.core.presence_state import PresenceRecord
from friendsync.core.projections import friend_ids
from friendsync.core.sync_events import (
    EdgeChange, PresenceChange, SyncEvent, VersionTracker,
    derive_edge_event, presence_event, snapshot_event,
)
from friendsync.infrastructure.change_feed import (
    RESYNC, ChangeFeed, FeedMessage, Subscription, presence_topic, user_topic,
)
from friendsync.services.presence_service import PresenceService
from friendsync.services.relationship_service import RelationshipService

logger = logging.getLogger(__name__)

_ALL_STATUSES = tuple(EdgeStatus)


def _presence_key(user: UserId) -> str:
    return f"presence:{user}"


@dataclass
class _Stream:
    actor: UserId
    sub: Subscription
    tracker: VersionTracker = field(default_factory=VersionTracker)
    friends: set[UserId] = field(default_factory=set)


class SyncGateway:
    """Turns committed changes into one viewer's ordered event stream."""

    def __init__(
        self,
        relationships: RelationshipService,
        presence: PresenceService,
        feed: ChangeFeed,
    ):
        self.relationships = relationships
        self.presence = presence
        self.feed = feed

    async def subscribe(self, actor: UserId) -> AsyncIterator[SyncEvent]:
        """Snapshot, then incremental events until the consumer stops iterating."""
        stream = _Stream(actor=actor, sub=self.feed.subscribe([user_topic(actor)]))
        logger.info(
            "Sync stream opened",
            extra={"actor_id": actor, "subscriber": stream.sub.id},
        )
        try:
            yield await self._snapshot(stream)
            while True:
                message = await stream.sub.get()
                if message is RESYNC:
                    stream.sub.mark_fresh()
                    yield await self._snapshot(stream)
                    continue
                for event in await self._translate(stream, message):
                    yield event
        finally:
            stream.sub.close()
            logger.info(
                "Sync stream closed",
                extra={"actor_id": actor, "subscriber": stream.sub.id},
            )

    # ─── Snapshot ────────────────────────────────────────────────

    async def _snapshot(self, stream: _Stream) -> SyncEvent:
        actor = stream.actor
        store = self.relationships.store
        edges = await store.list_edges(actor, _ALL_STATUSES)
        blocks = await store.list_blocks_by(actor)
        self._follow_friends(stream, friend_ids(edges, actor))
        views = await self.presence.friends_presence(actor)

        by_state: dict[RelationshipState, list[dict]] = {}
        for edge in edges:
            by_state.setdefault(edge.state_for(actor), []).append(edge.to_dict(actor))
        versions = {str(edge.key): edge.version for edge in edges}

        seen = dict(versions)
        seen.update({_presence_key(v.user_id): v.version for v in views})
        stream.tracker.reset(seen)

        return snapshot_event(
            friends=by_state.get(RelationshipState.FRIENDS, []),
            incoming=by_state.get(RelationshipState.INCOMING_PENDING, []),
            outgoing=by_state.get(RelationshipState.OUTGOING_PENDING, []),
            blocked=[b.to_dict() for b in blocks],
            presence=[v.to_dict() for v in views],
            versions=versions,
        )

    # ─── Incremental ─────────────────────────────────────────────

    async def _translate(
        self, stream: _Stream, message: FeedMessage,
    ) -> list[SyncEvent]:
        payload = message.payload
        if isinstance(payload, EdgeChange):
            return await self._edge_events(stream, payload)
        if isinstance(payload, PresenceChange):
            event = await self._presence_event(stream, payload.record)
            return [event] if event else []
        logger.warning(
            f"Ignoring unknown feed payload on {message.topic}",
            extra={"actor_id": stream.actor},
        )
        return []

    async def _edge_events(
        self, stream: _Stream, change: EdgeChange,
    ) -> list[SyncEvent]:
        if not change.after.involves(stream.actor):
            return []
        if not stream.tracker.accept(str(change.after.key), change.version):
            return []
        event = derive_edge_event(change, stream.actor)
        if event is None:
            return []
        events = [event]
        other = change.after.key.other(stream.actor)
        if event.type == SyncEventType.REQUEST_ACCEPTED:
            # A new friend always gets a presence view, even an unchanged one
            self._follow_friends(stream, stream.friends | {other})
            record = await self.presence.store.get_presence(other)
            stream.tracker.accept(_presence_key(other), record.version)
            view = await self.presence.view_for(stream.actor, record, is_friend=True)
            events.append(presence_event(view.to_dict()))
        elif other in stream.friends and change.after.state_for(
            stream.actor,
        ) != RelationshipState.FRIENDS:
            self._follow_friends(stream, stream.friends - {other})
        return events

    async def _presence_event(
        self, stream: _Stream, record: PresenceRecord,
    ) -> SyncEvent | None:
        if record.user_id not in stream.friends:
            return None
        if not stream.tracker.accept(_presence_key(record.user_id), record.version):
            return None
        view = await self.presence.view_for(stream.actor, record, is_friend=True)
        return presence_event(view.to_dict())

    def _follow_friends(self, stream: _Stream, friends: set[UserId]) -> None:
        for gone in stream.friends - friends:
            stream.sub.remove_topic(presence_topic(gone))
            stream.tracker.forget(_presence_key(gone))
        for new in friends - stream.friends:
            stream.sub.add_topic(presence_topic(new))
        stream.friends = set(friends)
