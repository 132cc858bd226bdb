"""Presence Service: session lifecycle, privacy, and redacted presence reads.

Invariants:
    - Every write is conditional on the version just read; a lost write re-reads
      and re-applies, so a heartbeat can never overwrite a concurrent sign-out
      it did not see
    - Only the owner's own calls (and the transport's disconnect signal) write
      a user's presence
    - Every visible change is published on presence_topic(user) with the new version
    - Reads always go through redact_presence: a viewer never receives a field
      the owner's privacy settings hide

Design Decisions:
    - Heartbeats publish only when the winning read was not effectively
      online, so a healthy session does not fan out every
      heartbeat_interval_seconds
    - Privacy updates bump the presence version and publish, so subscribers
      re-render with the new redaction
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable

from friendsync.config import Settings, get_settings
from friendsync.core.domain_types import UserId
from friendsync.core.errors import ErrorContext, TransientStoreFailureError
from friendsync.core.presence_state import (
    PresenceRecord, PresenceView, PrivacySettings, go_offline, go_online,
    is_effectively_online, record_heartbeat, redact_presence,
    set_status_animation, touch,
)
from friendsync.core.repository_protocols import PresenceRepository
from friendsync.core.sync_events import PresenceChange
from friendsync.infrastructure.change_feed import ChangeFeed, presence_topic
from friendsync.services.relationship_service import RelationshipService

logger = logging.getLogger(__name__)

# (read record, now) -> (new record, visible to subscribers)
PresenceStep = Callable[[PresenceRecord, datetime], tuple[PresenceRecord, bool]]


class PresenceService:
    """Presence tracking for one process."""

    def __init__(
        self,
        store: PresenceRepository,
        relationships: RelationshipService,
        feed: ChangeFeed,
        settings: Settings | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.relationships = relationships
        self.feed = feed
        self.settings = settings or get_settings()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def stale_after(self) -> timedelta:
        return timedelta(seconds=self.settings.presence_stale_after_seconds)

    # ─── Session lifecycle ───────────────────────────────────────

    async def start_session(
        self, user: UserId, status_animation_id: str | None = None,
    ) -> dict:
        """Offline -> Online. Returns the caller's own view and heartbeat cadence."""
        view = await self._apply(
            user,
            lambda record, now: (go_online(record, now, status_animation_id), True),
            "Presence session started",
        )
        return {
            "presence": view.to_dict(),
            "heartbeat_interval_seconds": self.settings.heartbeat_interval_seconds,
        }

    async def heartbeat(self, user: UserId) -> PresenceView:
        def step(record, now):
            revived = not is_effectively_online(record, now, self.stale_after)
            return record_heartbeat(record, now), revived
        return await self._apply(user, step)

    async def sign_out(self, user: UserId) -> PresenceView:
        return await self._go_offline(user, "sign_out")

    async def handle_disconnect(self, user: UserId) -> PresenceView:
        """Consume a disconnect detected by the transport."""
        return await self._go_offline(user, "disconnect")

    async def set_status_animation(
        self, user: UserId, animation_id: str | None,
    ) -> PresenceView:
        return await self._apply(
            user,
            lambda record, now: (set_status_animation(record, animation_id), True),
        )

    async def _go_offline(self, user: UserId, cause: str) -> PresenceView:
        return await self._apply(
            user,
            lambda record, now: (go_offline(record, now), True),
            f"Presence went offline ({cause})",
        )

    # ─── Privacy ─────────────────────────────────────────────────

    async def get_privacy(self, user: UserId) -> PrivacySettings:
        return await self.store.get_privacy(user)

    async def update_privacy(
        self,
        user: UserId,
        show_online_status: bool | None = None,
        show_last_seen: bool | None = None,
    ) -> PrivacySettings:
        current = await self.store.get_privacy(user)
        updated = PrivacySettings(
            show_online_status=(
                current.show_online_status
                if show_online_status is None else show_online_status
            ),
            show_last_seen=(
                current.show_last_seen if show_last_seen is None else show_last_seen
            ),
        )
        if updated == current:
            return current
        await self.store.save_privacy(user, updated)
        await self._apply(
            user, lambda record, now: (touch(record), True),
            "Privacy settings updated",
        )
        return updated

    # ─── Reads ───────────────────────────────────────────────────

    async def presence_of(self, viewer: UserId, other: UserId) -> PresenceView:
        """Presence of `other` as `viewer` may see it."""
        record = await self.store.get_presence(other)
        if viewer == other:
            return self._own_view(record, self._clock())
        friends = await self.relationships.friend_ids(viewer)
        return await self.view_for(viewer, record, is_friend=other in friends)

    async def friends_presence(self, viewer: UserId) -> list[PresenceView]:
        friends = sorted(await self.relationships.friend_ids(viewer))
        records = await self.store.get_presence_many(friends)
        privacy = await self.store.get_privacy_many(friends)
        now = self._clock()
        return [
            redact_presence(
                records[f], privacy[f], viewer=viewer, is_friend=True,
                now=now, stale_after=self.stale_after,
            )
            for f in friends
        ]

    async def view_for(
        self, viewer: UserId, record: PresenceRecord, *, is_friend: bool,
    ) -> PresenceView:
        """Redact an already-loaded record for one viewer."""
        privacy = await self.store.get_privacy(record.user_id)
        return redact_presence(
            record, privacy, viewer=viewer, is_friend=is_friend,
            now=self._clock(), stale_after=self.stale_after,
        )

    def _own_view(self, record: PresenceRecord, now: datetime) -> PresenceView:
        return redact_presence(
            record, PrivacySettings(), viewer=record.user_id, is_friend=False,
            now=now, stale_after=self.stale_after,
        )

    async def _apply(
        self, user: UserId, step: PresenceStep, logged: str | None = None,
    ) -> PresenceView:
        """Read, step, and write user's presence if nobody wrote in between.

        step returns the new record (the same object when nothing changes) and
        whether subscribers should hear about it. Returns the owner's view.
        """
        attempts = self.settings.cas_max_attempts
        for attempt in range(1, attempts + 1):
            now = self._clock()
            record = await self.store.get_presence(user)
            updated, visible = step(record, now)
            if updated is record:
                return self._own_view(record, now)
            if not await self.store.save_presence(updated, record.version):
                logger.info(
                    "Presence write lost, re-reading",
                    extra={
                        "actor_id": user, "version": record.version,
                        "attempt": attempt,
                    },
                )
                continue
            if visible:
                self.feed.publish(presence_topic(user), PresenceChange(updated))
            if logged:
                logger.info(logged, extra={"actor_id": user})
            return self._own_view(updated, now)

        raise TransientStoreFailureError(
            f"presence stayed contended for {attempts} attempts",
            "compare_and_swap", ErrorContext(actor_id=user),
        )
