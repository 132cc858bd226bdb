"""Presence Store: SQLAlchemy implementation of PresenceRepository.

Invariants:
    - A user with no presence row reads as offline at version 0
    - A user with no privacy row reads as PrivacySettings() (everything visible)
    - save_presence is conditional on the version the caller read (UPDATE ...
      WHERE version = expected, or INSERT for a user never seen); a lost race
      returns False and writes nothing

Design Decisions:
    - Privacy writes stay plain upserts (session.merge); they carry no version
      and are always followed by a versioned presence write
"""

from typing import Iterable

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from friendsync.core.domain_types import UserId
from friendsync.core.presence_state import PresenceRecord, PrivacySettings
from friendsync.infrastructure.database import DatabaseSessionManager
from friendsync.models.presence import PresenceModel, PrivacySettingsModel
from friendsync.services.relationship_store import as_utc


class SqlPresenceStore:
    """Presence and privacy persistence on top of DatabaseSessionManager."""

    def __init__(self, db: DatabaseSessionManager):
        self._db = db

    async def get_presence(self, user: UserId) -> PresenceRecord:
        found = await self.get_presence_many([user])
        return found[user]

    async def get_presence_many(
        self, users: Iterable[UserId],
    ) -> dict[UserId, PresenceRecord]:
        wanted = list(users)
        records = {u: PresenceRecord(user_id=u) for u in wanted}
        if not wanted:
            return records
        async with self._db.session() as db:
            result = await db.execute(
                select(PresenceModel).where(PresenceModel.user_id.in_(wanted))
            )
            for m in result.scalars().all():
                records[UserId(m.user_id)] = PresenceRecord(
                    user_id=UserId(m.user_id),
                    is_online=m.is_online,
                    last_seen_at=as_utc(m.last_seen_at),
                    status_animation_id=m.status_animation_id,
                    version=m.version,
                )
        return records

    async def save_presence(
        self, record: PresenceRecord, expected_version: int,
    ) -> bool:
        """Write record if the stored row is still at expected_version."""
        columns = {
            "is_online": record.is_online,
            "last_seen_at": record.last_seen_at,
            "status_animation_id": record.status_animation_id,
            "version": record.version,
        }
        async with self._db.session() as db:
            try:
                if expected_version == 0:
                    db.add(PresenceModel(user_id=record.user_id, **columns))
                    await db.flush()
                else:
                    result = await db.execute(
                        update(PresenceModel)
                        .where(
                            PresenceModel.user_id == record.user_id,
                            PresenceModel.version == expected_version,
                        )
                        .values(**columns)
                    )
                    if result.rowcount != 1:
                        await db.rollback()
                        return False
                await db.commit()
            except IntegrityError:
                await db.rollback()
                return False
        return True

    async def get_privacy(self, user: UserId) -> PrivacySettings:
        found = await self.get_privacy_many([user])
        return found[user]

    async def get_privacy_many(
        self, users: Iterable[UserId],
    ) -> dict[UserId, PrivacySettings]:
        wanted = list(users)
        settings = {u: PrivacySettings() for u in wanted}
        if not wanted:
            return settings
        async with self._db.session() as db:
            result = await db.execute(
                select(PrivacySettingsModel)
                .where(PrivacySettingsModel.user_id.in_(wanted))
            )
            for m in result.scalars().all():
                settings[UserId(m.user_id)] = PrivacySettings(
                    show_online_status=m.show_online_status,
                    show_last_seen=m.show_last_seen,
                )
        return settings

    async def save_privacy(
        self, user: UserId, settings: PrivacySettings,
    ) -> None:
        async with self._db.session() as db:
            await db.merge(PrivacySettingsModel(
                user_id=user,
                show_online_status=settings.show_online_status,
                show_last_seen=settings.show_last_seen,
            ))
            await db.commit()
