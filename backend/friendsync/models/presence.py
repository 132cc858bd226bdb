"""Presence ORM: per-user online flag and privacy settings.

Invariants:
    - One presence row and at most one privacy row per user
    - Missing privacy row means both flags true
"""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from friendsync.db.base import Base


class PresenceModel(Base):
    __tablename__ = "presence"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    is_online: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False,
    )
    last_seen_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    status_animation_id: Mapped[str | None] = mapped_column(
        String(100), nullable=True,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class PrivacySettingsModel(Base):
    __tablename__ = "privacy_settings"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    show_online_status: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True,
    )
    show_last_seen: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True,
    )
