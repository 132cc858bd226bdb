"""Presence Schemas: request bodies and responses for /presence.

Invariants:
    - A hidden presence field is null in the response, never omitted or faked
"""

from datetime import datetime

from pydantic import BaseModel, Field

from friendsync.core.presence_state import PresenceView, PrivacySettings


class SessionStart(BaseModel):
    status_animation_id: str | None = Field(None, max_length=100)


class StatusAnimationUpdate(BaseModel):
    status_animation_id: str | None = Field(None, max_length=100)


class PrivacyUpdate(BaseModel):
    """Partial update: omitted flags keep their current value."""
    show_online_status: bool | None = None
    show_last_seen: bool | None = None


class PrivacyResponse(BaseModel):
    show_online_status: bool
    show_last_seen: bool

    @classmethod
    def from_settings(cls, settings: PrivacySettings) -> "PrivacyResponse":
        return cls(**settings.to_dict())


class PresenceResponse(BaseModel):
    user_id: str
    is_online: bool | None = None
    last_seen_at: datetime | None = None
    status_animation_id: str | None = None
    version: int = 0

    @classmethod
    def from_view(cls, view: PresenceView) -> "PresenceResponse":
        return cls(
            user_id=view.user_id,
            is_online=view.is_online,
            last_seen_at=view.last_seen_at,
            status_animation_id=view.status_animation_id,
            version=view.version,
        )


class SessionStartResponse(BaseModel):
    presence: PresenceResponse
    heartbeat_interval_seconds: int
