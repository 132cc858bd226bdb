"""IdempotencyKey ORM: outcome of a keyed mutation, keyed by (actor, key).

Invariants:
    - Written in the same transaction as the mutation it records
    - result holds the JSON the API returned, replayed verbatim on retry
"""

from datetime import datetime, timezone

from sqlalchemy import DateTime, JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from friendsync.db.base import Base


class IdempotencyKeyModel(Base):
    __tablename__ = "idempotency_keys"

    actor_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    key: Mapped[str] = mapped_column(String(128), primary_key=True)
    operation: Mapped[str] = mapped_column(String(30), nullable=False)
    other_id: Mapped[str] = mapped_column(String(64), nullable=False)
    result: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
