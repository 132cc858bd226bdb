"""RelationshipEdge ORM: one row per unordered user pair.

Invariants:
    - Composite primary key (user_low, user_high) with user_low < user_high
      (CHECK constraint): at most one edge per pair
    - status is one of: none, pending, friends, blocked
    - version is bumped on every committed transition; writes are conditional on it

Design Decisions:
    - Rows reverted to none are kept, so the pair's version keeps increasing
    - user_high indexed separately: list queries hit both columns
"""

from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from friendsync.db.base import Base


class RelationshipEdgeModel(Base):
    """Pair-centric relationship edge."""
    __tablename__ = "relationship_edges"
    __table_args__ = (
        CheckConstraint("user_low < user_high", name="ck_edge_ordered_pair"),
    )

    user_low: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_high: Mapped[str] = mapped_column(
        String(64), primary_key=True, index=True,
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="none",
    )
    initiator_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    blocked_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    accepted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
