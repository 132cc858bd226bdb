"""Report ORM: abuse reports, always committed together with a block.

Invariants:
    - reason is non-empty (enforced before the write, in core/)
    - resulting_block is true for every committed row
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.dialects.postgresql import UUID

from friendsync.db.base import Base


class ReportModel(Base):
    __tablename__ = "reports"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    reporter_id: Mapped[str] = mapped_column(
        String(64), nullable=False, index=True,
    )
    reported_id: Mapped[str] = mapped_column(String(64), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    resulting_block: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True,
    )
    reported_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
