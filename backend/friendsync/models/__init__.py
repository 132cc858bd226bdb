"""ORM Models: SQLAlchemy declarative models for all persisted entities.

Invariants:
    - All models inherit from Base (db/base.py)
    - No ORM relationship(): pairs are addressed by key, never navigated

Design Decisions:
    - One file per entity for locality
    - All models imported here so Base.metadata is complete before create_all
"""

from friendsync.models.relationship_edge import RelationshipEdgeModel  # noqa: F401
from friendsync.models.block import BlockModel  # noqa: F401
from friendsync.models.report import ReportModel  # noqa: F401
from friendsync.models.presence import PresenceModel, PrivacySettingsModel  # noqa: F401
from friendsync.models.idempotency_key import IdempotencyKeyModel  # noqa: F401
