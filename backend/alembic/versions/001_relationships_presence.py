"""Initial schema: relationship edges, blocks, reports, presence, idempotency keys.

Revision ID: 001_initial
Revises: None
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "relationship_edges",
        sa.Column("user_low", sa.String(64), primary_key=True),
        sa.Column("user_high", sa.String(64), primary_key=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="none"),
        sa.Column("initiator_id", sa.String(64), nullable=True),
        sa.Column("blocked_by", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
        sa.CheckConstraint("user_low < user_high", name="ck_edge_ordered_pair"),
    )
    op.create_index(
        "ix_relationship_edges_user_high", "relationship_edges", ["user_high"],
    )

    op.create_table(
        "blocks",
        sa.Column("blocker_id", sa.String(64), primary_key=True),
        sa.Column("blocked_id", sa.String(64), primary_key=True),
        sa.Column("reason", sa.Text, nullable=True),
        sa.Column("blocked_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_blocks_blocked_id", "blocks", ["blocked_id"])

    op.create_table(
        "reports",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("reporter_id", sa.String(64), nullable=False),
        sa.Column("reported_id", sa.String(64), nullable=False),
        sa.Column("reason", sa.Text, nullable=False),
        sa.Column("resulting_block", sa.Boolean, nullable=False, server_default="true"),
        sa.Column("reported_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_reports_reporter_id", "reports", ["reporter_id"])

    op.create_table(
        "presence",
        sa.Column("user_id", sa.String(64), primary_key=True),
        sa.Column("is_online", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("last_seen_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status_animation_id", sa.String(100), nullable=True),
        sa.Column("version", sa.Integer, nullable=False, server_default="0"),
    )

    op.create_table(
        "privacy_settings",
        sa.Column("user_id", sa.String(64), primary_key=True),
        sa.Column("show_online_status", sa.Boolean, nullable=False, server_default="true"),
        sa.Column("show_last_seen", sa.Boolean, nullable=False, server_default="true"),
    )

    op.create_table(
        "idempotency_keys",
        sa.Column("actor_id", sa.String(64), primary_key=True),
        sa.Column("key", sa.String(128), primary_key=True),
        sa.Column("operation", sa.String(30), nullable=False),
        sa.Column("other_id", sa.String(64), nullable=False),
        sa.Column("result", sa.JSON, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table("idempotency_keys")
    op.drop_table("privacy_settings")
    op.drop_table("presence")
    op.drop_index("ix_reports_reporter_id", table_name="reports")
    op.drop_table("reports")
    op.drop_index("ix_blocks_blocked_id", table_name="blocks")
    op.drop_table("blocks")
    op.drop_index("ix_relationship_edges_user_high", table_name="relationship_edges")
    op.drop_table("relationship_edges")
