"""sender roles, read receipts, system messages and per-viewer soft delete

Revision ID: 20261008_0002
Revises: 20261001_0001
Create Date: 2026-10-08 00:00:02
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "20261008_0002"
down_revision: str | None = "20261001_0001"
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.add_column("messages", sa.Column("sender_role", sa.String(length=32), nullable=True))
    op.add_column("messages", sa.Column("read_at", sa.DateTime(timezone=True), nullable=True))
    op.add_column(
        "messages",
        sa.Column("is_system_message", sa.Boolean(), server_default=sa.false(), nullable=False),
    )

    op.create_table(
        "message_deletions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("message_id", sa.Integer(), nullable=False),
        sa.Column("viewer_id", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["message_id"], ["messages.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("message_id", "viewer_id", name="uq_message_deletions_message_viewer"),
    )
    op.create_index("ix_message_deletions_message_id", "message_deletions", ["message_id"], unique=False)
    op.create_index("ix_message_deletions_viewer_id", "message_deletions", ["viewer_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_message_deletions_viewer_id", table_name="message_deletions")
    op.drop_index("ix_message_deletions_message_id", table_name="message_deletions")
    op.drop_table("message_deletions")
    op.drop_column("messages", "is_system_message")
    op.drop_column("messages", "read_at")
    op.drop_column("messages", "sender_role")
