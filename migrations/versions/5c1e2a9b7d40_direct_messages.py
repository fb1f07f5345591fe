"""direct messages

Revision ID: 5c1e2a9b7d40
Revises:
Create Date: 2026-10-18 09:12:44.318204

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "5c1e2a9b7d40"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create accounts, posts and the direct message store."""
    op.create_table(
        "user_account",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("username", sa.String(length=64), nullable=False),
        sa.Column("display_name", sa.String(length=100), nullable=False),
        sa.Column("profile_image", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("username"),
    )
    op.create_table(
        "post",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("author_id", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(length=300), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("image", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["author_id"], ["user_account.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "direct_message",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("sender_id", sa.Integer(), nullable=False),
        sa.Column("receiver_id", sa.Integer(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("kind", sa.String(length=16), nullable=False, server_default="text"),
        sa.Column("shared_post_id", sa.Integer(), nullable=True),
        sa.Column("shared_preview_title", sa.Text(), nullable=True),
        sa.Column("shared_preview_excerpt", sa.Text(), nullable=True),
        sa.Column("shared_preview_image", sa.Text(), nullable=True),
        sa.Column("client_id", sa.String(length=64), nullable=True),
        sa.ForeignKeyConstraint(["receiver_id"], ["user_account.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["sender_id"], ["user_account.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["shared_post_id"], ["post.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("sender_id", "client_id", name="uq_direct_message_client_id"),
    )
    op.create_index(
        "ix_direct_message_pair",
        "direct_message",
        ["sender_id", "receiver_id", "created_at"],
        unique=False,
    )
    op.create_index(
        "ix_direct_message_unread",
        "direct_message",
        ["receiver_id", "read"],
        unique=False,
    )


def downgrade() -> None:
    """Drop the direct message store, posts and accounts."""
    op.drop_index("ix_direct_message_unread", table_name="direct_message")
    op.drop_index("ix_direct_message_pair", table_name="direct_message")
    op.drop_table("direct_message")
    op.drop_table("post")
    op.drop_table("user_account")
