"""Initial schema: sources, media, user interactions and folder grants

Revision ID: 0001
Revises: None
Create Date: 2026-10-18 00:00:00
"""
from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# revision identifiers
revision: str = "0001"
down_revision: str | None = None
branch_labels: str | None = None
depends_on: str | None = None


def _table_exists(name: str) -> bool:
    conn = op.get_bind()
    result = conn.execute(
        sa.text("SELECT 1 FROM sqlite_master WHERE type='table' AND name=:n"),
        {"n": name},
    )
    return result.fetchone() is not None


def upgrade() -> None:
    # Guarded so databases created by init_db() can be upgraded in place
    if not _table_exists("sources"):
        op.create_table(
            "sources",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("folder_path", sa.String(), nullable=False),
            sa.Column("display_name", sa.String(), nullable=False),
            sa.Column("avatar_seed", sa.String(), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False),
        )
        op.create_index("ix_sources_folder_path", "sources", ["folder_path"], unique=True)
        op.create_index("ix_sources_display_name", "sources", ["display_name"], unique=True)

    if not _table_exists("media"):
        op.create_table(
            "media",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("path", sa.String(), nullable=False),
            sa.Column("source_id", sa.String(), sa.ForeignKey("sources.id"), nullable=False),
            sa.Column("depth", sa.Integer(), nullable=False),
            sa.Column("media_type", sa.String(), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False),
        )
        op.create_index("ix_media_path", "media", ["path"], unique=True)
        op.create_index("ix_media_source_id", "media", ["source_id"])
        op.create_index("ix_media_media_type", "media", ["media_type"])

    if not _table_exists("user_interactions"):
        op.create_table(
            "user_interactions",
            sa.Column("user_id", sa.String(), primary_key=True),
            sa.Column("source_id", sa.String(), sa.ForeignKey("sources.id"), primary_key=True),
            sa.Column("media_id", sa.String(), sa.ForeignKey("media.id"), primary_key=True),
            sa.Column("liked", sa.Boolean(), nullable=False, server_default="0"),
            sa.Column("saved", sa.Boolean(), nullable=False, server_default="0"),
            sa.Column("hidden", sa.Boolean(), nullable=False, server_default="0"),
            sa.Column("view_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("last_viewed_at", sa.DateTime(), nullable=True),
        )
        op.create_index("ix_user_interactions_media_id", "user_interactions", ["media_id"])

    if not _table_exists("user_folders"):
        op.create_table(
            "user_folders",
            sa.Column("user_id", sa.String(), primary_key=True),
            sa.Column("source_id", sa.String(), sa.ForeignKey("sources.id"), primary_key=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
        )

    if not _table_exists("user_hidden_folders"):
        op.create_table(
            "user_hidden_folders",
            sa.Column("user_id", sa.String(), primary_key=True),
            sa.Column("source_id", sa.String(), sa.ForeignKey("sources.id"), primary_key=True),
            sa.Column("folder_path", sa.String(), primary_key=True),
            sa.Column("hidden", sa.Boolean(), nullable=False, server_default="1"),
        )


def downgrade() -> None:
    # Reverse FK order
    op.drop_table("user_hidden_folders")
    op.drop_table("user_folders")
    op.drop_table("user_interactions")
    op.drop_table("media")
    op.drop_table("sources")
