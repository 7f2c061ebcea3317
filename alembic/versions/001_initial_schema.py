"""Initial schema: users, pictures, admins, posts, media files, comments, likes, shares

Revision ID: 001
Revises: None
Create Date: 2024-06-01 00:00:00.000000+00:00

Every foreign key is ON DELETE CASCADE. The services still delete
dependents explicitly; the cascade is the backstop for manual SQL.

Rollback: downgrade() drops every table (destructive, all data lost).
"""

from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamp(name: str) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        server_default=sa.text("CURRENT_TIMESTAMP"),
        nullable=False,
    )


def _user_fk(unique: bool = False) -> sa.Column:
    return sa.Column(
        "user_id",
        sa.Uuid(),
        sa.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        unique=unique,
    )


def _post_fk() -> sa.Column:
    return sa.Column(
        "post_id",
        sa.Uuid(),
        sa.ForeignKey("posts.id", ondelete="CASCADE"),
        nullable=False,
    )


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("username", sa.String(50), nullable=False, unique=True),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("is_admin", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        # Only the latest reset token is valid; NULL when none is pending
        sa.Column("reset_token", sa.Text(), nullable=True),
        # Bumped on signout / password reset; embedded in session tokens as "sv"
        sa.Column("session_version", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("picture_id", sa.String(255), nullable=True, unique=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )
    op.create_index("ix_users_email", "users", ["email"])

    op.create_table(
        "pictures",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("url", sa.String(1024), nullable=False),
        sa.Column("public_id", sa.String(255), nullable=False),
        sa.Column("resource_type", sa.String(20), nullable=False, server_default="image"),
        _user_fk(unique=True),
    )

    op.create_table(
        "admins",
        sa.Column("id", sa.Uuid(), primary_key=True),
        _user_fk(unique=True),
        _timestamp("created_at"),
    )

    op.create_table(
        "posts",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column(
            "author_id",
            sa.Uuid(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )
    op.create_index("ix_posts_author_id", "posts", ["author_id"])
    # Feed query: ORDER BY created_at DESC with a cursor
    op.create_index("idx_posts_created_at", "posts", [sa.text("created_at DESC")])

    op.create_table(
        "media_files",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("url", sa.String(1024), nullable=False),
        sa.Column("public_id", sa.String(255), nullable=False),
        sa.Column("resource_type", sa.String(20), nullable=False, server_default="image"),
        _post_fk(),
    )
    op.create_index("ix_media_files_post_id", "media_files", ["post_id"])

    op.create_table(
        "comments",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("content", sa.Text(), nullable=False),
        _post_fk(),
        sa.Column(
            "author_id",
            sa.Uuid(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )
    op.create_index("ix_comments_post_id", "comments", ["post_id"])
    op.create_index("ix_comments_author_id", "comments", ["author_id"])

    for table in ("likes", "shares"):
        op.create_table(
            table,
            sa.Column("id", sa.Uuid(), primary_key=True),
            _post_fk(),
            _user_fk(),
            _timestamp("created_at"),
            # At most one like (share) per user and post, even under races
            sa.UniqueConstraint("post_id", "user_id", name=f"uq_{table}_post_user"),
        )
        op.create_index(f"ix_{table}_user_id", table, ["user_id"])


def downgrade() -> None:
    for table in ("shares", "likes"):
        op.drop_index(f"ix_{table}_user_id", table_name=table)
        op.drop_table(table)
    op.drop_index("ix_comments_author_id", table_name="comments")
    op.drop_index("ix_comments_post_id", table_name="comments")
    op.drop_table("comments")
    op.drop_index("ix_media_files_post_id", table_name="media_files")
    op.drop_table("media_files")
    op.drop_index("idx_posts_created_at", table_name="posts")
    op.drop_index("ix_posts_author_id", table_name="posts")
    op.drop_table("posts")
    op.drop_table("admins")
    op.drop_table("pictures")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
