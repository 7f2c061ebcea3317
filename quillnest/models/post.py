"""
Quillnest Backend — Post and MediaFile SQLAlchemy Models
==========================================================

What:  ORM models for the `posts` and `media_files` tables.
Who:   Used by PostService; comments, likes and shares hang off a post.

Deletion:
    Foreign keys declare ON DELETE CASCADE, but PostService still deletes
    likes, shares, comments and media rows explicitly before the post, and
    removes the media assets from the media host first.

Index on (created_at DESC):
    Serves the feed query (newest first, cursor-paginated).
"""

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, Index, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from quillnest.database import Base
from quillnest.models.user import utcnow

if TYPE_CHECKING:
    from quillnest.models.comment import Comment, Like, Share
    from quillnest.models.user import User


class Post(Base):
    """A blog post written by one user."""

    __tablename__ = "posts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    author_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now(),
    )

    author: Mapped["User"] = relationship(back_populates="posts")
    media_files: Mapped[list["MediaFile"]] = relationship(
        back_populates="post", passive_deletes=True,
    )
    comments: Mapped[list["Comment"]] = relationship(
        back_populates="post", passive_deletes=True,
    )
    likes: Mapped[list["Like"]] = relationship(passive_deletes=True)
    shares: Mapped[list["Share"]] = relationship(passive_deletes=True)

    __table_args__ = (
        Index("idx_posts_created_at", created_at.desc()),
    )

    def __repr__(self) -> str:
        return f"<Post(id={self.id}, author_id={self.author_id}, title='{self.title[:30]}')>"


class MediaFile(Base):
    """
    One uploaded attachment of a post.

    `public_id` and `resource_type` are what the media host needs to delete
    the asset later (documents are stored as "raw", pictures as "image").
    """

    __tablename__ = "media_files"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    url: Mapped[str] = mapped_column(String(1024), nullable=False)
    public_id: Mapped[str] = mapped_column(String(255), nullable=False)
    resource_type: Mapped[str] = mapped_column(String(20), nullable=False, default="image")
    post_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("posts.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )

    post: Mapped["Post"] = relationship(back_populates="media_files")
