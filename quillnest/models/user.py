"""
Quillnest Backend — User, Picture and Admin SQLAlchemy Models
===============================================================

What:  ORM models for the `users`, `pictures` and `admins` tables.
Who:   Owned by the CredentialStore (users) and UserService (pictures, admins).

Table Design Rationale:
    - UUID primary key: non-sequential, not enumerable
    - email / username unique: the credential store relies on the database
      constraint as the last word on duplicates
    - password_hash: bcrypt output only; plaintext is never stored
    - is_verified: flips to True when the email-verification link is used
    - is_admin: flips to True via the admin-promotion route
    - reset_token: the single active password-reset token (a new forgot-password
      request overwrites it, a successful reset clears it)
    - session_version: embedded in every session token; bumping it on signout
      invalidates every session token issued before
"""

import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from quillnest.database import Base

if TYPE_CHECKING:
    from quillnest.models.post import Post


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    """
    A registered account (the Identity record).

    Lifecycle:
        1. Created on signup (is_verified=False)
        2. is_verified=True once the emailed link is used
        3. reset_token set by forgot-password, cleared by reset-password
        4. session_version incremented on signout
        5. Hard-deleted on account deletion (dependents deleted first)
    """

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    username: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)

    # Stored lower-cased and stripped; lookups normalise the same way
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)

    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)

    is_admin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    reset_token: Mapped[Optional[str]] = mapped_column(Text, nullable=True, default=None)

    session_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Media-host public id of the current avatar (mirrors pictures.public_id)
    picture_id: Mapped[Optional[str]] = mapped_column(String(255), unique=True, nullable=True)

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

    picture: Mapped[Optional["Picture"]] = relationship(
        back_populates="user", uselist=False, passive_deletes=True,
    )
    posts: Mapped[list["Post"]] = relationship(
        back_populates="author", passive_deletes=True,
    )

    def __repr__(self) -> str:
        return (
            f"<User(id={self.id}, username='{self.username}', "
            f"verified={self.is_verified}, admin={self.is_admin})>"
        )


class Picture(Base):
    """A user's profile picture as stored on the media host."""

    __tablename__ = "pictures"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    url: Mapped[str] = mapped_column(String(1024), nullable=False)
    public_id: Mapped[str] = mapped_column(String(255), nullable=False)
    resource_type: Mapped[str] = mapped_column(String(20), nullable=False, default="image")
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )

    user: Mapped["User"] = relationship(back_populates="picture")


class Admin(Base):
    """Audit row recording that a user was promoted to admin."""

    __tablename__ = "admins"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )
