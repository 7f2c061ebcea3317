"""
Quillnest Backend — Credential Store
======================================

What:  The only code that reads or writes rows of the `users` table.
Why:   The authentication gate, the credential flows and the user service all
       need the same lookups. Keeping them in one leaf module keeps email
       normalisation and duplicate handling consistent.
Who:   AuthService, UserService, the authentication gate.

Duplicate handling:
    create()/update() pre-check email and username for a friendly message,
    then rely on the unique constraints: an IntegrityError raised by a
    concurrent insert is translated into ConflictError as well.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Any, List, Optional, Union

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from quillnest.exceptions import ConflictError, NotFoundError
from quillnest.models.user import User

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = frozenset({
    "username",
    "email",
    "password_hash",
    "is_admin",
    "is_verified",
    "reset_token",
    "session_version",
    "picture_id",
})


@dataclass(frozen=True)
class Identity:
    """
    The authenticated caller, as attached to `request.state.identity`.

    `is_admin` is read from the stored row on every request, never from the
    token, so a demotion takes effect immediately.
    """
    subject_id: uuid.UUID
    is_admin: bool = False


def normalize_email(email: str) -> str:
    return email.strip().lower()


def as_uuid(value: Union[str, uuid.UUID, None]) -> Optional[uuid.UUID]:
    """Parse a user id; None for anything that is not a UUID."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (ValueError, TypeError, AttributeError):
        return None


class CredentialStore:
    """Stateless repository over `users`; every method takes the session."""

    async def get_by_id(self, db: AsyncSession, user_id: Union[str, uuid.UUID]) -> Optional[User]:
        parsed = as_uuid(user_id)
        if parsed is None:
            return None
        return await db.get(User, parsed)

    async def require_by_id(self, db: AsyncSession, user_id: Union[str, uuid.UUID]) -> User:
        user = await self.get_by_id(db, user_id)
        if user is None:
            raise NotFoundError(resource="user", resource_id=str(user_id), message="User not found")
        return user

    async def get_by_email(self, db: AsyncSession, email: str) -> Optional[User]:
        result = await db.execute(select(User).where(User.email == normalize_email(email)))
        return result.scalar_one_or_none()

    async def get_by_username(self, db: AsyncSession, username: str) -> Optional[User]:
        result = await db.execute(select(User).where(User.username == username))
        return result.scalar_one_or_none()

    async def list_users(self, db: AsyncSession, newest_first: bool = True) -> List[User]:
        order = User.created_at.desc() if newest_first else User.created_at.asc()
        result = await db.execute(select(User).order_by(order))
        return list(result.scalars().all())

    async def create(
        self,
        db: AsyncSession,
        username: str,
        email: str,
        password_hash: str,
        is_admin: bool = False,
    ) -> User:
        """
        Persist a new, unverified user.

        Raises:
            ConflictError: email or username already registered
        """
        email = normalize_email(email)
        username = username.strip()

        if await self.get_by_email(db, email) is not None:
            raise ConflictError(message="User already exists!", context={"field": "email"})
        if await self.get_by_username(db, username) is not None:
            raise ConflictError(message="Username is already taken", context={"field": "username"})

        user = User(
            username=username,
            email=email,
            password_hash=password_hash,
            is_admin=is_admin,
            is_verified=False,
            session_version=0,
        )
        db.add(user)
        await self._flush_unique(db)
        logger.info("User created: %s", user.id)
        return user

    async def update(self, db: AsyncSession, user: User, **fields: Any) -> User:
        """
        Apply `fields` to `user` and flush.

        Raises:
            ValueError: unknown field name (programming error)
            ConflictError: new email/username collides with another account
        """
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update user fields: {sorted(unknown)}")

        if "email" in fields:
            fields["email"] = normalize_email(fields["email"])
            if fields["email"] != user.email:
                other = await self.get_by_email(db, fields["email"])
                if other is not None and other.id != user.id:
                    raise ConflictError(message="Email is already in use", context={"field": "email"})
        if "username" in fields:
            fields["username"] = fields["username"].strip()
            if fields["username"] != user.username:
                other = await self.get_by_username(db, fields["username"])
                if other is not None and other.id != user.id:
                    raise ConflictError(message="Username is already taken", context={"field": "username"})

        for name, value in fields.items():
            setattr(user, name, value)
        await self._flush_unique(db)
        return user

    async def delete(self, db: AsyncSession, user_id: uuid.UUID) -> None:
        await db.execute(delete(User).where(User.id == user_id))
        logger.info("User deleted: %s", user_id)

    async def _flush_unique(self, db: AsyncSession) -> None:
        try:
            await db.flush()
        except IntegrityError as e:
            logger.warning("Unique constraint violated on users: %s", type(e.orig).__name__)
            raise ConflictError(message="User already exists!") from e


# ── Singleton Instance ────────────────────────────────────────────────────
credential_store = CredentialStore()
