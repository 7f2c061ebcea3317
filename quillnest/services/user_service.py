"""
Quillnest Backend — User Service
==================================

What:  Profile reads and edits, profile pictures, account deletion and admin
       promotion.
How:   Users are read and written through the CredentialStore; pictures go
       to the media host through the MediaService port.
Who:   Called by routes/users.py.

Account deletion order:
    1. The user's posts, with their likes/shares/comments/media (PostService)
    2. Likes, shares and comments the user left on other posts
    3. The picture asset on the media host (best-effort)
    4. The admins row, the pictures row, then the user row
"""

import logging
from typing import Optional
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from quillnest.exceptions import UpstreamServiceError
from quillnest.models.comment import Comment, Like, Share
from quillnest.models.user import Admin, Picture, User
from quillnest.schemas.user import (
    AdminGrantResponse,
    PictureResponse,
    UserListResponse,
    UserResponse,
)
from quillnest.services.credential_store import Identity, credential_store
from quillnest.services.file_service import FileService, IncomingFile
from quillnest.services.media_service import AVATAR_FOLDER, MediaService
from quillnest.services.post_service import PostService

logger = logging.getLogger(__name__)


class UserService:
    """
    Args:
        files: Upload policy (pictures accept images only)
        media: Media host port
        posts: Used to remove the posts of a deleted account
    """

    def __init__(self, files: FileService, media: MediaService, posts: PostService):
        self.files = files
        self.media = media
        self.posts = posts

    async def _picture(self, db: AsyncSession, user_id: UUID) -> Optional[Picture]:
        return await db.scalar(select(Picture).where(Picture.user_id == user_id))

    async def _profile(self, db: AsyncSession, user: User) -> UserResponse:
        picture = await self._picture(db, user.id)
        return UserResponse.from_user(user, picture_url=picture.url if picture else None)

    async def _discard_asset(self, public_id: str, resource_type: str = "image") -> None:
        try:
            await self.media.delete(public_id, resource_type=resource_type)
        except UpstreamServiceError as e:
            logger.warning("Could not delete picture asset %s: %s", public_id, e.message)

    # ── Profiles ──────────────────────────────────────────────────────────

    async def get_profile(self, db: AsyncSession, identity: Identity) -> UserResponse:
        user = await credential_store.require_by_id(db, identity.subject_id)
        return await self._profile(db, user)

    async def list_profiles(self, db: AsyncSession) -> UserListResponse:
        """Every user, newest first, with picture URLs from one extra query."""
        users = await credential_store.list_users(db)
        result = await db.execute(select(Picture.user_id, Picture.url))
        urls = {user_id: url for user_id, url in result.all()}
        return UserListResponse(
            users=[UserResponse.from_user(u, picture_url=urls.get(u.id)) for u in users],
            total_count=len(users),
        )

    async def update_profile(
        self,
        db: AsyncSession,
        identity: Identity,
        username: Optional[str] = None,
        email: Optional[str] = None,
    ) -> UserResponse:
        """
        Raises:
            ConflictError: the new username or email belongs to another account
        """
        user = await credential_store.require_by_id(db, identity.subject_id)
        changes = {}
        if username is not None:
            changes["username"] = username
        if email is not None:
            changes["email"] = email
        await credential_store.update(db, user, **changes)
        logger.info("User %s updated fields %s", user.id, sorted(changes))
        return await self._profile(db, user)

    # ── Pictures ──────────────────────────────────────────────────────────

    async def update_picture(self, db: AsyncSession, identity: Identity, upload: IncomingFile) -> PictureResponse:
        """
        Replace the caller's profile picture.

        The new asset is stored before anything in the database changes; the
        previous asset is removed afterwards, best-effort.

        Raises:
            ValidationError: not an allowed image, empty or too large
            UpstreamServiceError: the media host failed
        """
        user = await credential_store.require_by_id(db, identity.subject_id)
        validated = self.files.validate_picture(upload)
        stored = await self.media.upload(
            validated.content,
            validated.filename,
            AVATAR_FOLDER,
            resource_type=validated.resource_type,
        )

        picture = await self._picture(db, user.id)
        previous = None
        if picture is None:
            picture = Picture(user_id=user.id)
            db.add(picture)
        else:
            previous = (picture.public_id, picture.resource_type)
        picture.url = stored.url
        picture.public_id = stored.public_id
        picture.resource_type = stored.resource_type
        await credential_store.update(db, user, picture_id=stored.public_id)

        if previous is not None and previous[0] != stored.public_id:
            await self._discard_asset(*previous)

        logger.info("Picture of user %s set to %s", user.id, stored.public_id)
        return PictureResponse(
            message="Profile picture updated",
            picture_url=stored.url,
            user=UserResponse.from_user(user, picture_url=stored.url),
        )

    # ── Account ───────────────────────────────────────────────────────────

    async def delete_account(self, db: AsyncSession, identity: Identity) -> str:
        """
        Remove the caller's account and everything it owns.

        Raises:
            UpstreamServiceError: the media host refused to delete a post asset
                (nothing is removed in that case)
        """
        user = await credential_store.require_by_id(db, identity.subject_id)

        await self.posts.delete_posts_by_author(db, user.id)
        for model in (Like, Share):
            await db.execute(delete(model).where(model.user_id == user.id))
        await db.execute(delete(Comment).where(Comment.author_id == user.id))

        picture = await self._picture(db, user.id)
        if picture is not None:
            await self._discard_asset(picture.public_id, picture.resource_type)

        await db.execute(delete(Admin).where(Admin.user_id == user.id))
        await db.execute(delete(Picture).where(Picture.user_id == user.id))
        await credential_store.delete(db, user.id)
        return "User deleted successfully"

    async def make_admin(self, db: AsyncSession, target_id: UUID) -> AdminGrantResponse:
        """
        Promote a user to admin. Idempotent: promoting an admin again is a no-op.

        Raises:
            NotFoundError: no user with that id
        """
        user = await credential_store.require_by_id(db, target_id)
        existing = await db.scalar(select(Admin).where(Admin.user_id == user.id))
        if existing is None:
            db.add(Admin(user_id=user.id))
        if not user.is_admin:
            await credential_store.update(db, user, is_admin=True)
            logger.info("User %s promoted to admin", user.id)
        else:
            await db.flush()
        return AdminGrantResponse(
            message="User is now an admin",
            user=await self._profile(db, user),
        )
