"""
Quillnest Backend — Post Service (Business Logic Orchestrator)
================================================================

What:  Create, read, list, update and delete posts with their media files.
How:   Composes FileService (upload policy), the MediaService port and the
       database session passed into every call.
Who:   Called by routes/posts.py; UserService calls delete_posts_by_author
       when an account is removed.

Orchestration Flow (POST /api/v1/post/create-post):
    ┌──────────┐    ┌─────────────┐    ┌──────────────┐    ┌──────────┐
    │  Upload  │───▶│  Validate   │───▶│  Media host  │───▶│  Store   │
    │  (Route) │    │  (FileServ) │    │  (one by one)│    │  (DB)    │
    └──────────┘    └─────────────┘    └──────────────┘    └──────────┘

    On an upload failure the assets stored so far are deleted (best-effort)
    and the error propagates: a post is never saved with part of its files.

Deletion:
    Remote assets go first. If the media host refuses, nothing is removed
    from the database and the caller sees the upstream error. Only then are
    likes, shares, comments, media rows and the post deleted, explicitly and
    in that order.
"""

import logging
from datetime import datetime
from typing import Iterable, List, Optional, Sequence
from uuid import UUID

from sqlalchemy import asc, delete, desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from quillnest.exceptions import ForbiddenError, NotFoundError, UpstreamServiceError, ValidationError
from quillnest.models.comment import Comment, Like, Share
from quillnest.models.post import MediaFile, Post
from quillnest.models.user import utcnow
from quillnest.schemas.post import (
    AuthorSummary,
    CommentResponse,
    MediaFileResponse,
    PostListItem,
    PostListResponse,
    PostResponse,
)
from quillnest.services.credential_store import Identity
from quillnest.services.file_service import FileService, IncomingFile, ValidatedFile
from quillnest.services.media_service import POST_MEDIA_FOLDER, MediaService, StoredMedia

logger = logging.getLogger(__name__)

SORT_NEWEST = "created_at_desc"
SORT_OLDEST = "created_at_asc"


def _count_of(model):
    # Correlated COUNT(*) of `model` rows for the outer Post row
    return (
        select(func.count(model.id))
        .where(model.post_id == Post.id)
        .correlate(Post)
        .scalar_subquery()
    )


class PostService:
    """
    Business logic layer for posts.

    Args:
        files: Upload policy
        media: Media host port
    """

    def __init__(self, files: FileService, media: MediaService):
        self.files = files
        self.media = media

    # ── Media helpers ─────────────────────────────────────────────────────

    async def _upload_all(self, validated: Sequence[ValidatedFile]) -> List[StoredMedia]:
        """Upload sequentially; on failure remove what was stored and re-raise."""
        stored: List[StoredMedia] = []
        try:
            for item in validated:
                stored.append(
                    await self.media.upload(
                        item.content,
                        item.filename,
                        POST_MEDIA_FOLDER,
                        resource_type=item.resource_type,
                    )
                )
        except UpstreamServiceError:
            logger.warning(
                "Upload failed after %d of %d files; removing stored assets",
                len(stored), len(validated),
            )
            await self._discard_assets(stored)
            raise
        return stored

    async def _discard_assets(self, assets: Iterable) -> None:
        """Best-effort removal: failures are logged and do not propagate."""
        for asset in assets:
            try:
                await self.media.delete(asset.public_id, resource_type=asset.resource_type)
            except UpstreamServiceError as e:
                logger.warning("Could not delete media asset %s: %s", asset.public_id, e.message)

    # ── Loading ───────────────────────────────────────────────────────────

    async def _load(self, db: AsyncSession, post_id: UUID, with_comments: bool = True) -> Post:
        options = [selectinload(Post.author), selectinload(Post.media_files)]
        if with_comments:
            options.append(selectinload(Post.comments).selectinload(Comment.author))
        result = await db.execute(
            select(Post)
            .where(Post.id == post_id)
            .options(*options)
            .execution_options(populate_existing=True)
        )
        post = result.scalar_one_or_none()
        if post is None:
            raise NotFoundError(resource="post", resource_id=str(post_id), message="Post not found")
        return post

    async def _counts(self, db: AsyncSession, post_id: UUID) -> dict:
        result = await db.execute(
            select(
                select(func.count(Like.id)).where(Like.post_id == post_id).scalar_subquery(),
                select(func.count(Share.id)).where(Share.post_id == post_id).scalar_subquery(),
                select(func.count(Comment.id)).where(Comment.post_id == post_id).scalar_subquery(),
            )
        )
        likes, shares, comments = result.one()
        return {"like_count": likes or 0, "share_count": shares or 0, "comment_count": comments or 0}

    @staticmethod
    def _list_item(post: Post, **counts) -> PostListItem:
        return PostListItem(
            id=post.id,
            title=post.title,
            content=post.content,
            author=AuthorSummary.model_validate(post.author),
            media_files=[MediaFileResponse.model_validate(m) for m in post.media_files],
            created_at=post.created_at,
            updated_at=post.updated_at,
            **counts,
        )

    async def _response(self, db: AsyncSession, post_id: UUID) -> PostResponse:
        post = await self._load(db, post_id)
        counts = await self._counts(db, post_id)
        comments = sorted(post.comments, key=lambda c: c.created_at)
        return PostResponse(
            **self._list_item(post, **counts).model_dump(),
            comments=[CommentResponse.model_validate(c) for c in comments],
        )

    # ── Operations ────────────────────────────────────────────────────────

    async def create_post(
        self,
        db: AsyncSession,
        identity: Identity,
        title: str,
        content: str,
        uploads: Sequence[IncomingFile] = (),
    ) -> PostResponse:
        """
        Validate and upload the attachments, then persist the post.

        Raises:
            ValidationError: a file breaks the upload policy (nothing uploaded)
            UpstreamServiceError: the media host failed (uploaded assets removed)
        """
        validated = self.files.validate_post_files(uploads)
        stored = await self._upload_all(validated)

        post = Post(title=title, content=content, author_id=identity.subject_id)
        db.add(post)
        await db.flush()
        for asset in stored:
            db.add(MediaFile(
                url=asset.url,
                public_id=asset.public_id,
                resource_type=asset.resource_type,
                post_id=post.id,
            ))
        await db.flush()

        logger.info("Post %s created by %s with %d files", post.id, identity.subject_id, len(stored))
        return await self._response(db, post.id)

    async def get_post(self, db: AsyncSession, post_id: UUID) -> PostResponse:
        """
        Raises:
            NotFoundError: no post with that id
        """
        return await self._response(db, post_id)

    async def list_posts(
        self,
        db: AsyncSession,
        limit: int = 20,
        cursor: Optional[str] = None,
        sort: str = SORT_NEWEST,
    ) -> PostListResponse:
        """
        List posts with cursor-based pagination.

        How:
            - Default sort: created_at DESC (newest first)
            - Cursor: ISO datetime of the last item; WHERE created_at < :cursor
              (or > for ascending)
            - limit + 1 rows are fetched so has_more needs no extra query

        Raises:
            ValidationError: cursor is not an ISO 8601 datetime
        """
        query = select(
            Post,
            _count_of(Like).label("like_count"),
            _count_of(Share).label("share_count"),
            _count_of(Comment).label("comment_count"),
        ).options(selectinload(Post.author), selectinload(Post.media_files))

        if cursor:
            try:
                cursor_dt = datetime.fromisoformat(cursor)
            except ValueError as e:
                raise ValidationError(message="Invalid cursor", field="cursor") from e
            if sort == SORT_OLDEST:
                query = query.where(Post.created_at > cursor_dt)
            else:
                query = query.where(Post.created_at < cursor_dt)

        if sort == SORT_OLDEST:
            query = query.order_by(asc(Post.created_at))
        else:
            query = query.order_by(desc(Post.created_at))

        result = await db.execute(query.limit(limit + 1))
        rows = list(result.all())

        total_count = (await db.execute(select(func.count(Post.id)))).scalar() or 0

        has_more = len(rows) > limit
        rows = rows[:limit]
        next_cursor = rows[-1].Post.created_at.isoformat() if has_more and rows else None

        return PostListResponse(
            posts=[
                self._list_item(
                    row.Post,
                    like_count=row.like_count,
                    share_count=row.share_count,
                    comment_count=row.comment_count,
                )
                for row in rows
            ],
            total_count=total_count,
            next_cursor=next_cursor,
            has_more=has_more,
        )

    async def update_post(
        self,
        db: AsyncSession,
        identity: Identity,
        post_id: UUID,
        title: Optional[str] = None,
        content: Optional[str] = None,
        uploads: Optional[Sequence[IncomingFile]] = None,
    ) -> PostResponse:
        """
        Edit a post. Only its author may do so.

        When `uploads` is non-empty the new files REPLACE the existing media
        set; the old remote assets are deleted best-effort afterwards.

        Raises:
            NotFoundError: no post with that id
            ForbiddenError: caller is not the author
            ValidationError: nothing to change, or a file breaks the upload policy
        """
        post = await self._load(db, post_id, with_comments=False)
        if post.author_id != identity.subject_id:
            raise ForbiddenError(message="You can only edit your own posts")
        if title is None and content is None and not uploads:
            raise ValidationError(message="Provide a title, content or files to update")

        replaced: List[MediaFile] = []
        if uploads:
            validated = self.files.validate_post_files(uploads)
            stored = await self._upload_all(validated)
            replaced = list(post.media_files)
            await db.execute(delete(MediaFile).where(MediaFile.post_id == post.id))
            for asset in stored:
                db.add(MediaFile(
                    url=asset.url,
                    public_id=asset.public_id,
                    resource_type=asset.resource_type,
                    post_id=post.id,
                ))

        if title is not None:
            post.title = title
        if content is not None:
            post.content = content
        # Media-only edits still count as an update of the post
        post.updated_at = utcnow()
        await db.flush()

        await self._discard_assets(replaced)
        logger.info("Post %s updated (media replaced: %s)", post.id, bool(uploads))
        return await self._response(db, post.id)

    async def _purge(self, db: AsyncSession, post_ids: List[UUID]) -> None:
        # Dependents first, then the posts themselves
        for model in (Like, Share, Comment, MediaFile):
            await db.execute(delete(model).where(model.post_id.in_(post_ids)))
        await db.execute(delete(Post).where(Post.id.in_(post_ids)))

    async def delete_post(self, db: AsyncSession, identity: Identity, post_id: UUID) -> str:
        """
        Delete a post with everything attached to it. Author or admin only.

        Raises:
            NotFoundError: no post with that id
            ForbiddenError: caller is neither the author nor an admin
            UpstreamServiceError: the media host refused to delete an asset
        """
        post = await self._load(db, post_id, with_comments=False)
        if post.author_id != identity.subject_id and not identity.is_admin:
            raise ForbiddenError(message="You can only delete your own posts")

        for media in post.media_files:
            await self.media.delete(media.public_id, resource_type=media.resource_type)

        await self._purge(db, [post.id])
        logger.info("Post %s deleted by %s", post_id, identity.subject_id)
        return "Post deleted successfully"

    async def delete_posts_by_author(self, db: AsyncSession, author_id: UUID) -> int:
        """Delete every post of one user (account deletion). Returns the count."""
        result = await db.execute(
            select(Post).where(Post.author_id == author_id).options(selectinload(Post.media_files))
        )
        posts = list(result.scalars().all())
        if not posts:
            return 0

        for post in posts:
            for media in post.media_files:
                await self.media.delete(media.public_id, resource_type=media.resource_type)

        await self._purge(db, [post.id for post in posts])
        logger.info("Deleted %d posts of user %s", len(posts), author_id)
        return len(posts)
