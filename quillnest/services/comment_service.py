"""
Quillnest Backend — Comment Service
=====================================

What:  Comments on posts, plus the like and share toggles.
Who:   Called by routes/comments.py.

Permissions:
    add / list / get        any authenticated user (post must exist)
    update                  the comment's author
    delete one              the comment's author, the post's author, an admin
    delete all of a post    the post's author, an admin

Toggle semantics (like / share):
    The (post, user) row either exists or it does not. A toggle deletes the
    row when present; otherwise it inserts one inside a SAVEPOINT. If a
    concurrent identical request inserted the same row first, the unique
    constraint fires, the savepoint is rolled back, and the outcome is still
    "liked"/"shared": two racing requests never leave two rows behind.
"""

import logging
from urllib.parse import quote
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from quillnest.exceptions import ForbiddenError, NotFoundError
from quillnest.models.comment import Comment, Like, Share
from quillnest.models.post import Post
from quillnest.schemas.comment import (
    BulkDeleteResponse,
    CommentListResponse,
    LikeToggleResponse,
    ShareLinks,
    ShareToggleResponse,
)
from quillnest.schemas.post import CommentResponse
from quillnest.services.credential_store import Identity

logger = logging.getLogger(__name__)


def build_share_links(post_url: str, title: str) -> ShareLinks:
    """Social share-intent URLs for one post; both values are URL-encoded."""
    url = quote(post_url, safe="")
    text = quote(title, safe="")
    return ShareLinks(
        facebook=f"https://www.facebook.com/sharer/sharer.php?u={url}&quote={text}",
        twitter=f"https://twitter.com/intent/tweet?url={url}&text={text}",
        linkedin=f"https://www.linkedin.com/sharing/share-offsite/?url={url}&title={text}",
    )


class CommentService:
    """
    Args:
        public_base_url: Prefix of the post URL placed in share links
    """

    def __init__(self, public_base_url: str = "http://localhost:8000"):
        self.public_base_url = public_base_url.rstrip("/")

    def post_url(self, post_id: UUID) -> str:
        return f"{self.public_base_url}/api/v1/post/get-post/{post_id}"

    # ── Lookups ───────────────────────────────────────────────────────────

    async def _require_post(self, db: AsyncSession, post_id: UUID) -> Post:
        post = await db.get(Post, post_id)
        if post is None:
            raise NotFoundError(resource="post", resource_id=str(post_id), message="Post not found")
        return post

    async def _load_comment(self, db: AsyncSession, comment_id: UUID) -> Comment:
        result = await db.execute(
            select(Comment)
            .where(Comment.id == comment_id)
            .options(selectinload(Comment.author))
            .execution_options(populate_existing=True)
        )
        comment = result.scalar_one_or_none()
        if comment is None:
            raise NotFoundError(resource="comment", resource_id=str(comment_id), message="Comment not found")
        return comment

    # ── Comments ──────────────────────────────────────────────────────────

    async def add_comment(self, db: AsyncSession, identity: Identity, post_id: UUID, content: str) -> CommentResponse:
        await self._require_post(db, post_id)
        comment = Comment(content=content, post_id=post_id, author_id=identity.subject_id)
        db.add(comment)
        await db.flush()
        logger.info("Comment %s added to post %s", comment.id, post_id)
        return CommentResponse.model_validate(await self._load_comment(db, comment.id))

    async def list_comments(self, db: AsyncSession, post_id: UUID) -> CommentListResponse:
        """All comments of a post, oldest first."""
        await self._require_post(db, post_id)
        result = await db.execute(
            select(Comment)
            .where(Comment.post_id == post_id)
            .options(selectinload(Comment.author))
            .order_by(Comment.created_at.asc())
        )
        comments = [CommentResponse.model_validate(c) for c in result.scalars().all()]
        return CommentListResponse(comments=comments, total_count=len(comments))

    async def get_comment(self, db: AsyncSession, comment_id: UUID) -> CommentResponse:
        return CommentResponse.model_validate(await self._load_comment(db, comment_id))

    async def update_comment(
        self,
        db: AsyncSession,
        identity: Identity,
        comment_id: UUID,
        content: str,
    ) -> CommentResponse:
        """
        Raises:
            NotFoundError: no comment with that id
            ForbiddenError: caller did not write the comment
        """
        comment = await self._load_comment(db, comment_id)
        if comment.author_id != identity.subject_id:
            raise ForbiddenError(message="You can only edit your own comments")
        comment.content = content
        await db.flush()
        return CommentResponse.model_validate(await self._load_comment(db, comment_id))

    async def delete_comment(self, db: AsyncSession, identity: Identity, comment_id: UUID) -> str:
        comment = await self._load_comment(db, comment_id)
        if comment.author_id != identity.subject_id and not identity.is_admin:
            post_author = await db.scalar(select(Post.author_id).where(Post.id == comment.post_id))
            if post_author != identity.subject_id:
                raise ForbiddenError(message="You are not allowed to delete this comment")

        await db.execute(delete(Comment).where(Comment.id == comment_id))
        logger.info("Comment %s deleted by %s", comment_id, identity.subject_id)
        return "Comment deleted successfully"

    async def delete_comments_for_post(
        self,
        db: AsyncSession,
        identity: Identity,
        post_id: UUID,
    ) -> BulkDeleteResponse:
        post = await self._require_post(db, post_id)
        if post.author_id != identity.subject_id and not identity.is_admin:
            raise ForbiddenError(message="Only the post author or an admin can delete all comments")

        result = await db.execute(delete(Comment).where(Comment.post_id == post_id))
        logger.info("Deleted %d comments of post %s", result.rowcount, post_id)
        return BulkDeleteResponse(message="Comments deleted successfully", deleted_count=result.rowcount)

    # ── Toggles ───────────────────────────────────────────────────────────

    async def _toggle(self, db: AsyncSession, model, identity: Identity, post_id: UUID) -> bool:
        """Flip the (post, caller) row of `model`. Returns True when it now exists."""
        result = await db.execute(
            delete(model).where(model.post_id == post_id, model.user_id == identity.subject_id)
        )
        if result.rowcount:
            return False

        try:
            async with db.begin_nested():
                db.add(model(post_id=post_id, user_id=identity.subject_id))
        except IntegrityError:
            logger.info(
                "%s for post %s by %s inserted concurrently; keeping it",
                model.__name__, post_id, identity.subject_id,
            )
        return True

    async def _count(self, db: AsyncSession, model, post_id: UUID) -> int:
        return await db.scalar(select(func.count(model.id)).where(model.post_id == post_id)) or 0

    async def toggle_like(self, db: AsyncSession, identity: Identity, post_id: UUID) -> LikeToggleResponse:
        await self._require_post(db, post_id)
        liked = await self._toggle(db, Like, identity, post_id)
        return LikeToggleResponse(
            message="liked" if liked else "unliked",
            post_id=post_id,
            liked=liked,
            like_count=await self._count(db, Like, post_id),
        )

    async def toggle_share(self, db: AsyncSession, identity: Identity, post_id: UUID) -> ShareToggleResponse:
        post = await self._require_post(db, post_id)
        shared = await self._toggle(db, Share, identity, post_id)
        return ShareToggleResponse(
            message="shared" if shared else "unshared",
            post_id=post_id,
            shared=shared,
            share_count=await self._count(db, Share, post_id),
            share_links=build_share_links(self.post_url(post_id), post.title),
        )
