"""
Quillnest Backend — Comment, Like and Share Route Handlers
============================================================

What:  Comment CRUD plus the like/share toggles, all behind the
       authentication gate. Permission rules live in CommentService.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from quillnest.database import get_db_session
from quillnest.dependencies import get_comment_service, get_current_identity
from quillnest.schemas.comment import (
    BulkDeleteResponse,
    CommentCreateRequest,
    CommentListResponse,
    CommentMutationResponse,
    CommentUpdateRequest,
    LikeToggleResponse,
    ShareToggleResponse,
)
from quillnest.schemas.common import ErrorResponse, MessageResponse
from quillnest.schemas.post import CommentResponse
from quillnest.services.comment_service import CommentService
from quillnest.services.credential_store import Identity

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/v1/comment",
    tags=["Comments"],
    responses={
        401: {"description": "Not authenticated", "model": ErrorResponse},
        404: {"description": "Post or comment not found", "model": ErrorResponse},
    },
)


@router.post(
    "/add-comment/{post_id}",
    response_model=CommentMutationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Comment on a post",
)
async def add_comment(
    post_id: UUID,
    body: CommentCreateRequest,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
    comments: CommentService = Depends(get_comment_service),
) -> CommentMutationResponse:
    comment = await comments.add_comment(db, identity, post_id, body.content)
    return CommentMutationResponse(message="Comment added successfully", comment=comment)


@router.get("/view-comments/{post_id}", response_model=CommentListResponse, summary="Comments of a post")
async def view_comments(
    post_id: UUID,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
    comments: CommentService = Depends(get_comment_service),
) -> CommentListResponse:
    return await comments.list_comments(db, post_id)


@router.get("/view-comment/{comment_id}", response_model=CommentResponse, summary="One comment")
async def view_comment(
    comment_id: UUID,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
    comments: CommentService = Depends(get_comment_service),
) -> CommentResponse:
    return await comments.get_comment(db, comment_id)


@router.put(
    "/update-comment/{comment_id}",
    response_model=CommentMutationResponse,
    responses={403: {"description": "Caller did not write the comment", "model": ErrorResponse}},
    summary="Edit a comment",
)
async def update_comment(
    comment_id: UUID,
    body: CommentUpdateRequest,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
    comments: CommentService = Depends(get_comment_service),
) -> CommentMutationResponse:
    comment = await comments.update_comment(db, identity, comment_id, body.content)
    return CommentMutationResponse(message="Comment updated successfully", comment=comment)


@router.delete(
    "/delete-comment/{comment_id}",
    response_model=MessageResponse,
    responses={403: {"description": "Not allowed to delete this comment", "model": ErrorResponse}},
    summary="Delete one comment",
)
async def delete_comment(
    comment_id: UUID,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
    comments: CommentService = Depends(get_comment_service),
) -> MessageResponse:
    return MessageResponse(message=await comments.delete_comment(db, identity, comment_id))


@router.delete(
    "/delete-comments/{post_id}",
    response_model=BulkDeleteResponse,
    responses={403: {"description": "Caller is neither the post author nor an admin", "model": ErrorResponse}},
    summary="Delete every comment of a post",
)
async def delete_comments(
    post_id: UUID,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
    comments: CommentService = Depends(get_comment_service),
) -> BulkDeleteResponse:
    return await comments.delete_comments_for_post(db, identity, post_id)


@router.post("/like-post/{post_id}", response_model=LikeToggleResponse, summary="Like or unlike a post")
async def like_post(
    post_id: UUID,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
    comments: CommentService = Depends(get_comment_service),
) -> LikeToggleResponse:
    return await comments.toggle_like(db, identity, post_id)


@router.post("/share-post/{post_id}", response_model=ShareToggleResponse, summary="Share or unshare a post")
async def share_post(
    post_id: UUID,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
    comments: CommentService = Depends(get_comment_service),
) -> ShareToggleResponse:
    return await comments.toggle_share(db, identity, post_id)
