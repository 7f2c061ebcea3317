"""
Quillnest Backend — Post Route Handlers
=========================================

What:  Create, list, read, update and delete posts.
How:   Create and update are multipart forms (title, content, files[]) since
       they carry attachments; reads are public, writes need a session token.

Example client usage (infinite scroll):
    Page 1: GET /api/v1/post/get-posts?limit=20
    Page 2: GET /api/v1/post/get-posts?limit=20&cursor=2024-01-15T12%3A00%3A00%2B00%3A00
    (cursor value comes from next_cursor in the previous response and must be
    URL-encoded, an unescaped "+" in the offset decodes to a space)
"""

import logging
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Query, Response, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from quillnest.database import get_db_session
from quillnest.dependencies import get_current_identity, get_post_service
from quillnest.schemas.common import ErrorResponse, MessageResponse
from quillnest.schemas.post import (
    CONTENT_MAX_LENGTH,
    TITLE_MAX_LENGTH,
    PostListResponse,
    PostMutationResponse,
    PostResponse,
)
from quillnest.services.credential_store import Identity
from quillnest.services.file_service import IncomingFile
from quillnest.services.post_service import SORT_NEWEST, PostService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/post", tags=["Posts"])

UPSTREAM_RESPONSES = {
    502: {"description": "Media host rejected a file", "model": ErrorResponse},
    503: {"description": "Media host unavailable, retry later", "model": ErrorResponse},
}


async def _incoming(files: Optional[List[UploadFile]]) -> List[IncomingFile]:
    # Browsers send one empty part when the file input is left blank
    return [
        IncomingFile(
            filename=f.filename or "upload",
            content=await f.read(),
            content_type=f.content_type,
        )
        for f in (files or [])
        if f.filename
    ]


@router.post(
    "/create-post",
    response_model=PostMutationResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"description": "Invalid form data or file", "model": ErrorResponse},
        401: {"description": "Not authenticated", "model": ErrorResponse},
        **UPSTREAM_RESPONSES,
    },
    summary="Create a post with optional attachments",
)
async def create_post(
    title: str = Form(..., min_length=1, max_length=TITLE_MAX_LENGTH),
    content: str = Form(..., min_length=1, max_length=CONTENT_MAX_LENGTH),
    files: Optional[List[UploadFile]] = File(default=None, description="Images (JPEG/PNG/GIF) or documents (PDF/DOC/DOCX)"),
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
    posts: PostService = Depends(get_post_service),
) -> PostMutationResponse:
    post = await posts.create_post(
        db,
        identity,
        title=title.strip(),
        content=content,
        uploads=await _incoming(files),
    )
    return PostMutationResponse(message="Post created successfully", post=post)


@router.get(
    "/get-posts",
    response_model=PostListResponse,
    summary="List posts with cursor pagination",
)
async def get_posts(
    response: Response,
    limit: int = Query(default=20, ge=1, le=100, description="Items per page (max 100)"),
    cursor: Optional[str] = Query(
        default=None,
        description=(
            "ISO 8601 created_at of the last item of the previous page, URL-encoded. "
            "Omit for the first page."
        ),
    ),
    sort: str = Query(
        default=SORT_NEWEST,
        pattern="^created_at_(desc|asc)$",
        description="'created_at_desc' (newest first) or 'created_at_asc' (oldest first)",
    ),
    db: AsyncSession = Depends(get_db_session),
    posts: PostService = Depends(get_post_service),
) -> PostListResponse:
    result = await posts.list_posts(db, limit=limit, cursor=cursor, sort=sort)
    response.headers["X-Total-Count"] = str(result.total_count)
    return result


@router.get(
    "/get-post/{post_id}",
    response_model=PostResponse,
    responses={404: {"description": "Post not found", "model": ErrorResponse}},
    summary="One post with its media, comments and counts",
)
async def get_post(
    post_id: UUID,
    db: AsyncSession = Depends(get_db_session),
    posts: PostService = Depends(get_post_service),
) -> PostResponse:
    return await posts.get_post(db, post_id)


@router.put(
    "/update-post/{post_id}",
    response_model=PostMutationResponse,
    responses={
        400: {"description": "Nothing to update or invalid file", "model": ErrorResponse},
        403: {"description": "Caller is not the author", "model": ErrorResponse},
        404: {"description": "Post not found", "model": ErrorResponse},
        **UPSTREAM_RESPONSES,
    },
    summary="Edit a post; new files replace the existing attachments",
)
async def update_post(
    post_id: UUID,
    title: Optional[str] = Form(default=None, min_length=1, max_length=TITLE_MAX_LENGTH),
    content: Optional[str] = Form(default=None, min_length=1, max_length=CONTENT_MAX_LENGTH),
    files: Optional[List[UploadFile]] = File(default=None),
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
    posts: PostService = Depends(get_post_service),
) -> PostMutationResponse:
    post = await posts.update_post(
        db,
        identity,
        post_id,
        title=title.strip() if title is not None else None,
        content=content,
        uploads=await _incoming(files),
    )
    return PostMutationResponse(message="Post updated successfully", post=post)


@router.delete(
    "/delete-post/{post_id}",
    response_model=MessageResponse,
    responses={
        403: {"description": "Caller is neither the author nor an admin", "model": ErrorResponse},
        404: {"description": "Post not found", "model": ErrorResponse},
        **UPSTREAM_RESPONSES,
    },
    summary="Delete a post with its comments, likes, shares and media",
)
async def delete_post(
    post_id: UUID,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
    posts: PostService = Depends(get_post_service),
) -> MessageResponse:
    return MessageResponse(message=await posts.delete_post(db, identity, post_id))
