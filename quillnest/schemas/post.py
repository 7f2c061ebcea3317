"""
Quillnest Backend — Post, Media and Comment Response Schemas
==============================================================

What:  The API representation of posts and everything hanging off them.
Why:   Separate from the ORM models: counts are computed, authors are
       reduced to a summary, and no internal column leaks out.

Request side:
    Post creation and update are multipart forms (title, content, files[]),
    validated by FastAPI `Form`/`File` parameters in routes/posts.py rather
    than by a body model. Comment bodies are JSON (schemas/comment.py).
"""

import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

TITLE_MAX_LENGTH = 200
CONTENT_MAX_LENGTH = 20_000


class AuthorSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    username: str


class MediaFileResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    url: str = Field(description="Public URL on the media host")
    public_id: str
    resource_type: str = Field(description="image or raw (documents)")


class CommentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    content: str
    post_id: uuid.UUID
    author: AuthorSummary
    created_at: datetime
    updated_at: datetime


class PostListItem(BaseModel):
    """
    What:  Compact post representation for the feed.
    Why:   No comment bodies, only counts; the detail route returns those.
    """
    id: uuid.UUID
    title: str
    content: str
    author: AuthorSummary
    media_files: List[MediaFileResponse] = Field(default_factory=list)
    like_count: int = 0
    share_count: int = 0
    comment_count: int = 0
    created_at: datetime
    updated_at: datetime


class PostResponse(PostListItem):
    """Full post: everything in the feed item plus the comments (oldest first)."""
    comments: List[CommentResponse] = Field(default_factory=list)


class PostListResponse(BaseModel):
    """
    What:  Paginated feed.

    How cursor works:
        - next_cursor: created_at of the last item in the current page
        - Client sends it back as ?cursor= to get the next page
        - Server filters WHERE created_at < :cursor (newest first)
    """
    posts: List[PostListItem]
    total_count: int = Field(description="Total number of posts")
    next_cursor: Optional[str] = Field(default=None, description="Cursor for the next page, null on the last page")
    has_more: bool


class PostMutationResponse(BaseModel):
    message: str
    post: PostResponse
