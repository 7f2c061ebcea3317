"""
Quillnest Backend — Comment, Like and Share Schemas
=====================================================

What:  Request bodies for comments and the responses of the like/share toggles.
"""

import uuid
from typing import List

from pydantic import BaseModel, ConfigDict, Field

from quillnest.schemas.post import CommentResponse

COMMENT_MAX_LENGTH = 2000


class CommentCreateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    content: str = Field(min_length=1, max_length=COMMENT_MAX_LENGTH)


class CommentUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    content: str = Field(min_length=1, max_length=COMMENT_MAX_LENGTH)


class CommentMutationResponse(BaseModel):
    message: str
    comment: CommentResponse


class CommentListResponse(BaseModel):
    comments: List[CommentResponse]
    total_count: int


class BulkDeleteResponse(BaseModel):
    message: str
    deleted_count: int


class LikeToggleResponse(BaseModel):
    """
    `liked` is the state AFTER the toggle: True means a Like row now exists
    for (post, caller).
    """
    message: str = Field(description='"liked" or "unliked"')
    post_id: uuid.UUID
    liked: bool
    like_count: int


class ShareLinks(BaseModel):
    facebook: str
    twitter: str
    linkedin: str


class ShareToggleResponse(BaseModel):
    message: str = Field(description='"shared" or "unshared"')
    post_id: uuid.UUID
    shared: bool
    share_count: int
    share_links: ShareLinks
