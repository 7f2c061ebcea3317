"""
Quillnest Backend — User Route Handlers
=========================================

What:  Profile reads and edits, profile picture upload, account deletion and
       admin promotion. Every route sits behind the authentication gate;
       /make-admin additionally requires an admin caller.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, File, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from quillnest.database import get_db_session
from quillnest.dependencies import get_current_identity, get_user_service, require_admin
from quillnest.schemas.common import ErrorResponse, MessageResponse
from quillnest.schemas.user import (
    AdminGrantResponse,
    PictureResponse,
    UpdateUserRequest,
    UserListResponse,
    UserResponse,
)
from quillnest.services.credential_store import Identity
from quillnest.services.file_service import IncomingFile
from quillnest.services.user_service import UserService

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/v1",
    tags=["Users"],
    responses={401: {"description": "Not authenticated", "model": ErrorResponse}},
)


@router.get("/get-users", response_model=UserResponse, summary="Profile of the caller")
async def get_user(
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
    users: UserService = Depends(get_user_service),
) -> UserResponse:
    return await users.get_profile(db, identity)


@router.get("/get-all-users", response_model=UserListResponse, summary="All profiles, newest first")
async def get_all_users(
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
    users: UserService = Depends(get_user_service),
) -> UserListResponse:
    return await users.list_profiles(db)


@router.put(
    "/update-user",
    response_model=UserResponse,
    responses={409: {"description": "Username or email taken", "model": ErrorResponse}},
    summary="Change username and/or email",
)
async def update_user(
    body: UpdateUserRequest,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
    users: UserService = Depends(get_user_service),
) -> UserResponse:
    return await users.update_profile(db, identity, username=body.username, email=body.email)


@router.put(
    "/profilePic",
    response_model=PictureResponse,
    responses={
        400: {"description": "Not an allowed image, empty or too large", "model": ErrorResponse},
        502: {"description": "Media host rejected the upload", "model": ErrorResponse},
        503: {"description": "Media host unavailable", "model": ErrorResponse},
    },
    summary="Upload or replace the profile picture",
)
async def update_picture(
    file: UploadFile = File(..., description="JPEG, PNG or GIF image"),
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
    users: UserService = Depends(get_user_service),
) -> PictureResponse:
    upload = IncomingFile(
        filename=file.filename or "picture",
        content=await file.read(),
        content_type=file.content_type,
    )
    return await users.update_picture(db, identity, upload)


@router.delete("/delete-user", response_model=MessageResponse, summary="Delete the caller's account")
async def delete_user(
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
    users: UserService = Depends(get_user_service),
) -> MessageResponse:
    return MessageResponse(message=await users.delete_account(db, identity))


@router.post(
    "/make-admin/{user_id}",
    response_model=AdminGrantResponse,
    responses={
        403: {"description": "Caller is not an admin", "model": ErrorResponse},
        404: {"description": "Unknown user", "model": ErrorResponse},
    },
    summary="Promote a user to admin",
)
async def make_admin(
    user_id: UUID,
    admin: Identity = Depends(require_admin),
    db: AsyncSession = Depends(get_db_session),
    users: UserService = Depends(get_user_service),
) -> AdminGrantResponse:
    logger.info("Admin %s promoting user %s", admin.subject_id, user_id)
    return await users.make_admin(db, user_id)
