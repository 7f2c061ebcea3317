"""
Quillnest Backend — Credential Route Handlers
===============================================

What:  signup, email verification, login, forgot/reset password, signout.
How:   Thin handlers: parse the body, call AuthService, pick the status code.

Status codes worth knowing:
    POST /signup                   201 (also when the email could not be sent)
    POST /verify/{id}/{token}      200 verified / already verified,
                                   202 link invalid or expired, a new one was sent
    POST /login                    400 bad credentials, 403 not verified yet
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from quillnest.database import get_db_session
from quillnest.dependencies import get_auth_service, get_current_identity
from quillnest.schemas.common import ErrorResponse, MessageResponse
from quillnest.schemas.user import (
    ForgotPasswordRequest,
    LoginRequest,
    LoginResponse,
    ResetPasswordRequest,
    SignupRequest,
    SignupResponse,
    VerifyResponse,
)
from quillnest.services.auth_service import AuthService
from quillnest.services.credential_store import Identity

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["Auth"])


@router.post(
    "/signup",
    response_model=SignupResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"description": "Invalid input", "model": ErrorResponse},
        409: {"description": "Email or username already registered", "model": ErrorResponse},
    },
    summary="Create an account",
)
async def signup(
    body: SignupRequest,
    db: AsyncSession = Depends(get_db_session),
    auth: AuthService = Depends(get_auth_service),
) -> SignupResponse:
    return await auth.signup(db, username=body.username, email=body.email, password=body.password)


@router.post(
    "/verify/{user_id}/{token}",
    response_model=VerifyResponse,
    responses={
        202: {"description": "Link invalid or expired; a new one was emailed", "model": VerifyResponse},
        404: {"description": "Unknown user", "model": ErrorResponse},
    },
    summary="Verify an email address",
)
async def verify_email(
    user_id: UUID,
    token: str,
    response: Response,
    db: AsyncSession = Depends(get_db_session),
    auth: AuthService = Depends(get_auth_service),
) -> VerifyResponse:
    result = await auth.verify(db, user_id=user_id, token=token)
    if result.resent:
        response.status_code = status.HTTP_202_ACCEPTED
    return result


@router.post(
    "/login",
    response_model=LoginResponse,
    responses={
        400: {"description": "Invalid email or password", "model": ErrorResponse},
        403: {"description": "Email not verified", "model": ErrorResponse},
    },
    summary="Log in and receive a session token",
)
async def login(
    body: LoginRequest,
    db: AsyncSession = Depends(get_db_session),
    auth: AuthService = Depends(get_auth_service),
) -> LoginResponse:
    return await auth.login(db, email=body.email, password=body.password)


@router.post(
    "/forgot-password",
    response_model=MessageResponse,
    summary="Request a password-reset email",
    description="Responds the same way whether or not the email is registered.",
)
async def forgot_password(
    body: ForgotPasswordRequest,
    db: AsyncSession = Depends(get_db_session),
    auth: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    return MessageResponse(message=await auth.forgot_password(db, email=body.email))


@router.put(
    "/reset-password",
    response_model=MessageResponse,
    responses={400: {"description": "Token invalid or passwords rejected", "model": ErrorResponse}},
    summary="Set a new password with a reset token",
)
async def reset_password(
    body: ResetPasswordRequest,
    db: AsyncSession = Depends(get_db_session),
    auth: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    message = await auth.reset_password(
        db,
        token=body.token,
        password=body.password,
        confirm_password=body.confirm_password,
    )
    return MessageResponse(message=message)


@router.post(
    "/signout",
    response_model=MessageResponse,
    responses={401: {"description": "Not authenticated", "model": ErrorResponse}},
    summary="Revoke every session token of the caller",
)
async def signout(
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
    auth: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    return MessageResponse(message=await auth.signout(db, identity))
