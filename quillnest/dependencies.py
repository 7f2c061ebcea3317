"""
Quillnest Backend — Route Dependencies (Authentication & Authorization Gates)
===============================================================================

What:  FastAPI dependencies that authenticate the caller and hand services to
       route handlers.
How:   Services are built once in create_app() and stored on `app.state`;
       the providers below only read them back, so tests can inject fakes
       through create_app() without patching modules.

Authentication gate, per request:
    NoToken ──header──▶ TokenPresent ──verify(session)──▶ credential re-check ──▶ Verified
       │                    │                                   │
       └──── 401 ◀──────────┴───────────── 401 ◀────────────────┘

    The re-check is mandatory: a valid signature is not enough. The subject
    must still exist and the token's session version must match the stored
    one (signout bumps it). `is_admin` is taken from the stored row.
"""

import logging

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from quillnest.database import get_db_session
from quillnest.exceptions import ForbiddenError, InvalidTokenError, UnauthorizedError
from quillnest.services.auth_service import AuthService
from quillnest.services.comment_service import CommentService
from quillnest.services.credential_store import Identity, credential_store
from quillnest.services.post_service import PostService
from quillnest.services.token_service import SESSION, TokenService
from quillnest.services.upload_service import UploadService
from quillnest.services.user_service import UserService

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "


# ── Service Providers ─────────────────────────────────────────────────────

def get_token_service(request: Request) -> TokenService:
    return request.app.state.token_service


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def get_user_service(request: Request) -> UserService:
    return request.app.state.user_service


def get_post_service(request: Request) -> PostService:
    return request.app.state.post_service


def get_comment_service(request: Request) -> CommentService:
    return request.app.state.comment_service


def get_upload_service(request: Request) -> UploadService:
    return request.app.state.upload_service


# ── Gates ─────────────────────────────────────────────────────────────────

def extract_bearer_token(header: str) -> str:
    """
    Return the token from an `Authorization: Bearer <token>` header value.

    Raises:
        UnauthorizedError: header missing, other scheme, or empty token
    """
    if not header or not header.startswith(BEARER_PREFIX):
        raise UnauthorizedError(message="Invalid authorization token")
    token = header[len(BEARER_PREFIX):].strip()
    if not token or " " in token:
        raise UnauthorizedError(message="Invalid authorization token")
    return token


async def get_current_identity(
    request: Request,
    db: AsyncSession = Depends(get_db_session),
    tokens: TokenService = Depends(get_token_service),
) -> Identity:
    """
    Authentication gate.

    Returns:
        Identity of the caller, also stored on `request.state.identity`

    Raises:
        UnauthorizedError: no usable token, token invalid or expired, subject
            deleted, or session revoked by signout
    """
    token = extract_bearer_token(request.headers.get("Authorization", ""))

    try:
        claims = tokens.verify(token, purpose=SESSION)
    except InvalidTokenError as e:
        raise UnauthorizedError(message=e.message) from None

    user = await credential_store.get_by_id(db, claims.subject_id)
    if user is None:
        logger.info("Session token for a deleted user rejected")
        raise UnauthorizedError()
    if claims.claims.get("sv") != user.session_version:
        logger.info("Revoked session token for user %s rejected", user.id)
        raise UnauthorizedError()

    identity = Identity(subject_id=user.id, is_admin=user.is_admin)
    request.state.identity = identity
    return identity


async def require_admin(identity: Identity = Depends(get_current_identity)) -> Identity:
    """
    Authorization gate: the authentication gate plus an admin check.

    Raises:
        ForbiddenError: the caller is authenticated but not an admin
    """
    if not identity.is_admin:
        raise ForbiddenError(message="Not an Admin! User not authorized")
    return identity
