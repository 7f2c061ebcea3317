"""
Quillnest Backend — Credential Lifecycle Flows
================================================

What:  signup → verify → login → forgot/reset password → signout.
How:   Composes the CredentialStore, TokenService, bcrypt helpers and the
       MailPort. Stateless apart from its collaborators; the session is
       passed into every call.
Who:   Called by routes/auth.py.

Flow Summary:
    signup          409 if the email exists; account created unverified;
                    verification mail failure does NOT roll the account back
    verify          already verified → OK; bad/expired token → new token is
                    mailed and the caller is told so (202); else verified
    login           unknown email and wrong password give the same 400;
                    correct password but unverified → 403
    forgot-password same 200 whether or not the email is registered
    reset-password  token must be a reset token AND equal the stored one;
                    reuse of the current password rejected; token cleared
    signout         reset token cleared, session_version bumped so every
                    earlier session token fails the gate

bcrypt runs in a worker thread: at cost 12 one hash takes ~250ms of CPU.
"""

import asyncio
import logging
from typing import Optional, Union
from urllib.parse import quote
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from quillnest.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidTokenError,
    NotFoundError,
    UpstreamServiceError,
    ValidationError,
)
from quillnest.models.user import User
from quillnest.schemas.user import (
    LoginResponse,
    SignupResponse,
    UserResponse,
    VerifyResponse,
)
from quillnest.services.credential_store import (
    Identity,
    credential_store,
    normalize_email,
)
from quillnest.services.mail_service import (
    MailService,
    build_reset_email,
    build_verification_email,
)
from quillnest.services.passwords import hash_password, verify_password
from quillnest.services.token_service import (
    RESET,
    SESSION,
    VERIFICATION,
    Claims,
    TokenService,
)

logger = logging.getLogger(__name__)

GENERIC_LOGIN_ERROR = "Invalid email or password"
GENERIC_RESET_ERROR = "Invalid or expired reset token"
FORGOT_PASSWORD_MESSAGE = "If an account exists for this email, a password reset link has been sent."
MAIL_FAILURE_WARNING = (
    "Your account was created but the verification email could not be sent. "
    "Please contact support."
)


class AuthService:
    """
    Credential flows.

    Args:
        tokens: Signs and verifies session / verification / reset tokens
        mail: Outgoing mail port
        public_base_url: Prefix for links placed in emails
        bcrypt_rounds: bcrypt cost factor for new hashes
        initial_admin_emails: Accounts signing up with these emails start as admins
    """

    def __init__(
        self,
        tokens: TokenService,
        mail: MailService,
        public_base_url: str = "http://localhost:8000",
        bcrypt_rounds: int = 12,
        initial_admin_emails: Optional[list] = None,
    ):
        self.tokens = tokens
        self.mail = mail
        self.public_base_url = public_base_url.rstrip("/")
        self.bcrypt_rounds = bcrypt_rounds
        self.initial_admin_emails = {normalize_email(e) for e in (initial_admin_emails or [])}
        self._dummy_hash: Optional[str] = None

    @classmethod
    def from_settings(cls, settings, tokens: TokenService, mail: MailService) -> "AuthService":
        return cls(
            tokens=tokens,
            mail=mail,
            public_base_url=settings.public_base_url,
            bcrypt_rounds=settings.bcrypt_rounds,
            initial_admin_emails=settings.initial_admin_email_list,
        )

    # ── Helpers ───────────────────────────────────────────────────────────

    async def _hash(self, password: str) -> str:
        return await asyncio.to_thread(hash_password, password, self.bcrypt_rounds)

    async def _matches(self, password: str, hashed: str) -> bool:
        return await asyncio.to_thread(verify_password, password, hashed)

    async def _burn_hash_time(self, password: str) -> None:
        # Unknown emails still pay for one bcrypt check so response timing
        # does not reveal which emails are registered
        if self._dummy_hash is None:
            self._dummy_hash = await self._hash("quillnest-timing-equaliser")
        await self._matches(password, self._dummy_hash)

    def _claims_or_none(self, token: str, purpose: str) -> Optional[Claims]:
        try:
            return self.tokens.verify(token, purpose=purpose)
        except InvalidTokenError:
            return None

    def verification_link(self, user: User, token: str) -> str:
        return f"{self.public_base_url}/api/v1/verify/{user.id}/{quote(token, safe='')}"

    def reset_link(self, token: str) -> str:
        return f"{self.public_base_url}/reset-password?token={quote(token, safe='')}"

    async def _send_verification(self, user: User, resent: bool = False) -> bool:
        """
        Issue a verification token and mail the link.

        Returns False (after logging) when the mail port fails; the caller
        reports that to the client instead of failing the whole request.
        """
        token = self.tokens.issue(user.id, ttl=self.tokens.verification_ttl, purpose=VERIFICATION)
        subject, body = build_verification_email(
            user.username,
            self.verification_link(user, token),
            valid_minutes=int(self.tokens.verification_ttl.total_seconds() // 60),
            resent=resent,
        )
        try:
            await self.mail.send(user.email, subject, body)
        except UpstreamServiceError as e:
            logger.warning("Verification email for user %s not sent: %s", user.id, e.message)
            return False
        return True

    # ── Flows ─────────────────────────────────────────────────────────────

    async def signup(self, db: AsyncSession, username: str, email: str, password: str) -> SignupResponse:
        """
        Register a new, unverified account and mail the verification link.

        Raises:
            ConflictError: email (or username) already registered
        """
        email = normalize_email(email)
        if await credential_store.get_by_email(db, email) is not None:
            raise ConflictError(message="User already exists!", context={"field": "email"})

        password_hash = await self._hash(password)
        is_admin = email in self.initial_admin_emails
        user = await credential_store.create(
            db,
            username=username,
            email=email,
            password_hash=password_hash,
            is_admin=is_admin,
        )
        if is_admin:
            logger.info("User %s created as initial admin", user.id)

        email_sent = await self._send_verification(user)
        return SignupResponse(
            message=(
                "Signup successful. Please check your email to verify your account."
                if email_sent
                else "Signup successful."
            ),
            user=UserResponse.from_user(user),
            email_sent=email_sent,
            warning=None if email_sent else MAIL_FAILURE_WARNING,
        )

    async def verify(self, db: AsyncSession, user_id: Union[str, UUID], token: str) -> VerifyResponse:
        """
        Consume an email-verification token.

        An expired or otherwise invalid token is not an error for the user:
        a fresh link is mailed and `resent=True` is returned.

        Raises:
            NotFoundError: no user with that id
        """
        user = await credential_store.get_by_id(db, user_id)
        if user is None:
            raise NotFoundError(resource="user", resource_id=str(user_id), message="User not found")

        if user.is_verified:
            return VerifyResponse(message="Email already verified", verified=True)

        claims = self._claims_or_none(token, VERIFICATION)
        if claims is None or claims.subject_id != str(user.id):
            logger.info("Verification token rejected for user %s; re-sending", user.id)
            email_sent = await self._send_verification(user, resent=True)
            return VerifyResponse(
                message=(
                    "Verification link expired or invalid. A new link has been sent to your email."
                    if email_sent
                    else "Verification link expired or invalid, and a new link could not be sent. "
                    "Please contact support."
                ),
                verified=False,
                resent=True,
                email_sent=email_sent,
            )

        await credential_store.update(db, user, is_verified=True)
        logger.info("User %s verified", user.id)
        return VerifyResponse(message="Email verified successfully", verified=True)

    async def login(self, db: AsyncSession, email: str, password: str) -> LoginResponse:
        """
        Exchange email + password for a session token.

        Raises:
            ValidationError: unknown email or wrong password (same message)
            ForbiddenError: correct password, account not verified yet
        """
        user = await credential_store.get_by_email(db, email)
        if user is None:
            await self._burn_hash_time(password)
            raise ValidationError(message=GENERIC_LOGIN_ERROR)
        if not await self._matches(password, user.password_hash):
            raise ValidationError(message=GENERIC_LOGIN_ERROR)
        if not user.is_verified:
            raise ForbiddenError(message="Please verify your email before logging in")

        token = self.tokens.issue(
            user.id,
            claims={"is_admin": user.is_admin, "sv": user.session_version},
            ttl=self.tokens.session_ttl,
            purpose=SESSION,
        )
        logger.info("User %s logged in", user.id)
        return LoginResponse(
            token=token,
            expires_in=int(self.tokens.session_ttl.total_seconds()),
            user=UserResponse.from_user(user),
        )

    async def forgot_password(self, db: AsyncSession, email: str) -> str:
        """
        Store a fresh reset token on the account and mail the link.

        Always returns the same message so the endpoint does not reveal which
        emails are registered. A mail failure is logged, not surfaced, for
        the same reason.
        """
        user = await credential_store.get_by_email(db, email)
        if user is None:
            logger.info("Password reset requested for unknown email")
            return FORGOT_PASSWORD_MESSAGE

        token = self.tokens.issue(user.id, ttl=self.tokens.reset_ttl, purpose=RESET)
        # One active reset token per user: this replaces any earlier one
        await credential_store.update(db, user, reset_token=token)

        subject, body = build_reset_email(
            user.username,
            self.reset_link(token),
            valid_minutes=int(self.tokens.reset_ttl.total_seconds() // 60),
        )
        try:
            await self.mail.send(user.email, subject, body)
        except UpstreamServiceError as e:
            logger.error("Reset email for user %s not sent: %s", user.id, e.message)
        return FORGOT_PASSWORD_MESSAGE

    async def reset_password(
        self,
        db: AsyncSession,
        token: str,
        password: str,
        confirm_password: str,
    ) -> str:
        """
        Replace the password of the account the reset token belongs to.

        Raises:
            ValidationError: passwords differ, token invalid/expired/superseded,
                or the new password equals the current one
        """
        if password != confirm_password:
            raise ValidationError(message="Passwords do not match", field="confirm_password")

        claims = self._claims_or_none(token, RESET)
        if claims is None:
            raise ValidationError(message=GENERIC_RESET_ERROR, field="token")

        user = await credential_store.get_by_id(db, claims.subject_id)
        if user is None or user.reset_token is None or user.reset_token != token:
            raise ValidationError(message=GENERIC_RESET_ERROR, field="token")

        if await self._matches(password, user.password_hash):
            raise ValidationError(
                message="New password must be different from the current password",
                field="password",
            )

        await credential_store.update(
            db,
            user,
            password_hash=await self._hash(password),
            reset_token=None,
            session_version=user.session_version + 1,
        )
        logger.info("Password reset for user %s", user.id)
        return "Password has been reset successfully"

    async def signout(self, db: AsyncSession, identity: Identity) -> str:
        """Revoke every session token of the caller and any pending reset token."""
        user = await credential_store.require_by_id(db, identity.subject_id)
        await credential_store.update(
            db,
            user,
            reset_token=None,
            session_version=user.session_version + 1,
        )
        logger.info("User %s signed out", user.id)
        return "Signed out successfully"
