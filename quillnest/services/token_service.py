"""
Quillnest Backend — Token Service (Signed Bearer Tokens)
==========================================================

What:  Issues and verifies HMAC-signed JWTs for three purposes:
           session       bearer token sent in `Authorization: Bearer <token>`
           verification  embedded in the email-verification link
           reset         embedded in the password-reset link
How:   PyJWT encodes {sub, iat, exp, typ, ...claims}. `typ` carries the
       purpose so a verification token can never be replayed as a session.
Who:   Authentication gate (session), AuthService (all three).

Information Hiding:
    verify() raises one InvalidTokenError with one message for every failure
    (bad signature, expiry, malformed input, unknown algorithm, missing
    claims, wrong purpose). Callers cannot tell a forged token from an
    expired one, and neither can clients.

Expiry:
    `exp` is checked against the injected clock rather than PyJWT's wall
    clock, so tests can move time forward without sleeping.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

import jwt

from quillnest.exceptions import ConfigurationError, InvalidTokenError

logger = logging.getLogger(__name__)

SESSION = "session"
VERIFICATION = "verification"
RESET = "reset"

RESERVED_CLAIMS = frozenset({"sub", "iat", "exp", "typ", "jti"})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Claims:
    """Decoded, verified token contents."""
    subject_id: str
    purpose: str
    issued_at: datetime
    expires_at: datetime
    claims: Dict[str, Any] = field(default_factory=dict)


class TokenService:
    """
    Stateless signer/verifier.

    Args:
        secret: HMAC key. Empty means unconfigured; issue/verify then raise
            ConfigurationError instead of producing unverifiable tokens.
        algorithm: HS256 / HS384 / HS512
        session_ttl / verification_ttl / reset_ttl: lifetimes per purpose
        clock: returns the current aware UTC datetime
    """

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        session_ttl: timedelta = timedelta(hours=20),
        verification_ttl: timedelta = timedelta(minutes=30),
        reset_ttl: timedelta = timedelta(minutes=15),
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._secret = secret
        self.algorithm = algorithm
        self.session_ttl = session_ttl
        self.verification_ttl = verification_ttl
        self.reset_ttl = reset_ttl
        self._clock = clock or _utcnow

    @classmethod
    def from_settings(cls, settings, clock: Optional[Callable[[], datetime]] = None) -> "TokenService":
        return cls(
            secret=settings.secret_key,
            algorithm=settings.jwt_algorithm,
            session_ttl=timedelta(hours=settings.session_token_ttl_hours),
            verification_ttl=timedelta(seconds=settings.verification_token_ttl_seconds),
            reset_ttl=timedelta(seconds=settings.reset_token_ttl_seconds),
            clock=clock,
        )

    def ttl_for(self, purpose: str) -> timedelta:
        return {
            SESSION: self.session_ttl,
            VERIFICATION: self.verification_ttl,
            RESET: self.reset_ttl,
        }[purpose]

    def _require_secret(self) -> str:
        if not self._secret:
            raise ConfigurationError(
                message="Token signing is not configured on this server.",
                context={"setting": "SECRET_KEY"},
            )
        return self._secret

    def issue(
        self,
        subject_id: Any,
        claims: Optional[Dict[str, Any]] = None,
        ttl: Optional[timedelta] = None,
        purpose: str = SESSION,
    ) -> str:
        """
        Sign a token for `subject_id`.

        Reserved names (sub, iat, exp, typ, jti) in `claims` are ignored; the
        service always sets them itself.
        """
        secret = self._require_secret()
        now = self._clock()
        lifetime = ttl if ttl is not None else self.ttl_for(purpose)

        payload = {k: v for k, v in (claims or {}).items() if k not in RESERVED_CLAIMS}
        payload.update(
            sub=str(subject_id),
            iat=int(now.timestamp()),
            exp=int((now + lifetime).timestamp()),
            typ=purpose,
            # Two tokens for the same subject within one second must still differ
            jti=uuid.uuid4().hex,
        )
        return jwt.encode(payload, secret, algorithm=self.algorithm)

    def verify(self, token: Optional[str], purpose: Optional[str] = None) -> Claims:
        """
        Verify signature, expiry and (optionally) purpose.

        Raises:
            InvalidTokenError: for every kind of failure
            ConfigurationError: no secret configured
        """
        secret = self._require_secret()
        if not token or not isinstance(token, str):
            raise InvalidTokenError()

        try:
            payload = jwt.decode(
                token,
                secret,
                algorithms=[self.algorithm],
                options={
                    "require": ["exp", "iat", "sub"],
                    "verify_exp": False,
                    "verify_iat": False,
                },
            )
        except (jwt.PyJWTError, ValueError, TypeError) as e:
            logger.debug("Token rejected: %s", type(e).__name__)
            raise InvalidTokenError() from None

        exp = payload.get("exp")
        iat = payload.get("iat")
        if not isinstance(exp, (int, float)) or not isinstance(iat, (int, float)):
            raise InvalidTokenError()
        if self._clock().timestamp() >= exp:
            raise InvalidTokenError()

        token_purpose = payload.get("typ", SESSION)
        if purpose is not None and token_purpose != purpose:
            raise InvalidTokenError()

        return Claims(
            subject_id=str(payload["sub"]),
            purpose=token_purpose,
            issued_at=datetime.fromtimestamp(iat, tz=timezone.utc),
            expires_at=datetime.fromtimestamp(exp, tz=timezone.utc),
            claims={k: v for k, v in payload.items() if k not in RESERVED_CLAIMS},
        )
