"""
Quillnest Backend — Custom Exception Hierarchy
=================================================

What:  Application-specific exceptions, one per failure kind.
How:   Each exception carries a user-facing message and an optional context
       dict. Global exception handlers (registered in main.py) map them to
       HTTP status codes and a JSON body.
Who:   Raised by services and dependencies; caught by global handlers.

Exception Hierarchy:
    QuillnestError (base)
    ├── ValidationError          → 400 Bad Request
    ├── UnauthorizedError        → 401 Unauthorized ("who are you?")
    ├── ForbiddenError           → 403 Forbidden ("known, but not permitted")
    ├── NotFoundError            → 404 Not Found
    ├── ConflictError            → 409 Conflict (duplicate email, duplicate row)
    ├── RateLimitExceededError   → 429 Too Many Requests
    ├── UpstreamServiceError     → 502 Bad Gateway (media/mail host rejected the call)
    │   ├── UpstreamUnavailableError → 503 Service Unavailable (retryable)
    │   ├── UpstreamTimeoutError → 503 Service Unavailable (retryable)
    │   └── CircuitOpenError     → 503 Service Unavailable (retryable)
    ├── ConfigurationError       → 500 Internal Server Error
    └── DatabaseError            → 500 Internal Server Error

    InvalidTokenError is deliberately NOT a QuillnestError. It is raised by the
    token service and translated by the authentication gate (or the auth
    flows) into UnauthorizedError / ValidationError, so a bad token can never
    reach a client with a distinguishing message.
"""

from typing import Any, Dict, Optional


class QuillnestError(Exception):
    """
    Base exception for all Quillnest application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged but NOT returned to client
                  unless the handler opts in)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(QuillnestError):
    """
    Raised when client input fails validation (BadRequest).

    When:    Unsupported file type/size, mismatched passwords, wrong credentials.
    HTTP:    400 Bad Request
    """

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class UnauthorizedError(QuillnestError):
    """
    Raised when a request carries no usable credential.

    When:    Missing/malformed Authorization header, invalid or expired token,
             token subject no longer exists, session revoked.
    HTTP:    401 Unauthorized. The client must re-authenticate; no retry helps.
    """

    def __init__(
        self,
        message: str = "Invalid or expired token",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class ForbiddenError(QuillnestError):
    """
    Raised when an authenticated caller is not permitted to act.

    When:    Non-admin calling an admin route, non-author editing a post,
             unverified account logging in.
    HTTP:    403 Forbidden
    """

    def __init__(
        self,
        message: str = "You are not allowed to perform this action",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class NotFoundError(QuillnestError):
    """
    Raised when a requested resource does not exist.

    SQLAlchemy returns None for missing rows; services convert that None into
    this exception so routes stay free of status-code logic.
    """

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        message: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        if message is None:
            message = f"The requested {resource} was not found"
            if resource_id:
                message = f"{resource.capitalize()} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)


class ConflictError(QuillnestError):
    """
    Raised on a uniqueness violation.

    When:    Signup with an email that is already registered, profile update to
             a taken username/email.
    HTTP:    409 Conflict
    """

    def __init__(
        self,
        message: str = "The resource already exists",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class RateLimitExceededError(QuillnestError):
    """
    Raised when a client exceeds the per-IP request rate limit.

    HTTP:    429 Too Many Requests, with a Retry-After header.
    """

    def __init__(
        self,
        retry_after: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"Rate limit exceeded. Please wait {retry_after} seconds before making more requests."
        )
        ctx = context or {}
        ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after


class UpstreamServiceError(QuillnestError):
    """
    Raised when the media host or the mail provider fails.

    Attributes:
        service:    Which upstream failed ("media" or "mail")
        retryable:  False for permanent rejections (bad credentials, refused
                    payload); subclasses set it for transient failures.
    HTTP:    502 Bad Gateway
    """

    retryable = False

    def __init__(
        self,
        message: str = "An upstream service failed",
        service: str = "upstream",
        retry_after: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["service"] = service
        if retry_after:
            ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.service = service
        self.retry_after = retry_after


class UpstreamUnavailableError(UpstreamServiceError):
    """
    Raised when an upstream reports a transient failure (5xx, rate limited,
    connection reset).

    HTTP:    503 Service Unavailable
    """

    retryable = True


class UpstreamTimeoutError(UpstreamServiceError):
    """
    Raised when an upstream call exceeds `upstream_timeout_seconds`.

    HTTP:    503 Service Unavailable. The same request may succeed later.
    """

    retryable = True

    def __init__(
        self,
        service: str = "upstream",
        timeout: Optional[float] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if timeout is not None:
            ctx["timeout_seconds"] = timeout
        super().__init__(
            message=f"The {service} service did not respond in time. Please try again.",
            service=service,
            retry_after=5,
            context=ctx,
        )


class CircuitOpenError(UpstreamServiceError):
    """
    Raised when an upstream's circuit breaker is OPEN.

    How circuit breaker works:
        CLOSED (normal) → failures increment counter
        → After N failures → OPEN (reject all calls for M seconds)
        → After M seconds → HALF-OPEN (allow one test call)
        → Test succeeds → CLOSED; test fails → OPEN again
    HTTP:    503 Service Unavailable
    """

    retryable = True

    def __init__(
        self,
        service: str = "upstream",
        recovery_time: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=(
                f"The {service} service is temporarily unavailable due to repeated failures. "
                f"Please retry in approximately {recovery_time} seconds."
            ),
            service=service,
            retry_after=recovery_time,
            context=context,
        )
        self.recovery_time = recovery_time


class ConfigurationError(QuillnestError):
    """
    Raised when a required setting is missing at the point of use.

    When:    Issuing or verifying a token with no SECRET_KEY configured.
    HTTP:    500 Internal Server Error (generic message to the client)
    """

    def __init__(
        self,
        message: str = "The server is not configured correctly",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class DatabaseError(QuillnestError):
    """
    Raised when database operations fail unexpectedly.

    Security Note:
        The message returned to the client is always generic. Details (SQL,
        constraint names) are logged server-side only.
    """

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class InvalidTokenError(Exception):
    """
    Raised by TokenService.verify for every verification failure.

    Bad signature, expiry, malformed input, unknown algorithm and purpose
    mismatch all produce this one type with one message, so callers cannot
    tell a forged token from an expired one.
    """

    def __init__(self, message: str = "Invalid or expired token"):
        self.message = message
        super().__init__(message)
