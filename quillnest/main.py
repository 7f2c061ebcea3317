"""
Quillnest Backend — FastAPI Application Factory
=================================================

What:  Creates and configures the FastAPI application instance.
How:   create_app() builds the services, registers middleware, exception
       handlers and routers, and returns the app.
Who:   uvicorn (`uvicorn quillnest.main:app`) and the test suite, which calls
       create_app() with its own settings, database and fake upstream ports.

Application Architecture:
    ┌───────────────────────────────────────────────────────────┐
    │                        FastAPI App                        │
    │                                                           │
    │  Middleware:  Rate Limit → Request ID → Logging → GZip    │
    │               → CORS                                      │
    │                                                           │
    │  app.state:   settings, database, token_service,          │
    │               media_service, mail_service, auth_service,  │
    │               user_service, post_service, comment_service,│
    │               upload_service                              │
    │                                                           │
    │  Routes:      /api/v1 auth, users, post/*, comment/*      │
    │               /upload/image, /upload/document, /health    │
    └───────────────────────────────────────────────────────────┘

Why services are built here rather than in the lifespan:
    httpx's ASGITransport does not run lifespan events, so anything a
    request needs must exist as soon as create_app() returns.
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from quillnest import __version__
from quillnest.config import Settings, settings as default_settings
from quillnest.database import Database
from quillnest.exceptions import (
    ConfigurationError,
    ConflictError,
    DatabaseError,
    ForbiddenError,
    NotFoundError,
    QuillnestError,
    RateLimitExceededError,
    UnauthorizedError,
    UpstreamServiceError,
    ValidationError,
)
from quillnest.middleware.logging import RequestLoggingMiddleware
from quillnest.middleware.rate_limit import RateLimitMiddleware
from quillnest.middleware.request_id import RequestIDMiddleware, request_id_var
from quillnest.routes import auth, comments, health, posts, uploads, users
from quillnest.services.auth_service import AuthService
from quillnest.services.comment_service import CommentService
from quillnest.services.file_service import FileService
from quillnest.services.mail_service import ConsoleMailService, MailService, SendGridMailService
from quillnest.services.media_service import CloudinaryMediaService, MediaService, UnconfiguredMediaService
from quillnest.services.post_service import PostService
from quillnest.services.token_service import TokenService
from quillnest.services.upload_service import UploadService
from quillnest.services.user_service import UserService

logger = logging.getLogger(__name__)

# Seconds a client should wait after a transient upstream failure
DEFAULT_RETRY_AFTER = 5


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure the root logger once, at startup.

    Format: 2024-01-15T12:00:00 [INFO] quillnest.services.auth_service: message
    """
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    # Third-party libraries that log every operation at INFO/DEBUG
    for noisy in ("uvicorn.access", "sqlalchemy.engine", "httpcore", "httpx", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan (Startup & Shutdown)
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Startup:
        1. Configure logging
        2. Report missing production settings (logged, not fatal, so the
           health endpoint can still answer)
    Shutdown:
        1. Dispose the database engine
    """
    settings: Settings = app.state.settings
    setup_logging(settings.log_level)
    logger.info("=" * 60)
    logger.info("Quillnest Backend %s starting up...", __version__)

    try:
        settings.validate_required_for_production()
    except ValueError as e:
        logger.error("Configuration error: %s", e)

    logger.info("Media host: %s", "cloudinary" if settings.media_configured else "not configured")
    logger.info("Mail: %s", "sendgrid" if settings.sendgrid_api_key else "console (log only)")
    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)
    logger.info("=" * 60)

    yield

    logger.info("Quillnest Backend shutting down...")
    await app.state.database.dispose()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def _error_body(error: str, message: str, details: Optional[dict] = None) -> dict:
    body = {"error": error, "message": message, "request_id": request_id_var.get("")}
    if details:
        body["details"] = details
    return body


def register_exception_handlers(app: FastAPI) -> None:
    """
    Map exception types to status codes and the standard error body.

    Handler hierarchy:
        ValidationError / RequestValidationError → 400
        UnauthorizedError       → 401
        ForbiddenError          → 403
        NotFoundError           → 404
        ConflictError           → 409
        RateLimitExceededError  → 429 (Retry-After)
        UpstreamServiceError    → 502 permanent, 503 retryable (Retry-After)
        ConfigurationError      → 500 (generic message)
        DatabaseError           → 500 (generic message)
        QuillnestError (base)   → 500
        Exception (fallback)    → 500, stack trace logged server-side only
    """

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        logger.warning("[%s] Validation error: %s", request_id_var.get(""), exc.message)
        return JSONResponse(
            status_code=400,
            content=_error_body("validation_error", exc.message, exc.context),
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation_error(request: Request, exc: RequestValidationError):
        """Schema failures (missing, unknown or malformed fields) are 400s, not 422s."""
        errors = [
            {
                "field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"),
                "message": err.get("msg", "Invalid value"),
            }
            for err in exc.errors()
        ]
        message = errors[0]["message"] if len(errors) == 1 else "Request validation failed"
        return JSONResponse(
            status_code=400,
            content=_error_body("validation_error", message, {"errors": errors}),
        )

    @app.exception_handler(UnauthorizedError)
    async def handle_unauthorized(request: Request, exc: UnauthorizedError):
        return JSONResponse(
            status_code=401,
            content=_error_body("unauthorized", exc.message),
            headers={"WWW-Authenticate": "Bearer"},
        )

    @app.exception_handler(ForbiddenError)
    async def handle_forbidden(request: Request, exc: ForbiddenError):
        return JSONResponse(status_code=403, content=_error_body("forbidden", exc.message))

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content=_error_body("not_found", exc.message))

    @app.exception_handler(ConflictError)
    async def handle_conflict(request: Request, exc: ConflictError):
        return JSONResponse(status_code=409, content=_error_body("conflict", exc.message))

    @app.exception_handler(RateLimitExceededError)
    async def handle_rate_limit(request: Request, exc: RateLimitExceededError):
        return JSONResponse(
            status_code=429,
            content=_error_body("rate_limit_exceeded", exc.message, exc.context),
            headers={"Retry-After": str(exc.retry_after)},
        )

    @app.exception_handler(UpstreamServiceError)
    async def handle_upstream_error(request: Request, exc: UpstreamServiceError):
        """Media host or mail provider failed; retryable failures say when to come back."""
        rid = request_id_var.get("")
        logger.error("[%s] Upstream %s error: %s | Context: %s", rid, exc.service, exc.message, exc.context)
        if exc.retryable:
            return JSONResponse(
                status_code=503,
                content=_error_body("service_unavailable", exc.message, {"service": exc.service}),
                headers={"Retry-After": str(exc.retry_after or DEFAULT_RETRY_AFTER)},
            )
        return JSONResponse(
            status_code=502,
            content=_error_body("upstream_error", exc.message, {"service": exc.service}),
        )

    @app.exception_handler(ConfigurationError)
    async def handle_configuration_error(request: Request, exc: ConfigurationError):
        logger.error("[%s] Configuration error: %s | Context: %s", request_id_var.get(""), exc.message, exc.context)
        return JSONResponse(
            status_code=500,
            content=_error_body("server_error", "An internal error occurred. Please try again later."),
        )

    @app.exception_handler(DatabaseError)
    async def handle_database_error(request: Request, exc: DatabaseError):
        logger.error("[%s] Database error: %s | Context: %s", request_id_var.get(""), exc.message, exc.context)
        return JSONResponse(
            status_code=500,
            content=_error_body("server_error", "An internal error occurred. Please try again later."),
        )

    @app.exception_handler(QuillnestError)
    async def handle_application_error(request: Request, exc: QuillnestError):
        logger.error("[%s] Unhandled application error: %s", request_id_var.get(""), exc.message)
        return JSONResponse(status_code=500, content=_error_body("server_error", exc.message))

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.error("[%s] Unexpected error: %s", request_id_var.get(""), exc, exc_info=True)
        return JSONResponse(
            status_code=500,
            content=_error_body(
                "internal_server_error",
                "An unexpected error occurred. Please try again or contact support.",
            ),
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def build_media_service(settings: Settings) -> MediaService:
    if settings.media_configured:
        return CloudinaryMediaService.from_settings(settings)
    return UnconfiguredMediaService()


def build_mail_service(settings: Settings) -> MailService:
    if settings.sendgrid_api_key:
        return SendGridMailService.from_settings(settings)
    return ConsoleMailService()


def create_app(
    settings: Optional[Settings] = None,
    database: Optional[Database] = None,
    media_service: Optional[MediaService] = None,
    mail_service: Optional[MailService] = None,
    token_service: Optional[TokenService] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Every argument is optional; omitted collaborators are built from
    `settings` (the process-wide default when that is omitted too).
    """
    settings = settings or default_settings

    app = FastAPI(
        title="Quillnest API",
        description=(
            "Blogging backend: accounts with email verification, posts with "
            "image and document attachments, comments, likes and shares."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ── Services ──────────────────────────────────────────────────────────
    database = database or Database.from_settings(settings)
    tokens = token_service or TokenService.from_settings(settings)
    media = media_service or build_media_service(settings)
    mail = mail_service or build_mail_service(settings)
    files = FileService.from_settings(settings)
    post_service = PostService(files=files, media=media)

    app.state.settings = settings
    app.state.database = database
    app.state.token_service = tokens
    app.state.media_service = media
    app.state.mail_service = mail
    app.state.auth_service = AuthService.from_settings(settings, tokens=tokens, mail=mail)
    app.state.post_service = post_service
    app.state.user_service = UserService(files=files, media=media, posts=post_service)
    app.state.comment_service = CommentService(public_base_url=settings.public_base_url)
    app.state.upload_service = UploadService(files=files, media=media)

    # ── Middleware ────────────────────────────────────────────────────────
    # Executes in REVERSE order of addition: RateLimit runs first
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Total-Count", "Retry-After"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(RateLimitMiddleware, settings=settings)

    register_exception_handlers(app)

    # ── Routes ────────────────────────────────────────────────────────────
    app.include_router(auth.router)
    app.include_router(users.router)
    app.include_router(posts.router)
    app.include_router(comments.router)
    app.include_router(uploads.router)
    app.include_router(health.router)

    return app


# ── Application Instance ─────────────────────────────────────────────────
# uvicorn expects `quillnest.main:app` to be importable
app = create_app()
