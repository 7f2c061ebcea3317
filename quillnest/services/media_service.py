"""
Quillnest Backend — Media Port (Abstract Interface + Cloudinary)
==================================================================

What:  Stores and deletes binary assets (post attachments, profile pictures)
       on a third-party media host.
Why:   Services depend on the abstract MediaService, never on an SDK. Tests
       inject an in-memory implementation through `create_app()`.
How:   CloudinaryMediaService calls the Cloudinary SDK through an
       UpstreamCaller (worker thread, timeout, retry, circuit breaker).

Contract:
    upload(content, filename, folder, resource_type) -> StoredMedia
        Raises an UpstreamServiceError subclass on failure. Never returns a
        partial result.
    delete(public_id, resource_type) -> None
        Idempotent: an asset the host no longer knows counts as deleted.
    health_check() -> bool
        Never raises.
"""

import asyncio
import io
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import cloudinary
import cloudinary.api
import cloudinary.exceptions
import cloudinary.uploader

from quillnest.exceptions import (
    UpstreamServiceError,
    UpstreamUnavailableError,
)
from quillnest.services.resilience import CircuitBreaker, UpstreamCaller

logger = logging.getLogger(__name__)

POST_MEDIA_FOLDER = "quillnest/posts"
AVATAR_FOLDER = "quillnest/avatars"
UPLOADS_FOLDER = "quillnest/uploads"


@dataclass(frozen=True)
class StoredMedia:
    public_id: str
    url: str
    resource_type: str = "image"


class MediaService(ABC):
    """
    Abstract base class for media hosts.

    `circuit_breaker` is exposed for the health endpoint; implementations
    without one report "closed".
    """

    name = "media"
    circuit_breaker: Optional[CircuitBreaker] = None

    @abstractmethod
    async def upload(
        self,
        content: bytes,
        filename: str,
        folder: str,
        resource_type: str = "image",
    ) -> StoredMedia:
        """Store one asset and return its public id and URL."""
        ...

    @abstractmethod
    async def delete(self, public_id: str, resource_type: str = "image") -> None:
        """Remove one asset. Unknown ids are treated as already deleted."""
        ...

    async def health_check(self) -> bool:
        return True

    @property
    def circuit_state(self) -> str:
        if self.circuit_breaker is None:
            return CircuitBreaker.CLOSED
        return self.circuit_breaker.state


def map_cloudinary_error(exc: Exception) -> UpstreamServiceError:
    """
    Classify a Cloudinary SDK failure.

    RateLimited / GeneralError (5xx, unparsable responses) and transport errors
    are transient. BadRequest, AuthorizationRequired, NotAllowed and friends
    are permanent.
    """
    if isinstance(exc, (cloudinary.exceptions.RateLimited, cloudinary.exceptions.GeneralError, OSError)):
        return UpstreamUnavailableError(
            message="The media host is temporarily unavailable. Please try again.",
            service="media",
            context={"error_type": type(exc).__name__},
        )
    return UpstreamServiceError(
        message="The media host rejected the upload.",
        service="media",
        context={"error_type": type(exc).__name__},
    )


class CloudinaryMediaService(MediaService):
    """
    Cloudinary implementation of the media port.

    Error Handling Chain:
        SDK call fails → mapped to transient/permanent → transient retried
        (tenacity) → still failing → breaker failure recorded → error raised
        → threshold reached → subsequent calls rejected instantly
    """

    def __init__(
        self,
        cloud_name: str,
        api_key: str,
        api_secret: str,
        caller: UpstreamCaller,
    ):
        # The SDK keeps credentials in module-level config
        cloudinary.config(
            cloud_name=cloud_name,
            api_key=api_key,
            api_secret=api_secret,
            secure=True,
        )
        self.caller = caller
        self.circuit_breaker = caller.breaker
        logger.info(
            "CloudinaryMediaService initialized for cloud=%s, "
            "circuit_breaker(threshold=%d, recovery=%ds)",
            cloud_name,
            caller.breaker.failure_threshold,
            caller.breaker.recovery_timeout,
        )

    @classmethod
    def from_settings(cls, settings) -> "CloudinaryMediaService":
        return cls(
            cloud_name=settings.cloudinary_cloud_name,
            api_key=settings.cloudinary_api_key,
            api_secret=settings.cloudinary_api_secret,
            caller=UpstreamCaller.from_settings("media", map_cloudinary_error, settings),
        )

    async def upload(
        self,
        content: bytes,
        filename: str,
        folder: str,
        resource_type: str = "image",
    ) -> StoredMedia:
        """
        A timed-out attempt keeps running in its worker thread and may still
        land on the host. Every attempt of one upload therefore writes the
        same public id with overwrite=True, so retries replace a single
        asset instead of leaving one orphan per attempt.
        """
        asset_id = uuid.uuid4().hex

        def send() -> dict:
            # fresh stream per attempt, a retried one would start at EOF
            return cloudinary.uploader.upload(
                io.BytesIO(content),
                folder=folder,
                resource_type=resource_type,
                filename=filename,
                public_id=asset_id,
                overwrite=True,
            )

        result = await self.caller.call("upload", send)

        public_id = result.get("public_id")
        url = result.get("secure_url") or result.get("url")
        if not public_id or not url:
            raise UpstreamServiceError(
                message="The media host returned an incomplete upload response.",
                service="media",
                context={"keys": sorted(result.keys())},
            )

        logger.info("Uploaded %s to media host as %s (%d bytes)", filename, public_id, len(content))
        return StoredMedia(
            public_id=public_id,
            url=url,
            resource_type=result.get("resource_type", resource_type),
        )

    async def delete(self, public_id: str, resource_type: str = "image") -> None:
        result = await self.caller.call(
            "delete",
            cloudinary.uploader.destroy,
            public_id,
            resource_type=resource_type,
            invalidate=True,
        )

        outcome = result.get("result")
        if outcome == "not found":
            logger.info("Media asset %s already gone", public_id)
            return
        if outcome != "ok":
            raise UpstreamServiceError(
                message="The media host refused to delete an asset.",
                service="media",
                context={"public_id": public_id, "result": outcome},
            )
        logger.info("Deleted media asset %s", public_id)

    async def health_check(self) -> bool:
        """Ping the Admin API. Returns False instead of raising."""
        try:
            await asyncio.wait_for(
                asyncio.to_thread(cloudinary.api.ping),
                timeout=self.caller.timeout,
            )
            return True
        except Exception as e:
            logger.warning("Media host health check failed: %s", str(e))
            return False


class UnconfiguredMediaService(MediaService):
    """
    Stand-in used when no Cloudinary credentials are configured.

    Every upload fails with a permanent error, so a misconfigured deployment
    reports the problem instead of silently dropping attachments. Deletes are
    no-ops: nothing can have been stored.
    """

    async def upload(
        self,
        content: bytes,
        filename: str,
        folder: str,
        resource_type: str = "image",
    ) -> StoredMedia:
        raise UpstreamServiceError(
            message="Media uploads are not configured on this server.",
            service="media",
        )

    async def delete(self, public_id: str, resource_type: str = "image") -> None:
        logger.warning("Media host not configured; skipping delete of %s", public_id)

    async def health_check(self) -> bool:
        return False
