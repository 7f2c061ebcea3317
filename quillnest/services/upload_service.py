"""
Quillnest Backend — Standalone Upload Service
===============================================

What:  Stores a single image or document on the media host without
       attaching it to a post or a profile.
How:   The file goes through the same upload policy as post attachments
       (FileService), narrowed to images or to documents, then to the
       MediaService port. Nothing is written to the database; the caller
       keeps the returned public id and URL.
Who:   Called by routes/uploads.py.
"""

import logging

from quillnest.schemas.upload import UploadedFile, UploadResponse
from quillnest.services.credential_store import Identity
from quillnest.services.file_service import (
    DOCUMENT_MIME_TYPES,
    IMAGE_MIME_TYPES,
    FileService,
    IncomingFile,
)
from quillnest.services.media_service import UPLOADS_FOLDER, MediaService

logger = logging.getLogger(__name__)

IMAGE = "image"
DOCUMENT = "document"

_ALLOWED = {
    IMAGE: IMAGE_MIME_TYPES,
    DOCUMENT: DOCUMENT_MIME_TYPES,
}


class UploadService:
    def __init__(self, files: FileService, media: MediaService):
        self.files = files
        self.media = media

    async def upload(self, identity: Identity, kind: str, upload: IncomingFile) -> UploadResponse:
        """
        Validate and store one file of the given kind ("image" or "document").

        Raises:
            ValidationError: empty, too large, or not of the requested kind
            UpstreamServiceError: the media host failed
        """
        validated = self.files.validate_file(upload, allowed=_ALLOWED[kind])
        stored = await self.media.upload(
            validated.content,
            validated.filename,
            f"{UPLOADS_FOLDER}/{kind}s",
            resource_type=validated.resource_type,
        )

        logger.info("User %s uploaded %s %s as %s", identity.subject_id, kind, validated.filename, stored.public_id)
        return UploadResponse(
            message=f"{kind.capitalize()} uploaded successfully!",
            file=UploadedFile(
                public_id=stored.public_id,
                url=stored.url,
                filename=validated.filename,
                mimetype=validated.mime_type,
                size=validated.size,
                resource_type=stored.resource_type,
            ),
        )
