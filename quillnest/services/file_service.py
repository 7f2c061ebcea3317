"""
Quillnest Backend — Upload Policy Service
===========================================

What:  Validates uploaded files before they are sent to the media host.
Why:   The media host stores whatever it is given. Type and size limits are
       enforced here, once, for post attachments and profile pictures alike.
How:   Checks count, size and sniffed MIME type, sanitises the filename and
       decides the media-host resource type ("image" or "raw").
Who:   Called by PostService (attachments) and UserService (profile pictures).

Security Model:
    1. Count check:   at most `max_files_per_post` attachments per request
    2. Size check:    empty files and files above `max_upload_size` rejected
    3. MIME check:    content is sniffed with libmagic; the client-declared
                      Content-Type is only used when libmagic is unavailable
    4. Filename:      directory components stripped, spaces replaced, and the
                      result only ever used as a hint for the media host
"""

import logging
import re
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import List, Optional, Sequence

from quillnest.exceptions import ValidationError

logger = logging.getLogger(__name__)

# ── Allowed File Types ────────────────────────────────────────────────────
IMAGE_MIME_TYPES = {
    "image/jpeg",
    "image/png",
    "image/gif",
}

DOCUMENT_MIME_TYPES = {
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
}

ALLOWED_MIME_TYPES = IMAGE_MIME_TYPES | DOCUMENT_MIME_TYPES

# libmagic reports .docx as a zip container on some platforms
_DOCX_ALIASES = {"application/zip", "application/octet-stream"}
_DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]")


@dataclass(frozen=True)
class IncomingFile:
    """One file as received from a multipart request."""
    filename: str
    content: bytes
    content_type: Optional[str] = None


@dataclass(frozen=True)
class ValidatedFile:
    """A file that passed the upload policy and may be sent to the media host."""
    filename: str
    content: bytes
    mime_type: str

    @property
    def resource_type(self) -> str:
        return "image" if self.mime_type in IMAGE_MIME_TYPES else "raw"

    @property
    def size(self) -> int:
        return len(self.content)


def sanitize_filename(filename: Optional[str]) -> str:
    """
    Reduce a client-supplied filename to a safe single path component.

    "../../etc/my file.PDF" → "my_file.PDF"
    """
    name = PurePosixPath((filename or "").replace("\\", "/")).name
    name = name.replace(" ", "_")
    name = _UNSAFE_FILENAME_CHARS.sub("", name).lstrip(".")
    return name or "upload"


class FileService:
    """
    Applies the upload policy.

    Validation order (cheapest first):
        1. File count
        2. Size (empty / too large)
        3. Sniffed MIME type against the allow-list
    """

    def __init__(self, max_upload_size: int = 4_194_304, max_files_per_post: int = 10):
        self.max_upload_size = max_upload_size
        self.max_files_per_post = max_files_per_post

    @classmethod
    def from_settings(cls, settings) -> "FileService":
        return cls(
            max_upload_size=settings.max_upload_size,
            max_files_per_post=settings.max_files_per_post,
        )

    def validate_size(self, filename: str, size: int) -> None:
        if size == 0:
            raise ValidationError(
                message=f"File '{filename}' is empty.",
                field="files",
                context={"filename": filename},
            )
        if size > self.max_upload_size:
            max_mb = self.max_upload_size / (1024 * 1024)
            raise ValidationError(
                message=(
                    f"File '{filename}' ({size / (1024 * 1024):.1f}MB) exceeds "
                    f"the maximum of {max_mb:.0f}MB."
                ),
                field="files",
                context={"filename": filename, "max_size": self.max_upload_size, "actual_size": size},
            )

    def detect_mime_type(self, content: bytes, declared: Optional[str]) -> str:
        """
        Determine the MIME type from the file's magic bytes.

        Falls back to the client-declared type when python-magic (or the
        libmagic shared library behind it) is not installed.
        """
        try:
            import magic
            mime_type = magic.from_buffer(content[:4096], mime=True)
        except ImportError:
            logger.warning(
                "python-magic not available — falling back to the declared content type. "
                "Install libmagic for production security."
            )
            return (declared or "application/octet-stream").split(";")[0].strip().lower()

        if mime_type in _DOCX_ALIASES and declared == _DOCX_MIME:
            return _DOCX_MIME
        return mime_type

    def validate_file(self, upload: IncomingFile, allowed: Optional[set] = None) -> ValidatedFile:
        """
        Validate one file against size and type rules.

        Args:
            upload: The received file
            allowed: MIME allow-list; defaults to images + documents

        Returns:
            ValidatedFile carrying the detected MIME type and a safe filename

        Raises:
            ValidationError: empty, too large, or type not allowed
        """
        allowed = allowed or ALLOWED_MIME_TYPES
        filename = sanitize_filename(upload.filename)

        self.validate_size(filename, len(upload.content))

        mime_type = self.detect_mime_type(upload.content, upload.content_type)
        if mime_type not in allowed:
            raise ValidationError(
                message=f"File type '{mime_type}' is not supported for '{filename}'.",
                field="files",
                context={"filename": filename, "detected_mime": mime_type, "allowed": sorted(allowed)},
            )

        return ValidatedFile(filename=filename, content=upload.content, mime_type=mime_type)

    def validate_post_files(self, uploads: Sequence[IncomingFile]) -> List[ValidatedFile]:
        """Validate the attachments of one post (images and documents)."""
        if len(uploads) > self.max_files_per_post:
            raise ValidationError(
                message=f"A post can carry at most {self.max_files_per_post} files.",
                field="files",
                context={"max_files": self.max_files_per_post, "received": len(uploads)},
            )
        return [self.validate_file(upload) for upload in uploads]

    def validate_picture(self, upload: IncomingFile) -> ValidatedFile:
        """Validate a profile picture (images only)."""
        return self.validate_file(upload, allowed=IMAGE_MIME_TYPES)
