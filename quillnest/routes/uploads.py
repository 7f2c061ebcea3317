"""
Quillnest Backend — Standalone Upload Route Handlers
======================================================

What:  POST /upload/image and POST /upload/document store one file on the
       media host and return its URL. Both need a session token and share
       the attachment policy (4 MiB, sniffed type); /image takes JPEG, PNG
       or GIF, /document takes PDF, DOC or DOCX.
"""

from fastapi import APIRouter, Depends, File, UploadFile, status

from quillnest.dependencies import get_current_identity, get_upload_service
from quillnest.schemas.common import ErrorResponse
from quillnest.schemas.upload import UploadResponse
from quillnest.services.credential_store import Identity
from quillnest.services.file_service import IncomingFile
from quillnest.services.upload_service import DOCUMENT, IMAGE, UploadService

router = APIRouter(
    prefix="/upload",
    tags=["Uploads"],
    responses={
        400: {"description": "File missing, empty, too large or of the wrong kind", "model": ErrorResponse},
        401: {"description": "Not authenticated", "model": ErrorResponse},
        502: {"description": "Media host rejected the upload", "model": ErrorResponse},
        503: {"description": "Media host unavailable", "model": ErrorResponse},
    },
)


async def _incoming(file: UploadFile) -> IncomingFile:
    return IncomingFile(
        filename=file.filename or "upload",
        content=await file.read(),
        content_type=file.content_type,
    )


@router.post(
    "/image",
    response_model=UploadResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Upload a single image",
)
async def upload_image(
    file: UploadFile = File(..., description="JPEG, PNG or GIF image"),
    identity: Identity = Depends(get_current_identity),
    uploads: UploadService = Depends(get_upload_service),
) -> UploadResponse:
    return await uploads.upload(identity, IMAGE, await _incoming(file))


@router.post(
    "/document",
    response_model=UploadResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Upload a single document",
)
async def upload_document(
    file: UploadFile = File(..., description="PDF, DOC or DOCX document"),
    identity: Identity = Depends(get_current_identity),
    uploads: UploadService = Depends(get_upload_service),
) -> UploadResponse:
    return await uploads.upload(identity, DOCUMENT, await _incoming(file))
