"""
Quillnest Backend — Standalone Upload Schemas
===============================================
"""

from pydantic import BaseModel, Field


class UploadedFile(BaseModel):
    public_id: str = Field(description="Asset id on the media host")
    url: str
    filename: str = Field(description="Sanitised client filename")
    mimetype: str = Field(description="MIME type detected from the content")
    size: int = Field(description="Size in bytes")
    resource_type: str = Field(description="'image' or 'raw'")


class UploadResponse(BaseModel):
    message: str
    file: UploadedFile
