"""Pydantic schemas for the transfer session manager.

This module defines the data models for one-shot file relay:
- Session: the live binding between an access code and its stored file
- UploadResponse: API response after a successful upload

Files are stored flat in the upload directory under a collision-resistant
token joined to a sanitized copy of the original filename. The session
registry is in-memory only, so nothing here is ever persisted.
"""
import time

from pydantic import BaseModel, ConfigDict, Field


# Placeholder used when the uploader sends no usable filename
DEFAULT_FILENAME = "unnamed-file"

# Inclusive access code range
CODE_MIN = 1
CODE_MAX = 65535

# Upload ceiling for a whole request: 500MB
MAX_REQUEST_BYTES = 500 * 1024 * 1024

# Read size for streaming downloads
DEFAULT_CHUNK_SIZE = 64 * 1024


class Session(BaseModel):
    """A live transfer session.

    A session exists from the moment its upload has been fully written to
    storage until it is either downloaded in full or swept as expired.
    ``original_name`` is only used to name the download; the file on disk
    lives under ``storage_key``, which the ingestion pipeline derives.
    """
    model_config = ConfigDict(frozen=True)

    code: int = Field(..., ge=1, description="Access code")
    storage_key: str = Field(..., description="Filename in the upload directory")
    original_name: str = Field(..., description="Sanitized original filename")
    size_bytes: int = Field(0, ge=0, description="Stored size in bytes")
    created_at: float = Field(default_factory=time.time, description="Creation timestamp")

    def age(self, now: float) -> float:
        return now - self.created_at


class UploadResponse(BaseModel):
    """Response after a successful upload.

    ``port`` mirrors ``code``; the web client still reads the code from
    that field.
    """
    code: int = Field(..., description="Access code for the download")
    port: int = Field(..., description="Alias of code")
    filename: str = Field(..., description="Name the download will carry")
    size_bytes: int = Field(..., description="Stored size in bytes")
    expires_in_seconds: int = Field(..., description="Time before an unclaimed file is purged")
