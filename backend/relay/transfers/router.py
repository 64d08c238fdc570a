"""FastAPI router for upload and download endpoints."""
import logging
import mimetypes
from urllib.parse import quote

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse
from starlette.requests import ClientDisconnect

from .errors import InternalFaultError, NotFoundError, TransferError
from .manager import TransferManager, get_transfer_manager
from .schemas import UploadResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["transfers"])

# Fallbacks for types the platform mimetypes table may not know
_EXTRA_MEDIA_TYPES = {
    ".mkv": "video/x-matroska",
    ".mp4": "video/mp4",
    ".avi": "video/x-msvideo",
    ".zip": "application/zip",
    ".rar": "application/vnd.rar",
    ".7z": "application/x-7z-compressed",
    ".pdf": "application/pdf",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".mp3": "audio/mpeg",
    ".wav": "audio/wav",
}


def guess_media_type(filename: str) -> str:
    """Guess a Content-Type from the file extension."""
    media_type, _ = mimetypes.guess_type(filename, strict=False)
    if media_type:
        return media_type
    dot = filename.rfind(".")
    if dot != -1:
        return _EXTRA_MEDIA_TYPES.get(filename[dot:].lower(), "application/octet-stream")
    return "application/octet-stream"


def content_disposition(filename: str) -> str:
    """Build an attachment header safe for any filename.

    The quoted ``filename`` is an ASCII fallback with quotes, backslashes and
    control characters removed; ``filename*`` carries the exact UTF-8 name.
    """
    cleaned = "".join(ch for ch in filename if ch >= " " and ch not in '"\\\x7f')
    fallback = "".join(ch if ord(ch) < 128 else "_" for ch in cleaned) or "download"
    encoded = quote(cleaned, safe="")
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{encoded}"


def _to_http(exc: TransferError) -> HTTPException:
    if isinstance(exc, InternalFaultError):
        return HTTPException(status_code=500, detail="Internal server error")
    return HTTPException(status_code=exc.status_code, detail=exc.message)


@router.post("/upload", response_model=UploadResponse)
async def upload_file(
    request: Request,
    manager: TransferManager = Depends(get_transfer_manager),
):
    """Upload a file and receive a one-time access code.

    The body must be ``multipart/form-data``; the first part carrying a
    filename is stored, anything else is ignored.

    Returns:
        UploadResponse with the access code

    Raises:
        HTTPException 400: If no file part was sent
        HTTPException 413: If the upload exceeds the size limit
        HTTPException 503: If no access code is free
        HTTPException 500: If storage fails
    """
    try:
        session = await manager.ingest_form(
            request.stream(),
            request.headers.get("content-type"),
        )
    except ClientDisconnect:
        logger.info("Upload aborted: client disconnected")
        raise HTTPException(status_code=499, detail="Client disconnected")
    except TransferError as e:
        logger.info("Upload rejected (%d): %s", e.status_code, e.message)
        raise _to_http(e)

    return UploadResponse(
        code=session.code,
        port=session.code,
        filename=session.original_name,
        size_bytes=session.size_bytes,
        expires_in_seconds=manager.config.sessions.ttl_seconds,
    )


@router.get("/download/{code}")
async def download_file(
    code: str,
    manager: TransferManager = Depends(get_transfer_manager),
):
    """Download a file by access code, once.

    The file is deleted after it has been streamed in full. An interrupted
    download leaves the code valid.

    Raises:
        HTTPException 404: If the code does not resolve to a file
    """
    try:
        if not (code.isascii() and code.isdigit()):
            raise NotFoundError()
        download = await manager.retrieve(int(code))
    except TransferError as e:
        raise _to_http(e)

    return StreamingResponse(
        download.iter_bytes(),
        media_type=guess_media_type(download.filename),
        headers={
            "Content-Disposition": content_disposition(download.filename),
            "Content-Length": str(download.size_bytes),
            "X-Content-Type-Options": "nosniff",
        },
    )
