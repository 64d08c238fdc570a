"""Upload ingestion: stream to storage, then register a session.

The upload is written chunk by chunk; size ceilings are checked before each
write so an oversized upload is aborted the moment it crosses the limit.
A session is registered only after the file has been fully written and
closed. Every failure path, including cancellation when the client goes
away, deletes the partial file.
"""
import logging
import re
import time
import uuid
from dataclasses import dataclass
from typing import AsyncIterable, Callable, Iterable, Optional

from .codes import CodeGenerator
from .errors import BadRequestError, InternalFaultError, TooLargeError, TransferError
from .multipart import PART_BEGIN, PART_DATA, PART_END, MultipartStream, PartEvent, parse_boundary
from .registry import SessionRegistry
from .schemas import DEFAULT_FILENAME, MAX_REQUEST_BYTES, Session
from .storage import LocalFileStorage, StorageWriter

logger = logging.getLogger(__name__)

# Budget for the name part of a storage key, in UTF-8 bytes
MAX_STORED_NAME_BYTES = 200

_SEPARATORS = re.compile(r"[\\/]")


def safe_filename(name: Optional[str]) -> str:
    """Reduce a client-supplied filename to a bare, printable basename.

    Directory components are stripped for both separator styles, so
    ``a/../../etc/passwd`` becomes ``passwd``. Falls back to
    ``DEFAULT_FILENAME`` when nothing usable is left.
    """
    if not name:
        return DEFAULT_FILENAME
    base = _SEPARATORS.split(name)[-1]
    base = "".join(ch for ch in base if ch >= " " and ch != "\x7f").strip()
    if base in ("", ".", ".."):
        return DEFAULT_FILENAME
    return base


def make_storage_key(original_name: str) -> str:
    """Build a collision-resistant storage key for *original_name*."""
    name = original_name.encode("utf-8")[:MAX_STORED_NAME_BYTES].decode("utf-8", "ignore")
    return f"{uuid.uuid4().hex}_{name or DEFAULT_FILENAME}"


@dataclass
class _FormUpload:
    """Progress of the file part being taken from a multipart body."""
    writer: Optional[StorageWriter] = None
    original_name: str = DEFAULT_FILENAME
    receiving: bool = False
    complete: bool = False


class IngestionPipeline:
    """Writes uploads to storage and registers sessions for them.

    Args:
        registry:          Live session registry.
        codes:             Code generator bound to the same registry.
        storage:           Where uploaded bytes are written.
        max_request_bytes: Ceiling for a whole request body.
        max_file_bytes:    Ceiling for a single stored file; None for none.
        clock:             Source of ``created_at`` timestamps.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        codes: CodeGenerator,
        storage: LocalFileStorage,
        max_request_bytes: int = MAX_REQUEST_BYTES,
        max_file_bytes: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._registry = registry
        self._codes = codes
        self._storage = storage
        self._max_request_bytes = max_request_bytes
        self._max_file_bytes = max_file_bytes
        self._clock = clock

    # -----------------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------------

    async def ingest(self, stream: AsyncIterable[bytes], suggested_name: Optional[str] = None) -> Session:
        """Store a raw byte stream and register a session for it.

        Raises:
            TooLargeError: If the stream crosses a size ceiling.
            CapacityExhaustedError: If no access code is free.
            InternalFaultError: On storage failure.
        """
        original_name = safe_filename(suggested_name)
        writer = await self._open(original_name)
        try:
            async for chunk in stream:
                if writer.bytes_written + len(chunk) > self._max_request_bytes:
                    raise TooLargeError(self._max_request_bytes)
                await self._write(writer, chunk)
        except BaseException:
            await writer.discard()
            raise
        return await self._commit(writer, original_name)

    async def ingest_form(self, body: AsyncIterable[bytes], content_type: Optional[str]) -> Session:
        """Store the first file part of a multipart/form-data body.

        Further file parts and plain form fields are read and dropped; their
        bytes still count toward the request ceiling.

        Raises:
            BadRequestError: If the body is not multipart or carries no file.
            TooLargeError: If the body crosses a size ceiling.
            CapacityExhaustedError: If no access code is free.
            InternalFaultError: On storage failure.
        """
        reader = MultipartStream(parse_boundary(content_type))
        upload = _FormUpload()
        received = 0
        try:
            async for raw in body:
                received += len(raw)
                if received > self._max_request_bytes:
                    raise TooLargeError(self._max_request_bytes)
                await self._apply(upload, reader.feed(raw))
            await self._apply(upload, reader.finish())
            if upload.writer is None:
                raise BadRequestError()
            if not upload.complete:
                raise BadRequestError("Bad Request: incomplete file part")
        except BaseException:
            if upload.writer is not None:
                await upload.writer.discard()
            raise
        return await self._commit(upload.writer, upload.original_name)

    # -----------------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------------

    async def _apply(self, upload: _FormUpload, events: Iterable[PartEvent]) -> None:
        for kind, value in events:
            if kind == PART_BEGIN:
                if value is not None and upload.writer is None:
                    upload.original_name = safe_filename(value)
                    upload.writer = await self._open(upload.original_name)
                    upload.receiving = True
            elif kind == PART_DATA:
                if upload.receiving:
                    await self._write(upload.writer, value)
            elif kind == PART_END:
                if upload.receiving:
                    upload.receiving = False
                    upload.complete = True

    async def _open(self, original_name: str) -> StorageWriter:
        key = make_storage_key(original_name)
        try:
            return await self._storage.open_writer(key)
        except OSError as exc:
            logger.exception("Failed to create stored file %s", key)
            raise InternalFaultError() from exc

    async def _write(self, writer: StorageWriter, chunk: bytes) -> None:
        if self._max_file_bytes is not None and writer.bytes_written + len(chunk) > self._max_file_bytes:
            raise TooLargeError(self._max_file_bytes)
        try:
            await writer.write(chunk)
        except OSError as exc:
            logger.exception("Failed writing stored file %s", writer.key)
            raise InternalFaultError() from exc

    async def _commit(self, writer: StorageWriter, original_name: str) -> Session:
        """Close the file, allocate a code and register the session."""
        try:
            await writer.close()
        except OSError as exc:
            logger.exception("Failed closing stored file %s", writer.key)
            await writer.discard()
            raise InternalFaultError() from exc

        try:
            with self._registry.locked():
                session = Session(
                    code=self._codes.allocate(),
                    storage_key=writer.key,
                    original_name=original_name,
                    size_bytes=writer.bytes_written,
                    created_at=self._clock(),
                )
                self._registry.put(session)
        except TransferError:
            await writer.discard()
            raise

        logger.info(
            "Upload stored: code=%d name=%s (%d bytes)",
            session.code,
            session.original_name,
            session.size_bytes,
        )
        return session
