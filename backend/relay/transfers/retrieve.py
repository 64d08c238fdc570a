"""Download retrieval with deliver-then-delete semantics.

A download streams the stored file in bounded chunks. The session and the
file are retired only after the last chunk has been handed to the consumer;
if the consumer stops early (client disconnect, cancellation) or a read
fails, the session is left in place so the code can be retried.

While a download is streaming, its code is claimed in the registry so a
second concurrent download of the same code is refused. The Expiry Sweeper
ignores claims and may expire a session mid-download. Every registry
update a stream makes is conditional on the session it resolved, so a code
reissued after expiry is never released or retired by the stale stream.
"""
import logging
from contextlib import aclosing
from typing import AsyncIterator

from .errors import InternalFaultError, NotFoundError, TransferAbortedError
from .registry import SessionRegistry
from .schemas import DEFAULT_CHUNK_SIZE, Session
from .storage import LocalFileStorage

logger = logging.getLogger(__name__)


class Download:
    """A resolved download, ready to be streamed once.

    Attributes:
        code: Access code being served.
        filename: Name the receiver should save the file under.
        size_bytes: Number of bytes the stream will produce.
    """

    def __init__(self, pipeline: "RetrievalPipeline", session: Session, chunk_size: int) -> None:
        self._pipeline = pipeline
        self._chunk_size = chunk_size
        self._session = session
        self.code = session.code
        self.filename = session.original_name
        self.size_bytes = session.size_bytes

    async def iter_bytes(self) -> AsyncIterator[bytes]:
        """Yield the file contents, then retire the session."""
        registry = self._pipeline.registry
        session = registry.claim(self.code, expected=self._session)
        if session is None:
            logger.warning("Download aborted: code=%d was retired or claimed before streaming", self.code)
            raise TransferAbortedError()

        finished = False
        try:
            sent = 0
            try:
                chunks = self._pipeline.storage.iter_chunks(session.storage_key, self._chunk_size)
                async with aclosing(chunks):
                    async for chunk in chunks:
                        sent += len(chunk)
                        yield chunk
            except OSError as exc:
                logger.warning("Download aborted: code=%d read failed after %d bytes: %s", self.code, sent, exc)
                raise TransferAbortedError() from exc

            if sent != session.size_bytes:
                logger.warning(
                    "Download aborted: code=%d sent %d of %d bytes",
                    self.code,
                    sent,
                    session.size_bytes,
                )
                raise TransferAbortedError()

            finished = True
            await self._pipeline.retire(session)
            logger.info("Download complete: code=%d name=%s (%d bytes)", self.code, self.filename, sent)
        finally:
            if not finished:
                registry.release(self.code, expected=session)


class RetrievalPipeline:
    """Resolves access codes to downloads.

    Args:
        registry:   Live session registry.
        storage:    Where stored files are read from and deleted.
        chunk_size: Read size for streaming.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        storage: LocalFileStorage,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        self.registry = registry
        self.storage = storage
        self._chunk_size = chunk_size

    async def retrieve(self, code: int) -> Download:
        """Resolve *code* to a streamable download.

        Raises:
            NotFoundError: If the code is unknown, already served, expired,
                currently being downloaded, or its file is gone.
            InternalFaultError: If storage cannot be queried.
        """
        session = self.registry.get(code)
        if session is None or self.registry.is_claimed(code):
            raise NotFoundError()

        try:
            present = await self.storage.exists(session.storage_key)
        except OSError as exc:
            logger.exception("Failed to stat stored file for code=%d", code)
            raise InternalFaultError() from exc
        if not present:
            logger.warning("Session code=%d has no stored file", code)
            raise NotFoundError()

        return Download(self, session, self._chunk_size)

    async def retire(self, session: Session) -> None:
        """Deregister *session* and delete its file.

        Losing the race to the sweeper is not an error: the file is gone
        either way. A newer session that reused the code is left alone.
        """
        if self.registry.remove(session.code, expected=session) is None:
            logger.info("Session code=%d already retired by sweeper", session.code)
        try:
            await self.storage.delete(session.storage_key)
        except OSError:
            # The registry entry is gone; the orphan scan reclaims the file.
            logger.exception("Failed to delete served file for code=%d", session.code)
