"""TransferManager: one object wiring the relay core together.

Constructed once in the application lifespan and stored on ``app.state``;
routes reach it through the :func:`get_transfer_manager` dependency.
"""
import logging
import random
import time
from typing import AsyncIterable, Callable, Optional

from fastapi import Request

from relay.config import AppConfig

from .codes import CodeGenerator
from .ingest import IngestionPipeline
from .registry import SessionRegistry
from .retrieve import Download, RetrievalPipeline
from .schemas import Session
from .storage import LocalFileStorage
from .sweeper import ExpirySweeper

logger = logging.getLogger(__name__)


class TransferManager:
    """Owns the registry, storage and both pipelines plus the sweeper."""

    def __init__(
        self,
        config: AppConfig,
        clock: Callable[[], float] = time.time,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.config = config
        storage_cfg = config.storage
        session_cfg = config.sessions

        self.registry = SessionRegistry()
        self.storage = LocalFileStorage(storage_cfg.upload_dir)
        self.codes = CodeGenerator(
            self.registry,
            code_min=session_cfg.code_min,
            code_max=session_cfg.code_max,
            max_random_attempts=session_cfg.max_random_attempts,
            rng=rng,
        )
        self.ingestion = IngestionPipeline(
            self.registry,
            self.codes,
            self.storage,
            max_request_bytes=storage_cfg.max_request_bytes,
            max_file_bytes=storage_cfg.max_file_bytes,
            clock=clock,
        )
        self.retrieval = RetrievalPipeline(
            self.registry,
            self.storage,
            chunk_size=storage_cfg.chunk_size,
        )
        self.sweeper = ExpirySweeper(
            self.registry,
            self.storage,
            ttl_seconds=session_cfg.ttl_seconds,
            interval_seconds=session_cfg.sweep_interval_seconds,
            clock=clock,
        )

    # -----------------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------------

    async def start(self) -> None:
        await self.sweeper.start()
        logger.info("Transfer manager ready (upload_dir=%s)", self.storage.upload_dir)

    async def stop(self) -> None:
        """Stop sweeping and forget live sessions; their files stay on disk."""
        await self.sweeper.stop()
        if len(self.registry):
            logger.info("Dropping %d live sessions on shutdown", len(self.registry))
        self.registry.clear()

    # -----------------------------------------------------------------------
    # Operations
    # -----------------------------------------------------------------------

    async def ingest(self, stream: AsyncIterable[bytes], suggested_name: Optional[str] = None) -> Session:
        return await self.ingestion.ingest(stream, suggested_name)

    async def ingest_form(self, body: AsyncIterable[bytes], content_type: Optional[str]) -> Session:
        return await self.ingestion.ingest_form(body, content_type)

    async def retrieve(self, code: int) -> Download:
        return await self.retrieval.retrieve(code)

    async def sweep_once(self) -> int:
        return await self.sweeper.sweep_once()

    def stats(self) -> dict:
        return {
            "live_sessions": len(self.registry),
            "ttl_seconds": self.config.sessions.ttl_seconds,
            "sweeper_running": self.sweeper.running,
        }


def get_transfer_manager(request: Request) -> TransferManager:
    """FastAPI dependency returning the manager built at startup."""
    return request.app.state.transfer_manager
