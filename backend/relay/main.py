"""PeerLink Relay Application.

This is the main entry point for the relay backend. A client uploads a file
and receives a numeric code; whoever holds the code can download the file
once, after which it is deleted. Unclaimed files expire after a TTL.

Endpoints:
    - POST /upload: store a file, returns its access code
    - GET /download/{code}: one-shot download
    - GET /health: liveness and live session count
"""
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from relay import __version__
from relay.config import get_config
from relay.transfers import TransferManager, router as transfers_router

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Silence verbose third-party loggers.
# python-multipart logs every parser state change at DEBUG.
for _noisy in (
    "multipart",
    "python_multipart",
    "uvicorn.access",
):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    config = get_config()

    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    manager = TransferManager(config)
    app.state.transfer_manager = manager
    await manager.start()

    logger.info(
        f"PeerLink relay listening on http://{config.server.host}:{config.server.port} "
        f"(upload: POST /upload, download: GET /download/{{code}})"
    )

    yield  # Application runs here

    # Shutdown
    await manager.stop()
    logger.info("Application shutdown complete")


def create_app() -> FastAPI:
    """Build the FastAPI application."""
    config = get_config()

    application = FastAPI(
        title="PeerLink Relay API",
        description="One-shot file relay: upload once, download once",
        version=__version__,
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=config.server.allowed_origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
        expose_headers=["Content-Disposition"],
    )

    application.include_router(transfers_router)

    @application.get("/health")
    async def health(request: Request) -> dict:
        """Health check endpoint.

        Returns:
            dict: Status object with the number of live sessions.
        """
        manager = getattr(request.app.state, "transfer_manager", None)
        live = len(manager.registry) if manager is not None else 0
        return {"status": "ok", "live_sessions": live}

    return application


app = create_app()


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    config = get_config()
    uvicorn.run(
        "relay.main:app",
        host=config.server.host,
        port=config.server.port,
        log_level=config.logging.level.lower(),
    )


if __name__ == "__main__":
    run()
