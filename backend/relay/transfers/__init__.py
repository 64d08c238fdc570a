"""Transfer session manager.

Uploads are streamed to a local directory and bound to a short numeric
access code. A code can be downloaded exactly once; the file is deleted as
soon as it has been delivered in full. Uploads nobody collects are removed
by the expiry sweeper once they outlive the TTL.
"""

from .errors import (
    BadRequestError,
    CapacityExhaustedError,
    InternalFaultError,
    NotFoundError,
    RegistryConsistencyError,
    TooLargeError,
    TransferAbortedError,
    TransferError,
)
from .manager import TransferManager, get_transfer_manager
from .schemas import Session, UploadResponse
from .router import router

__all__ = [
    "BadRequestError",
    "CapacityExhaustedError",
    "InternalFaultError",
    "NotFoundError",
    "RegistryConsistencyError",
    "TooLargeError",
    "TransferAbortedError",
    "TransferError",
    "TransferManager",
    "get_transfer_manager",
    "Session",
    "UploadResponse",
    "router",
]
