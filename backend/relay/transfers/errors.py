"""Exception hierarchy for the transfer session manager.

Every error carries the HTTP status the boundary layer should answer with,
so the router can translate them without a lookup table.
"""


class TransferError(Exception):
    """Base exception for transfer errors."""
    def __init__(self, message: str, status_code: int = 500):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class BadRequestError(TransferError):
    """Raised when an upload carries no file content."""
    def __init__(self, message: str = "Bad Request: No file uploaded"):
        super().__init__(message, status_code=400)


class TooLargeError(TransferError):
    """Raised when an upload crosses a size ceiling."""
    def __init__(self, limit_bytes: int):
        self.limit_bytes = limit_bytes
        if limit_bytes >= 1024 * 1024:
            limit = f"{limit_bytes // (1024 * 1024)}MB"
        else:
            limit = f"{limit_bytes} bytes"
        super().__init__(f"File too large. Maximum allowed is {limit}.", status_code=413)


class CapacityExhaustedError(TransferError):
    """Raised when every access code is held by a live session."""
    def __init__(self, message: str = "No access codes available, try again later"):
        super().__init__(message, status_code=503)


class NotFoundError(TransferError):
    """Raised for unknown, already-served and expired codes alike."""
    def __init__(self, message: str = "Invalid code"):
        super().__init__(message, status_code=404)


class TransferAbortedError(TransferError):
    """Raised when a download cannot be completed mid-stream."""
    def __init__(self, message: str = "Transfer aborted"):
        super().__init__(message, status_code=499)


class InternalFaultError(TransferError):
    """Raised for storage I/O failures and registry inconsistencies."""
    def __init__(self, message: str = "Internal server error"):
        super().__init__(message, status_code=500)


class RegistryConsistencyError(InternalFaultError):
    """Raised when a code is inserted twice into the registry."""
    def __init__(self, code: int):
        self.code = code
        super().__init__(f"Code {code} is already registered")
