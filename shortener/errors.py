"""Error taxonomy for short key allocation and resolution.

Every failure the core can report is a ``ShortenerError`` subclass carrying the
HTTP status the API layer answers with. Failures are scoped to one request;
none of them is fatal to the process.

Error Map
=========
::
    ShortenerError
    ├─ InvalidInput          400  caller contract violation (empty URL)
    ├─ NotFound              404  key (or URL) not mapped
    ├─ AllocationExhausted   503  every attempt collided, caller may retry
    ├─ DuplicateKey          ---  store → controller signal, never surfaced
    ├─ StorageUnavailable    500  infrastructure fault, not retried
    └─ DeadlineExceeded      504  caller deadline elapsed mid-call
"""

__all__ = [
    "ShortenerError",
    "InvalidInput",
    "NotFound",
    "AllocationExhausted",
    "DuplicateKey",
    "StorageUnavailable",
    "DeadlineExceeded",
]


class ShortenerError(Exception):
    """Base class for all shortener failures."""

    status_code: int = 500
    default_message: str = "Internal server error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidInput(ShortenerError):
    status_code = 400
    default_message = "URL cannot be empty"


class NotFound(ShortenerError):
    status_code = 404
    default_message = "Short URL not found"


class AllocationExhausted(ShortenerError):
    """Raised when ``max_attempts`` candidates were all taken."""

    status_code = 503
    default_message = "Service unavailable, please try again later"

    def __init__(self, attempts: int, message: str | None = None) -> None:
        self.attempts = attempts
        super().__init__(message)


class DuplicateKey(ShortenerError):
    """Raised by ``MappingStore.save`` when the short key is already taken."""

    status_code = 409
    default_message = "Short key already exists"

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"Short key '{key}' already exists")


class StorageUnavailable(ShortenerError):
    status_code = 500
    default_message = "Internal server error"


class DeadlineExceeded(ShortenerError):
    status_code = 504
    default_message = "Request deadline exceeded"
