"""Error taxonomy for connectors, imports and the sync endpoints.

Each error carries the HTTP status the API layer answers with, so route
handlers can turn any ``SyncError`` into a ``{"success": False, "error": ...}``
response without a per-type branch.
"""


class SyncError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class SyncValidationError(SyncError):
    """Malformed input: bad credential format, unsupported file, schema mismatch."""

    status_code = 400


class TradeValidationError(SyncValidationError):
    """A canonical trade breaks its positivity/identity invariant."""


class PlatformConnectionError(SyncError):
    """Transport failure or timeout talking to an external platform."""

    status_code = 502


class AuthenticationError(SyncError):
    """The external platform rejected the credentials."""

    status_code = 401


class ImportFormatError(SyncError):
    """A whole document could not be recognised as a trade report."""

    status_code = 400


class RateLimitError(SyncError):
    status_code = 429

    def __init__(self, message: str, retry_after: float):
        super().__init__(message)
        self.retry_after = retry_after


class BrokerNotFoundError(SyncError):
    status_code = 404
