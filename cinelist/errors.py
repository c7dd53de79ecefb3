class WatchlistError(Exception):
    """Base class for watchlist failures surfaced to callers."""

    status_code = 500
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(WatchlistError):
    """Inbound payload is missing a required field. Rejected before storage."""

    status_code = 400


class AuthError(WatchlistError):
    """Credential missing, malformed, rejected, or the identity service is down."""

    status_code = 401


class SchemaError(WatchlistError):
    """Storage shape could not be verified. Fatal at startup."""


class ConstraintError(WatchlistError):
    """Upsert conflict target does not match the table's uniqueness index."""


class StorageError(WatchlistError):
    """Transient storage failure. Safe to retry, every store operation is idempotent."""

    status_code = 503
    retryable = True
