"""MetricSync — Error Taxonomy.

Every failure that can end a sync run is a SyncError carrying the HTTP
status family it maps to. The API layer renders them uniformly.

Hierarchy:
    SyncError
    ├── ValidationError            400
    ├── AuthError                  401
    ├── AuthorizationError         403
    ├── SourceUnavailableError     500
    │   ├── TabsNotFoundError      404
    │   └── InsufficientDataError
    ├── NoValidMetricsError        500
    ├── PersistenceError           500
    └── ConfigurationError         500
"""


class SyncError(Exception):
    """Base exception for all sync failures."""

    status_code: int = 500

    def __init__(self, message: str, status_code: int | None = None):
        if status_code is not None:
            self.status_code = status_code
        self.message = message
        super().__init__(message)


class ValidationError(SyncError):
    """Malformed request. Raised before any network or store access."""

    status_code = 400


class AuthError(SyncError):
    """Missing or invalid caller credential."""

    status_code = 401


class AuthorizationError(SyncError):
    """Caller is authenticated but lacks the sync capability."""

    status_code = 403


class SourceUnavailableError(SyncError):
    """Remote tabular source failed, or returned nothing usable."""

    def __init__(
        self, message: str, status_code: int | None = None, upstream_status: int = 0
    ):
        self.upstream_status = upstream_status
        super().__init__(message, status_code)


class TabsNotFoundError(SourceUnavailableError):
    """Spreadsheet exists but lists no tabs."""

    status_code = 404


class InsufficientDataError(SourceUnavailableError):
    """Range holds fewer than a header row plus one data row."""


class NoValidMetricsError(SyncError):
    """Transform produced zero observations."""


class PersistenceError(SyncError):
    """Metric store write failed."""


class ConfigurationError(SyncError):
    """Service credential is missing or the token endpoint refused it."""
