"""
Domain exceptions for the gateway's service layer.

These exceptions are raised in services and collaborators to represent
failures without coupling to HTTP status codes.
"""


class DicomGateError(Exception):
    """Base exception for all dicomgate-specific errors."""


class ConfigError(DicomGateError):
    """Raised when the configuration is unusable."""

    pass


class ValidationError(DicomGateError):
    """Raised when request data validation fails."""

    pass


class ArchiveError(DicomGateError):
    """Raised when the archive cannot be reached or rejects a request."""

    pass


class RetrievalError(ArchiveError):
    """Raised when a series retrieve fails; shared by every joined waiter."""

    def __init__(self, series_uid: str | None = None, reason: str | None = None):
        message = "Retrieve failed"
        if series_uid:
            message += f" for series {series_uid}"
        if reason:
            message += f": {reason}"
        super().__init__(message)
        self.series_uid = series_uid


class StorageError(DicomGateError):
    """Raised when a materialized file is missing or unreadable."""

    pass


class MetadataAssemblyError(DicomGateError):
    """Raised when series metadata cannot be assembled."""

    pass
