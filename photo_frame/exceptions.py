"""
Custom exception hierarchy for the photo frame application.

Only MountError and ConcurrentOperationError abort a scan or fetch run.
The per-item errors are absorbed by the run and show up as lower counts.
"""


class PhotoFrameError(Exception):
    """Base exception for all photo frame errors."""
    pass


class MountError(PhotoFrameError):
    """Raised when the share cannot be mounted or verified."""
    pass


class ConcurrentOperationError(PhotoFrameError):
    """Raised when a scan or fetch is requested while one is already running."""

    def __init__(self, operation: str):
        super().__init__(f"{operation} already in progress")
        self.operation = operation


class SourceMissingError(PhotoFrameError):
    """Raised when a catalogued file no longer exists on the share."""
    pass


class TransientIOError(PhotoFrameError):
    """Raised when a download or transcode fails for any other reason."""
    pass


class ConfigurationReadError(PhotoFrameError):
    """Raised when a settings or scan configuration file cannot be read."""
    pass


class DatabaseError(PhotoFrameError):
    """Raised when database operations fail."""
    pass
