"""
Exception hierarchy for the Unfold discovery engine.

Callers (the CLI and the HTTP layer) map these onto exit codes and status
codes; nothing in the engine retries on them.
"""


class UnfoldError(Exception):
    """Base exception for all Unfold errors."""
    pass


class OperationInProgressError(UnfoldError):
    """Raised when a non-reentrant operation (indexing, integrity sweep) is already running."""
    pass


class MediaNotFoundError(UnfoldError):
    """Raised when a media id is not present in the index."""
    pass


class SourceNotFoundError(UnfoldError):
    """Raised when a source id is not present in the index."""
    pass


class LibraryNotFoundError(UnfoldError):
    """Raised when the folder to index or watch does not exist."""
    pass


class AccessDeniedError(UnfoldError):
    """Raised when a user acts on a source that was not granted to them."""
    pass


class ThumbnailError(UnfoldError):
    """Raised when a thumbnail cannot be generated for a media item."""
    pass


class BatchTooLargeError(UnfoldError, ValueError):
    """Raised when a thumbnail batch exceeds the configured limit."""
    pass


class WatcherError(UnfoldError):
    """Raised when the filesystem subscription fails irrecoverably."""
    pass
