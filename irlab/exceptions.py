"""Custom exceptions for the IR Lab retrieval engine."""

from typing import Optional


class IRError(Exception):
    """Base exception for all IR Lab errors."""

    def __init__(self, message: str, error_code: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}


class NotFoundError(IRError):
    """Raised when a document or chunk id is unknown."""
    pass


class UnsupportedInputError(IRError):
    """Raised by text extraction when a media type has no extraction path."""
    pass


class InvalidConfigurationError(IRError):
    """Raised when BM25 parameters or chunk-size bounds are out of range."""
    pass


class InconsistentIndexError(IRError):
    """Raised when a posting references a missing chunk or document.

    Only a bug or a crash mid-mutation produces this state;
    ``reindex_all()`` is the repair path.
    """
    pass


class SearchCancelledError(IRError):
    """Raised when a caller cancels a running query."""
    pass
