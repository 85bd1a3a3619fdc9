"""Exception types raised by the archiver."""

from typing import Optional


class ArchiverError(Exception):
    """Base class for all archiver errors."""


class AuthError(ArchiverError):
    """Credential exchange failed or the API rejected a fresh token.

    Fatal for the whole run.
    """


class UpstreamError(ArchiverError):
    """Non-2xx response (or network failure) from the Zoom API."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        retryable: bool = False,
        code: Optional[int] = None,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status = status
        self.retryable = retryable
        self.code = code
        self.retry_after = retry_after

    def __str__(self) -> str:
        status = self.status if self.status is not None else "network"
        return f"{self.message} (status={status}, retryable={self.retryable})"


class ParseError(ArchiverError):
    """Transcript content could not be parsed."""


class PersistenceError(ArchiverError):
    """State could not be written to disk."""


class DuplicateKeyError(ArchiverError):
    """A meeting uuid was recorded twice."""
