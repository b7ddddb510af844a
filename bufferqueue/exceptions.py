"""
Custom exceptions for bufferqueue.

Transfer outcomes are terminal per attempt and are never raised out of the
scheduler's public methods. Instead, the exception instance describing a
failed or cancelled transfer is handed to the ``failed`` handlers, so
listeners can inspect what went wrong without parsing strings.
"""

from __future__ import annotations

from typing import Any


class BufferQueueError(Exception):
    """
    Base exception for all bufferqueue errors.

    Attributes:
        message: Human-readable error description.
        details: Additional context about the error.

    Example:
        >>> def on_failed(key, error):
        ...     if isinstance(error, BufferQueueError):
        ...         logger.warning(f"Download failed: {error.to_dict()}")
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class ProtocolFailure(BufferQueueError):
    """
    Raised when the remote end answered with a non-success status.

    Attributes:
        key: The key (URL) that was requested.
        status_code: The status code returned by the server.
        reason: Reason phrase returned with the status, if any.

    Example:
        >>> raise ProtocolFailure(
        ...     key="https://cdn.example.com/tiles/4/2/7.bin",
        ...     status_code=404,
        ...     reason="Not Found",
        ... )
    """

    def __init__(
        self,
        key: str,
        status_code: int,
        reason: str | None = None,
    ) -> None:
        self.key = key
        self.status_code = status_code
        self.reason = reason or ""

        message = f"Download of '{key}' failed with status {status_code}"
        if self.reason:
            message += f" ({self.reason})"

        details = {
            "key": key,
            "status_code": status_code,
            "reason": self.reason,
        }
        super().__init__(message, details)


class TransportError(BufferQueueError):
    """
    Raised when a transfer could not complete because of a network or
    transport level problem (connection refused, DNS failure, broken
    stream, ...).

    Attributes:
        key: The key (URL) that was requested.
        reason: Short description of the failure.
        cause: The underlying exception, if any.
    """

    def __init__(
        self,
        key: str,
        reason: str,
        cause: BaseException | None = None,
    ) -> None:
        self.key = key
        self.reason = reason
        self.cause = cause

        message = f"Transport error while downloading '{key}': {reason}"
        details = {
            "key": key,
            "reason": reason,
            "cause_type": type(cause).__name__ if cause is not None else None,
        }
        super().__init__(message, details)


class CancelledByCaller(BufferQueueError):
    """
    Raised by a transport when the cancellation token of an in-flight
    transfer fired because the caller aborted it.

    Attributes:
        key: The key whose transfer was aborted.
    """

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"Download of '{key}' aborted by caller", {"key": key})
