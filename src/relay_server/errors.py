"""Relay exceptions – raised by the core and mapped to HTTP by the server."""
from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    INVALID_INPUT = "invalid_input"
    TOO_LARGE = "too_large"
    UPSTREAM = "upstream"
    OVERLOADED = "overloaded"
    FILESYSTEM = "filesystem"
    BUSY = "busy"


# Upstream status that means "temporarily overloaded, try later".
OVERLOADED_STATUS = 503

_HTTP_STATUS = {
    ErrorKind.INVALID_INPUT: 400,
    ErrorKind.TOO_LARGE: 413,
    ErrorKind.UPSTREAM: 500,
    ErrorKind.OVERLOADED: 503,
    ErrorKind.FILESYSTEM: 500,
    ErrorKind.BUSY: 409,
}


class RelayError(Exception):
    """Base for all relay errors."""

    kind: ErrorKind = ErrorKind.UPSTREAM

    def __init__(self, message: str, *, kind: Optional[ErrorKind] = None) -> None:
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind

    @property
    def http_status(self) -> int:
        return _HTTP_STATUS[self.kind]


class InvalidInputError(RelayError):
    """Empty or missing prompt, empty upload."""

    kind = ErrorKind.INVALID_INPUT


class UploadTooLargeError(InvalidInputError):
    """Uploaded file exceeds the configured size cap."""

    kind = ErrorKind.TOO_LARGE

    def __init__(self, limit_bytes: int) -> None:
        self.limit_bytes = limit_bytes
        super().__init__(f"Uploaded file exceeds the {limit_bytes} byte limit")


class UpstreamError(RelayError):
    """Upstream call failed: non-2xx status, transport error or undecodable body."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        self.upstream_status = status
        kind = ErrorKind.OVERLOADED if status == OVERLOADED_STATUS else ErrorKind.UPSTREAM
        super().__init__(message, kind=kind)

    @property
    def is_overloaded(self) -> bool:
        return self.kind is ErrorKind.OVERLOADED


class FilesystemError(RelayError):
    """Upload placement failed or the input stream could not be read."""

    kind = ErrorKind.FILESYSTEM


class ConversationBusyError(RelayError):
    """Another turn is already in flight against the conversation."""

    kind = ErrorKind.BUSY

    def __init__(self) -> None:
        super().__init__("Another request is already in progress for this conversation")
