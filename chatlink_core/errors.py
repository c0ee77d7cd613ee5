"""Error types for the chatlink gateway."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .gate import Rejected


class ChatlinkClientError(Exception):
    """Base error for chatlink gateway failures."""


class ChatlinkTimeout(ChatlinkClientError):
    """Timeout while communicating with the capability sidecar."""


class ChatlinkConnectionError(ChatlinkClientError):
    """Network connection to the capability sidecar failed."""


class ChatlinkHandshakeError(ChatlinkClientError):
    """WebSocket handshake failed."""


class ChatlinkResponseError(ChatlinkClientError):
    """Response error carrying an HTTP-like status."""

    def __init__(self, status: int, message: str) -> None:
        super().__init__(message)
        self.status = status


class ChatlinkRequestError(ChatlinkResponseError):
    """Caller supplied an invalid request or referenced a missing item."""


class NotReadyError(ChatlinkClientError):
    """The readiness gate rejected a domain operation."""

    def __init__(self, rejected: Rejected) -> None:
        super().__init__(rejected.message)
        self.rejected = rejected


class CapabilityError(ChatlinkClientError):
    """The capability sidecar reported a failed command."""


class CapabilityOperationError(ChatlinkClientError):
    """A domain operation failed against an otherwise ready client."""

    def __init__(self, operation: str, message: str) -> None:
        super().__init__(message)
        self.operation = operation


class SessionStoreError(ChatlinkClientError):
    """Erasing or preparing persisted session data failed."""


class ConfigError(ChatlinkClientError):
    """Gateway configuration is missing or invalid."""


class SidecarUnavailableError(ChatlinkConnectionError):
    """The protocol sidecar is not listening or refused the websocket upgrade."""

    def __init__(self, url: str, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.url = url
        self.status = status
