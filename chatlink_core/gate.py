"""Readiness gate consulted before every domain operation."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from .errors import NotReadyError
from .events import ConnectionStatus

NOT_READY_ERROR = "Messaging client not ready"
SCAN_CODE_MESSAGE = "Please scan QR code"
INITIALIZING_MESSAGE = "Client initializing..."


@dataclass(frozen=True, slots=True)
class Rejected:
    """Structured rejection returned while the client is not ready."""

    qr_payload: str | None
    message: str
    status: int = 503

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": NOT_READY_ERROR,
            "qrCode": self.qr_payload,
            "message": self.message,
        }


def check_ready(status: ConnectionStatus) -> Rejected | None:
    """Return None when ready, otherwise the rejection payload."""
    if status.is_ready:
        return None
    if status.qr_payload:
        return Rejected(qr_payload=status.qr_payload, message=SCAN_CODE_MESSAGE)
    return Rejected(qr_payload=None, message=INITIALIZING_MESSAGE)


class ReadinessGate:
    """Synchronous readiness check over a status provider."""

    def __init__(self, status_provider: Callable[[], ConnectionStatus]) -> None:
        self._status_provider = status_provider

    def check(self) -> Rejected | None:
        return check_ready(self._status_provider())

    def require(self) -> None:
        """Raise NotReadyError unless the client is ready."""
        rejected = self.check()
        if rejected is not None:
            raise NotReadyError(rejected)
