"""Lifecycle states, status snapshots and the tagged event set.

Capability events arrive from the current Capability Client. Manager events
are raised by the connection manager itself (admin calls, initialize()
failures). Both feed the same transition function in ``lifecycle``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

LOGOUT_REASON = "LOGOUT"


class LifecycleState(Enum):
    """Connection lifecycle states."""

    IDLE = "idle"
    INITIALIZING = "initializing"
    AWAITING_AUTH = "awaiting_auth"
    AUTHENTICATED = "authenticated"
    READY = "ready"
    DISCONNECTED = "disconnected"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class LifecycleSnapshot:
    """Mutable-by-replacement lifecycle state owned by the manager.

    Attributes:
        state: Current lifecycle state.
        qr_payload: Latest one-time auth code, if one is outstanding.
        attempt_count: Initialization attempts since the last reset.
        initializing: InitializationLock; held while a sequence is running.
    """

    state: LifecycleState = LifecycleState.IDLE
    qr_payload: str | None = None
    attempt_count: int = 0
    initializing: bool = False


@dataclass(frozen=True, slots=True)
class ConnectionStatus:
    """Read-only status published to request handlers."""

    state: LifecycleState
    qr_payload: str | None
    attempt_count: int
    max_attempts: int
    is_initializing: bool

    @classmethod
    def from_snapshot(
        cls, snapshot: LifecycleSnapshot, max_attempts: int
    ) -> ConnectionStatus:
        return cls(
            state=snapshot.state,
            qr_payload=snapshot.qr_payload,
            attempt_count=snapshot.attempt_count,
            max_attempts=max_attempts,
            is_initializing=snapshot.initializing,
        )

    @property
    def is_ready(self) -> bool:
        return self.state is LifecycleState.READY

    @property
    def label(self) -> str:
        """Coarse health label: ready, initializing or not_ready."""
        if self.is_ready:
            return "ready"
        if self.is_initializing:
            return "initializing"
        return "not_ready"

    def to_dict(self, now: datetime | None = None) -> dict[str, Any]:
        """Serialize for the health endpoint."""
        timestamp = now or datetime.now(tz=UTC)
        return {
            "status": self.label,
            "state": self.state.value,
            "qrCode": self.qr_payload,
            "timestamp": timestamp.isoformat(),
            "initializationAttempts": self.attempt_count,
            "maxAttempts": self.max_attempts,
            "isInitializing": self.is_initializing,
        }


# -----------------------------------------------------------------------------
# Capability events
# -----------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class QrReceived:
    code: str


@dataclass(frozen=True, slots=True)
class Authenticated:
    pass


@dataclass(frozen=True, slots=True)
class Ready:
    pass


@dataclass(frozen=True, slots=True)
class AuthFailure:
    message: str = ""


@dataclass(frozen=True, slots=True)
class Disconnected:
    reason: str = ""

    @property
    def is_logout(self) -> bool:
        return self.reason == LOGOUT_REASON


@dataclass(frozen=True, slots=True)
class LoadingScreen:
    percent: int
    message: str = ""


CapabilityEvent = (
    QrReceived | Authenticated | Ready | AuthFailure | Disconnected | LoadingScreen
)


# -----------------------------------------------------------------------------
# Manager events
# -----------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class StartRequested:
    pass


@dataclass(frozen=True, slots=True)
class InitializationFailed:
    error: str = ""


@dataclass(frozen=True, slots=True)
class RestartRequested:
    pass


@dataclass(frozen=True, slots=True)
class CleanSessionRequested:
    pass


@dataclass(frozen=True, slots=True)
class LogoutCompleted:
    pass


ManagerEvent = (
    StartRequested
    | InitializationFailed
    | RestartRequested
    | CleanSessionRequested
    | LogoutCompleted
)

LifecycleEvent = CapabilityEvent | ManagerEvent
