"""HTTP gateway core for a single chat-platform account."""

__version__ = "0.1.0"

from .capability import CapabilityClient, WsCapabilityClient
from .config import GatewayConfig, load_config
from .errors import (
    CapabilityError,
    CapabilityOperationError,
    ChatlinkClientError,
    ChatlinkConnectionError,
    ChatlinkHandshakeError,
    ChatlinkRequestError,
    ChatlinkResponseError,
    ChatlinkTimeout,
    ConfigError,
    NotReadyError,
    SessionStoreError,
    SidecarUnavailableError,
)
from .events import ConnectionStatus, LifecycleSnapshot, LifecycleState
from .gate import ReadinessGate, Rejected, check_ready
from .lifecycle import RetryPolicy, transition
from .manager import ConnectionManager
from .operations import MessagingService
from .protocol import PROTOCOL_VERSION, build_command, build_envelope
from .session_store import SessionStore

__all__ = [
    "PROTOCOL_VERSION",
    "CapabilityClient",
    "CapabilityError",
    "CapabilityOperationError",
    "ChatlinkClientError",
    "ChatlinkConnectionError",
    "ChatlinkHandshakeError",
    "ChatlinkRequestError",
    "ChatlinkResponseError",
    "ChatlinkTimeout",
    "ConfigError",
    "ConnectionManager",
    "ConnectionStatus",
    "GatewayConfig",
    "LifecycleSnapshot",
    "LifecycleState",
    "MessagingService",
    "NotReadyError",
    "ReadinessGate",
    "Rejected",
    "RetryPolicy",
    "SessionStore",
    "SidecarUnavailableError",
    "WsCapabilityClient",
    "__version__",
    "build_command",
    "build_envelope",
    "check_ready",
    "load_config",
    "transition",
]
