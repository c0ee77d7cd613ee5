"""Transport layer for the capability sidecar."""

from .ws_client import (
    ChatlinkWsClient,
    ChatlinkWsMessage,
    ChatlinkWsMessageType,
    sidecar_url,
)

__all__ = [
    "ChatlinkWsClient",
    "ChatlinkWsMessage",
    "ChatlinkWsMessageType",
    "sidecar_url",
]
