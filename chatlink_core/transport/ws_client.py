"""WebSocket client for the capability sidecar."""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from websockets.asyncio.client import ClientConnection
from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import (
    ConnectionClosed,
    InvalidHandshake,
    InvalidStatus,
    InvalidURI,
    WebSocketException,
)

from ..errors import (
    ChatlinkClientError,
    ChatlinkConnectionError,
    ChatlinkHandshakeError,
    ChatlinkTimeout,
    SidecarUnavailableError,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

DEFAULT_PATH = "/capability"


def sidecar_url(host: str, port: int, path: str = DEFAULT_PATH) -> str:
    """Build the sidecar websocket URL; ``path`` may omit its leading slash."""
    if not path.startswith("/"):
        path = "/" + path
    return f"ws://{host}:{port}{path}"


class ChatlinkWsMessageType(Enum):
    """Normalized WebSocket message types."""

    TEXT = "text"
    CLOSED = "closed"
    ERROR = "error"


@dataclass(frozen=True)
class ChatlinkWsMessage:
    """Normalized WebSocket message payload."""

    type: ChatlinkWsMessageType
    data: str | None = None


class ChatlinkWsClient:
    """Wrapper around the websockets library for sidecar frames."""

    def __init__(self) -> None:
        self._ws: ClientConnection | None = None
        self.url: str | None = None

    @property
    def connected(self) -> bool:
        return self._ws is not None

    async def connect(
        self,
        host: str,
        port: int,
        *,
        path: str = DEFAULT_PATH,
        ping_interval: int | None = 20,
        timeout: float = 15.0,
    ) -> None:
        """Open the sidecar websocket.

        Raises:
            ChatlinkTimeout: If the sidecar does not complete the opening
                handshake within ``timeout``.
            SidecarUnavailableError: If nothing listens at the address or the
                sidecar answers the upgrade with an HTTP error status.
            ChatlinkHandshakeError: If the address or handshake is invalid.
        """
        url = sidecar_url(host, port, path)
        try:
            self._ws = await ws_connect(
                url,
                open_timeout=timeout,
                ping_interval=ping_interval,
                close_timeout=5,
                max_size=None,
            )
        except TimeoutError as err:
            raise ChatlinkTimeout(
                f"Sidecar at {url} did not answer within {timeout:g}s"
            ) from err
        except InvalidStatus as err:
            status = err.response.status_code
            raise SidecarUnavailableError(
                url, f"Sidecar at {url} rejected the connection (HTTP {status})", status
            ) from err
        except InvalidURI as err:
            raise ChatlinkHandshakeError(f"Invalid sidecar address {url}") from err
        except InvalidHandshake as err:
            raise ChatlinkHandshakeError(f"Sidecar handshake failed at {url}") from err
        except OSError as err:
            raise SidecarUnavailableError(
                url, f"Sidecar not reachable at {url}: {err.strerror or err}"
            ) from err
        except WebSocketException as err:
            raise ChatlinkConnectionError(f"Sidecar connection failed at {url}") from err
        self.url = url

    async def close(self) -> None:
        """Close the websocket connection."""
        if self._ws is not None:
            ws, self._ws = self._ws, None
            await ws.close()

    async def send_json(self, payload: dict[str, Any]) -> None:
        """Send a JSON payload to the websocket."""
        if self._ws is None:
            raise ChatlinkConnectionError("WebSocket is not connected")
        try:
            await self._ws.send(json.dumps(payload))
        except ConnectionClosed as err:
            raise ChatlinkConnectionError("WebSocket closed while sending") from err

    def __aiter__(self) -> AsyncIterator[ChatlinkWsMessage]:
        if self._ws is None:
            raise ChatlinkConnectionError("WebSocket is not connected")
        return self._iter_messages()

    async def _iter_messages(self) -> AsyncIterator[ChatlinkWsMessage]:
        if self._ws is None:
            raise ChatlinkConnectionError("WebSocket is not connected")

        try:
            async for msg in self._ws:
                if isinstance(msg, bytes):
                    # Sidecar frames are JSON text only
                    continue
                yield ChatlinkWsMessage(ChatlinkWsMessageType.TEXT, msg)
        except ConnectionClosed:
            yield ChatlinkWsMessage(type=ChatlinkWsMessageType.CLOSED)
        except Exception:
            yield ChatlinkWsMessage(type=ChatlinkWsMessageType.ERROR)
        else:
            # Normal iteration completion means the peer closed gracefully.
            yield ChatlinkWsMessage(type=ChatlinkWsMessageType.CLOSED)

    @staticmethod
    def decode_json(message: ChatlinkWsMessage) -> dict[str, Any]:
        """Decode a TEXT message payload into JSON."""
        if message.type is not ChatlinkWsMessageType.TEXT:
            raise ChatlinkClientError("Only TEXT messages can be decoded")
        if not isinstance(message.data, str):
            raise ChatlinkClientError("Message data is not a string")
        result = json.loads(message.data)
        if not isinstance(result, dict):
            raise ChatlinkClientError("Message payload is not a JSON object")
        return result
