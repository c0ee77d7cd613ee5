"""Capability Client boundary and the websocket sidecar implementation.

The messaging protocol itself lives in an external sidecar process. The
gateway drives it through ``command`` frames and receives lifecycle events
back over the same websocket.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

from .errors import (
    CapabilityError,
    ChatlinkClientError,
    ChatlinkConnectionError,
    ChatlinkTimeout,
)
from .events import CapabilityEvent, Disconnected
from .protocol import MSG_EVENT, MSG_RESULT, build_command, parse_event, parse_result
from .transport.ws_client import ChatlinkWsClient, ChatlinkWsMessageType

_LOGGER = logging.getLogger(__name__)

CONNECTION_LOST_REASON = "CONNECTION_LOST"

EventCallback = Callable[[CapabilityEvent], None]


class CapabilityClient(ABC):
    """Opaque handle to the messaging protocol implementation."""

    @abstractmethod
    def on_event(self, callback: EventCallback) -> None:
        """Register the single lifecycle event callback."""

    @abstractmethod
    async def initialize(self) -> None:
        """Start the client. May fail."""

    @abstractmethod
    async def destroy(self) -> None:
        """Tear the client down. Best effort."""

    @abstractmethod
    async def logout(self) -> None:
        """Log the account out. Requires a ready client."""

    @abstractmethod
    async def request(
        self, operation: str, params: dict[str, Any] | None = None
    ) -> Any:
        """Run a domain operation and return its result."""


class WsCapabilityClient(CapabilityClient):
    """Capability client relaying to a protocol sidecar over a websocket.

    Usage:
        client = WsCapabilityClient("127.0.0.1", 8765, client_id="chatlink")
        client.on_event(handle_event)
        await client.initialize()
        chats = await client.request("get_chats")
        await client.destroy()
    """

    def __init__(
        self,
        host: str,
        port: int,
        *,
        client_id: str,
        path: str = "/capability",
        data_path: str | None = None,
        request_timeout: float = 60.0,
        connect_timeout: float = 15.0,
    ) -> None:
        self.host = host
        self.port = port
        self.client_id = client_id
        self.path = path
        self.data_path = data_path

        self._request_timeout = request_timeout
        self._connect_timeout = connect_timeout

        self._ws: ChatlinkWsClient | None = None
        self._listen_task: asyncio.Task[None] | None = None
        self._pending: dict[str, asyncio.Future[Any]] = {}
        self._event_callback: EventCallback | None = None
        self._closing = False

    def on_event(self, callback: EventCallback) -> None:
        self._event_callback = callback

    async def initialize(self) -> None:
        """Connect to the sidecar and ask it to start the messaging client."""
        if self._ws is None:
            ws_client = ChatlinkWsClient()
            await ws_client.connect(
                self.host,
                self.port,
                path=self.path,
                timeout=self._connect_timeout,
            )
            self._ws = ws_client
            self._listen_task = asyncio.create_task(self._listen())
            _LOGGER.debug(
                "[%s] Sidecar connected at ws://%s:%s%s",
                self.client_id,
                self.host,
                self.port,
                self.path,
            )

        params: dict[str, Any] = {"client_id": self.client_id}
        if self.data_path is not None:
            params["data_path"] = self.data_path
        await self.request("initialize", params)

    async def destroy(self) -> None:
        self._closing = True

        if self._ws is not None and self._ws.connected:
            try:
                await asyncio.wait_for(self.request("destroy"), timeout=5.0)
            except (ChatlinkClientError, TimeoutError) as err:
                _LOGGER.debug("[%s] Sidecar destroy failed: %s", self.client_id, err)

        if self._listen_task is not None:
            self._listen_task.cancel()
            try:
                await self._listen_task
            except asyncio.CancelledError:
                pass
            self._listen_task = None

        if self._ws is not None:
            try:
                await asyncio.wait_for(self._ws.close(), timeout=2.0)
            except TimeoutError:
                _LOGGER.warning("[%s] WebSocket close timed out", self.client_id)
            self._ws = None

        self._fail_pending(ChatlinkConnectionError("Capability client destroyed"))

    async def logout(self) -> None:
        await self.request("logout")

    async def request(
        self, operation: str, params: dict[str, Any] | None = None
    ) -> Any:
        """Send a command and wait for its correlated result.

        Raises:
            ChatlinkConnectionError: If the sidecar is not connected.
            ChatlinkTimeout: If no result arrives in time.
            CapabilityError: If the sidecar reports a failure.
        """
        if self._ws is None:
            raise ChatlinkConnectionError("Capability client is not connected")

        frame = build_command(
            client_id=self.client_id, operation=operation, params=params
        )
        msg_id = frame["msg_id"]
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[msg_id] = future

        try:
            await self._ws.send_json(frame)
            return await asyncio.wait_for(future, timeout=self._request_timeout)
        except TimeoutError as err:
            raise ChatlinkTimeout(f"Command {operation} timed out") from err
        finally:
            self._pending.pop(msg_id, None)

    # -------------------------------------------------------------------------
    # Internal: Message Listener
    # -------------------------------------------------------------------------

    async def _listen(self) -> None:
        """Route sidecar frames until the connection ends."""
        if self._ws is None:
            return

        connection_lost = False
        try:
            async for msg in self._ws:
                if msg.type is ChatlinkWsMessageType.TEXT:
                    try:
                        self._handle_frame(ChatlinkWsClient.decode_json(msg))
                    except (ValueError, ChatlinkClientError) as err:
                        _LOGGER.warning(
                            "[%s] Invalid sidecar frame: %s", self.client_id, err
                        )
                else:
                    _LOGGER.info(
                        "[%s] Sidecar connection %s", self.client_id, msg.type.value
                    )
                    connection_lost = True
                    break
        except asyncio.CancelledError:
            raise
        except Exception as err:
            _LOGGER.exception("[%s] Unexpected listener error: %s", self.client_id, err)
            connection_lost = True
        finally:
            self._fail_pending(ChatlinkConnectionError("Capability connection lost"))
            if connection_lost and not self._closing:
                self._ws = None
                self._emit(Disconnected(reason=CONNECTION_LOST_REASON))

    def _handle_frame(self, frame: dict[str, Any]) -> None:
        frame_type = frame.get("type")
        if frame_type == MSG_RESULT:
            result = parse_result(frame)
            future = self._pending.get(result.msg_id)
            if future is None or future.done():
                _LOGGER.debug(
                    "[%s] Result for unknown command %s", self.client_id, result.msg_id
                )
                return
            if result.ok:
                future.set_result(result.data)
            else:
                future.set_exception(CapabilityError(result.error))
        elif frame_type == MSG_EVENT:
            self._emit(parse_event(frame))
        else:
            _LOGGER.debug("[%s] Unknown frame type: %s", self.client_id, frame_type)

    def _emit(self, event: CapabilityEvent) -> None:
        if self._event_callback is None:
            return
        try:
            self._event_callback(event)
        except Exception as err:
            _LOGGER.exception("[%s] Event callback error: %s", self.client_id, err)

    def _fail_pending(self, error: Exception) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(error)
