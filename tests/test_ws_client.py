"""Tests for ChatlinkWsClient WebSocket wrapper."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from websockets.exceptions import ConnectionClosed, InvalidStatus, InvalidURI

from chatlink_core.errors import (
    ChatlinkClientError,
    ChatlinkConnectionError,
    ChatlinkHandshakeError,
    ChatlinkTimeout,
    SidecarUnavailableError,
)
from chatlink_core.transport.ws_client import (
    ChatlinkWsClient,
    ChatlinkWsMessage,
    ChatlinkWsMessageType,
    sidecar_url,
)

CONNECT = "chatlink_core.transport.ws_client.ws_connect"


class AsyncIteratorMock:
    """Helper class to create a proper async iterator mock."""

    def __init__(self, items: list, *, raise_on_iter: Exception | None = None):
        self._items = items
        self._index = 0
        self._raise_on_iter = raise_on_iter
        self.close = AsyncMock()
        self.send = AsyncMock()

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self._index >= len(self._items):
            if self._raise_on_iter is not None:
                raise self._raise_on_iter
            raise StopAsyncIteration
        item = self._items[self._index]
        self._index += 1
        return item


class TestChatlinkWsMessage:
    """Tests for ChatlinkWsMessage dataclass."""

    def test_closed_message_has_no_data(self):
        msg = ChatlinkWsMessage(type=ChatlinkWsMessageType.CLOSED)
        assert msg.data is None

    def test_message_is_frozen(self):
        msg = ChatlinkWsMessage(type=ChatlinkWsMessageType.TEXT, data="test")
        with pytest.raises(AttributeError):
            msg.data = "modified"  # type: ignore[misc]


def test_sidecar_url():
    assert sidecar_url("127.0.0.1", 8765) == "ws://127.0.0.1:8765/capability"
    assert sidecar_url("sidecar", 9000, "proto") == "ws://sidecar:9000/proto"


class TestChatlinkWsClientConnect:
    """Tests for ChatlinkWsClient.connect()."""

    @pytest.mark.asyncio
    async def test_connect_success(self):
        mock_ws = AsyncMock()

        with patch(CONNECT, new_callable=AsyncMock, return_value=mock_ws) as mock_connect:
            client = ChatlinkWsClient()
            await client.connect("127.0.0.1", 8765)

        mock_connect.assert_awaited_once_with(
            "ws://127.0.0.1:8765/capability",
            open_timeout=15.0,
            ping_interval=20,
            close_timeout=5,
            max_size=None,
        )
        assert client.connected
        assert client.url == "ws://127.0.0.1:8765/capability"

    @pytest.mark.asyncio
    async def test_connect_refused(self):
        with patch(
            CONNECT,
            new_callable=AsyncMock,
            side_effect=ConnectionRefusedError(111, "Connection refused"),
        ):
            client = ChatlinkWsClient()
            with pytest.raises(SidecarUnavailableError, match="not reachable") as exc:
                await client.connect("127.0.0.1", 8765)

        assert exc.value.url == "ws://127.0.0.1:8765/capability"
        assert exc.value.status is None
        assert isinstance(exc.value, ChatlinkConnectionError)
        assert not client.connected

    @pytest.mark.asyncio
    async def test_connect_rejected_status(self):
        rejected = InvalidStatus(MagicMock(status_code=503))

        with patch(CONNECT, new_callable=AsyncMock, side_effect=rejected):
            client = ChatlinkWsClient()
            with pytest.raises(SidecarUnavailableError, match="HTTP 503") as exc:
                await client.connect("127.0.0.1", 8765)

        assert exc.value.status == 503

    @pytest.mark.asyncio
    async def test_connect_timeout(self):
        with patch(CONNECT, new_callable=AsyncMock, side_effect=TimeoutError()):
            client = ChatlinkWsClient()
            with pytest.raises(ChatlinkTimeout, match="did not answer within 2s"):
                await client.connect("127.0.0.1", 8765, timeout=2.0)

    @pytest.mark.asyncio
    async def test_connect_invalid_address(self):
        with patch(
            CONNECT,
            new_callable=AsyncMock,
            side_effect=InvalidURI("ws://bad host", "bad"),
        ):
            client = ChatlinkWsClient()
            with pytest.raises(ChatlinkHandshakeError, match="Invalid sidecar address"):
                await client.connect("bad host", 8765)


class TestChatlinkWsClientClose:
    """Tests for ChatlinkWsClient.close()."""

    @pytest.mark.asyncio
    async def test_close_connected(self):
        mock_ws = AsyncMock()

        with patch(CONNECT, new_callable=AsyncMock, return_value=mock_ws):
            client = ChatlinkWsClient()
            await client.connect("127.0.0.1", 8765)
            await client.close()

        mock_ws.close.assert_called_once()
        assert not client.connected

    @pytest.mark.asyncio
    async def test_close_not_connected(self):
        client = ChatlinkWsClient()
        await client.close()


class TestChatlinkWsClientSendJson:
    """Tests for ChatlinkWsClient.send_json()."""

    @pytest.mark.asyncio
    async def test_send_json_success(self):
        mock_ws = AsyncMock()

        with patch(CONNECT, new_callable=AsyncMock, return_value=mock_ws):
            client = ChatlinkWsClient()
            await client.connect("127.0.0.1", 8765)
            await client.send_json({"type": "command", "msg_id": "m1"})

        mock_ws.send.assert_called_once_with('{"type": "command", "msg_id": "m1"}')

    @pytest.mark.asyncio
    async def test_send_json_not_connected(self):
        client = ChatlinkWsClient()
        with pytest.raises(ChatlinkConnectionError, match="not connected"):
            await client.send_json({"type": "command"})

    @pytest.mark.asyncio
    async def test_send_json_connection_closed(self):
        mock_ws = AsyncMock()
        mock_ws.send.side_effect = ConnectionClosed(None, None)

        with patch(CONNECT, new_callable=AsyncMock, return_value=mock_ws):
            client = ChatlinkWsClient()
            await client.connect("127.0.0.1", 8765)
            with pytest.raises(ChatlinkConnectionError, match="closed"):
                await client.send_json({"type": "command"})


class TestChatlinkWsClientIteration:
    """Tests for ChatlinkWsClient async iteration."""

    def test_iter_not_connected(self):
        client = ChatlinkWsClient()
        with pytest.raises(ChatlinkConnectionError, match="not connected"):
            client.__aiter__()

    @pytest.mark.asyncio
    async def test_iter_graceful_close(self):
        mock_ws = AsyncIteratorMock(["hello"])

        with patch(CONNECT, new_callable=AsyncMock, return_value=mock_ws):
            client = ChatlinkWsClient()
            await client.connect("127.0.0.1", 8765)
            messages = [msg async for msg in client]

        assert [m.type for m in messages] == [
            ChatlinkWsMessageType.TEXT,
            ChatlinkWsMessageType.CLOSED,
        ]
        assert messages[0].data == "hello"

    @pytest.mark.asyncio
    async def test_iter_connection_closed(self):
        mock_ws = AsyncIteratorMock(["a"], raise_on_iter=ConnectionClosed(None, None))

        with patch(CONNECT, new_callable=AsyncMock, return_value=mock_ws):
            client = ChatlinkWsClient()
            await client.connect("127.0.0.1", 8765)
            messages = [msg async for msg in client]

        assert messages[-1].type == ChatlinkWsMessageType.CLOSED

    @pytest.mark.asyncio
    async def test_iter_unexpected_error(self):
        mock_ws = AsyncIteratorMock([], raise_on_iter=RuntimeError("Unexpected"))

        with patch(CONNECT, new_callable=AsyncMock, return_value=mock_ws):
            client = ChatlinkWsClient()
            await client.connect("127.0.0.1", 8765)
            messages = [msg async for msg in client]

        assert len(messages) == 1
        assert messages[0].type == ChatlinkWsMessageType.ERROR

    @pytest.mark.asyncio
    async def test_iter_skips_binary_messages(self):
        mock_ws = AsyncIteratorMock(["text1", b"\x00\x01", "text2"])

        with patch(CONNECT, new_callable=AsyncMock, return_value=mock_ws):
            client = ChatlinkWsClient()
            await client.connect("127.0.0.1", 8765)
            messages = [msg async for msg in client]

        text = [m.data for m in messages if m.type == ChatlinkWsMessageType.TEXT]
        assert text == ["text1", "text2"]


class TestDecodeJson:
    """Tests for ChatlinkWsClient.decode_json()."""

    def test_decode_object(self):
        msg = ChatlinkWsMessage(ChatlinkWsMessageType.TEXT, '{"type": "event"}')
        assert ChatlinkWsClient.decode_json(msg) == {"type": "event"}

    def test_decode_rejects_closed(self):
        with pytest.raises(ChatlinkClientError, match="TEXT"):
            ChatlinkWsClient.decode_json(ChatlinkWsMessage(ChatlinkWsMessageType.CLOSED))

    def test_decode_rejects_non_object(self):
        msg = ChatlinkWsMessage(ChatlinkWsMessageType.TEXT, "[1, 2]")
        with pytest.raises(ChatlinkClientError, match="JSON object"):
            ChatlinkWsClient.decode_json(msg)
