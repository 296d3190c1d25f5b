"""Unit tests for the Gotify live update client."""

import asyncio
import json
from unittest.mock import AsyncMock, patch

import pytest
from websockets.exceptions import ConnectionClosedError

from gotichat.gotify.models import ConnectionState
from gotichat.gotify.stream import LiveUpdateClient, LiveUpdateListener, derive_stream_url
from tests.helpers.fake_gotify import message_payload

_END = object()


# ---------------------------------------------------------------------------
# URL derivation
# ---------------------------------------------------------------------------

class TestDeriveStreamUrl:
    def test_http_to_ws(self):
        assert derive_stream_url("http://gotify.local:8080") == "ws://gotify.local:8080/stream"

    def test_https_to_wss(self):
        assert derive_stream_url("https://push.example.com") == "wss://push.example.com/stream"

    def test_trailing_slash_stripped(self):
        assert derive_stream_url("http://gotify.local/") == "ws://gotify.local/stream"

    def test_sub_path_kept(self):
        assert derive_stream_url("https://example.com/gotify") == "wss://example.com/gotify/stream"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class FakeWebSocket:
    """Async-iterable stand-in for a websockets connection."""

    def __init__(self, frames=()):
        self._frames: asyncio.Queue = asyncio.Queue()
        for frame in frames:
            self._frames.put_nowait(frame)
        self.closed = False

    def push(self, frame):
        self._frames.put_nowait(frame)

    def end(self):
        self._frames.put_nowait(_END)

    def fail(self):
        self._frames.put_nowait(ConnectionClosedError(None, None))

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._frames.get()
        if item is _END:
            raise StopAsyncIteration
        if isinstance(item, Exception):
            raise item
        return item

    async def close(self):
        self.closed = True
        self._frames.put_nowait(_END)


class RecordingListener(LiveUpdateListener):
    def __init__(self):
        self.messages = []
        self.states = []
        self.scheduled = []
        self.exhausted = []

    def on_message(self, message):
        self.messages.append(message)

    def on_state_change(self, state):
        self.states.append(state)

    def on_reconnect_scheduled(self, attempt, delay):
        self.scheduled.append((attempt, delay))

    def on_reconnect_exhausted(self, attempts):
        self.exhausted.append(attempts)


def _patch_connect(side_effect):
    return patch(
        "gotichat.gotify.stream.websockets.connect",
        AsyncMock(side_effect=side_effect),
    )


async def _settle(condition, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not condition():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


# ---------------------------------------------------------------------------
# Connection
# ---------------------------------------------------------------------------

class TestConnect:
    @pytest.mark.asyncio
    async def test_connect_and_receive(self):
        ws = FakeWebSocket([json.dumps(message_payload(1, 0, title="hello"))])
        listener = RecordingListener()
        client = LiveUpdateClient("http://gotify.test", listener=listener)

        with _patch_connect([ws]) as connect:
            await client.connect("C1")
            await _settle(lambda: listener.messages)

        assert client.state is ConnectionState.CONNECTED
        assert connect.call_args[0][0] == "ws://gotify.test/stream?token=C1"
        assert listener.messages[0].title == "hello"
        assert listener.states == [ConnectionState.CONNECTING, ConnectionState.CONNECTED]

        await client.disconnect()
        assert ws.closed
        assert client.state is ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_token_is_url_encoded(self):
        client = LiveUpdateClient("http://gotify.test")
        with _patch_connect([FakeWebSocket()]) as connect:
            await client.connect("a b&c")
        assert connect.call_args[0][0].endswith("?token=a%20b%26c")
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_connect_when_connected_is_noop(self):
        client = LiveUpdateClient("http://gotify.test")
        with _patch_connect([FakeWebSocket(), FakeWebSocket()]) as connect:
            await client.connect("C1")
            await client.connect("C1")
        assert connect.call_count == 1
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_connect_requires_token(self):
        client = LiveUpdateClient("http://gotify.test")
        with pytest.raises(ValueError):
            await client.connect()

    @pytest.mark.asyncio
    async def test_malformed_frames_are_dropped(self):
        ws = FakeWebSocket(["not json", json.dumps({"id": "x"}), json.dumps(message_payload(2, 0))])
        listener = RecordingListener()
        client = LiveUpdateClient("http://gotify.test", listener=listener)

        with _patch_connect([ws]):
            await client.connect("C1")
            await _settle(lambda: listener.messages)

        assert [m.id for m in listener.messages] == [2]
        assert client.state is ConnectionState.CONNECTED
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_listener_errors_do_not_stop_reader(self):
        ws = FakeWebSocket([json.dumps(message_payload(1, 0)), json.dumps(message_payload(2, 1))])
        seen = []

        class Flaky(LiveUpdateListener):
            def on_message(self, message):
                seen.append(message.id)
                if message.id == 1:
                    raise RuntimeError("boom")

        client = LiveUpdateClient("http://gotify.test", listener=Flaky())
        with _patch_connect([ws]):
            await client.connect("C1")
            await _settle(lambda: len(seen) == 2)
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_overlapping_connects_open_one_socket(self):
        gate = asyncio.Event()
        attempts = []
        sockets = []

        async def gated_connect(url):
            attempts.append(url)
            await gate.wait()
            ws = FakeWebSocket()
            sockets.append(ws)
            return ws

        listener = RecordingListener()
        client = LiveUpdateClient("http://gotify.test", listener=listener, reconnect_base_delay=10)

        with patch("gotichat.gotify.stream.websockets.connect", new=gated_connect):
            first = asyncio.create_task(client.connect("C1"))
            await _settle(lambda: len(attempts) == 1)
            second = asyncio.create_task(client.connect("C1"))
            await _settle(lambda: len(attempts) == 2)
            gate.set()
            await asyncio.gather(first, second)

        assert len(sockets) == 1
        assert client.state is ConnectionState.CONNECTED
        assert not client.reconnect_pending

        await client.disconnect()
        assert sockets[0].closed

    @pytest.mark.asyncio
    async def test_disconnect_cancels_open_in_flight(self):
        gate = asyncio.Event()

        async def gated_connect(url):
            await gate.wait()
            return FakeWebSocket()

        client = LiveUpdateClient("http://gotify.test")
        with patch("gotichat.gotify.stream.websockets.connect", new=gated_connect):
            pending = asyncio.create_task(client.connect("C1"))
            await _settle(lambda: client.state is ConnectionState.CONNECTING)
            await client.disconnect()
            gate.set()
            await pending

        assert client.state is ConnectionState.DISCONNECTED
        assert not client.reconnect_pending

    @pytest.mark.asyncio
    async def test_replaced_socket_closing_leaves_live_one_alone(self):
        stale, live = FakeWebSocket(), FakeWebSocket()
        client = LiveUpdateClient("http://gotify.test", reconnect_base_delay=10)

        with _patch_connect([live]):
            await client.connect("C1")

        stale.end()
        await client._read_loop(stale)

        assert client.state is ConnectionState.CONNECTED
        assert not client.reconnect_pending
        await client.disconnect()
        assert live.closed

    @pytest.mark.asyncio
    async def test_disconnect_is_idempotent(self):
        client = LiveUpdateClient("http://gotify.test")
        await client.disconnect()
        await client.disconnect()
        assert client.state is ConnectionState.DISCONNECTED


# ---------------------------------------------------------------------------
# Reconnect
# ---------------------------------------------------------------------------

class TestReconnect:
    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        listener = RecordingListener()
        client = LiveUpdateClient(
            "http://gotify.test",
            listener=listener,
            max_reconnect_attempts=5,
            reconnect_base_delay=0.01,
        )

        with _patch_connect(OSError("refused")) as connect:
            await client.connect("C1")
            await _settle(lambda: connect.call_count == 6 and not client.reconnect_pending)

            assert [attempt for attempt, _ in listener.scheduled] == [1, 2, 3, 4, 5]
            assert listener.exhausted == [5]
            delays = [delay for _, delay in listener.scheduled]
            assert all(a < b for a, b in zip(delays, delays[1:]))
            assert client.state is ConnectionState.DISCONNECTED

            # No further automatic retry.
            await asyncio.sleep(0.1)
            assert connect.call_count == 6

            # A manual connect starts over with a fresh retry budget.
            await client.connect()
            assert connect.call_count == 7
            assert client.retries_used == 1
            await client.disconnect()

        assert not client.reconnect_pending

    @pytest.mark.asyncio
    async def test_failed_attempt_reports_error_then_disconnected(self):
        listener = RecordingListener()
        client = LiveUpdateClient("http://gotify.test", listener=listener, reconnect_base_delay=10)

        with _patch_connect(OSError("refused")):
            await client.connect("C1")

        assert listener.states == [
            ConnectionState.CONNECTING,
            ConnectionState.ERROR,
            ConnectionState.DISCONNECTED,
        ]
        assert client.reconnect_pending
        assert listener.scheduled == [(1, 10)]
        await client.disconnect()
        assert not client.reconnect_pending

    @pytest.mark.asyncio
    async def test_dropped_stream_reconnects(self):
        first, second = FakeWebSocket(), FakeWebSocket()
        listener = RecordingListener()
        client = LiveUpdateClient("http://gotify.test", listener=listener, reconnect_base_delay=0.01)

        with _patch_connect([first, second]) as connect:
            await client.connect("C1")
            first.fail()
            await _settle(lambda: connect.call_count == 2 and client.state is ConnectionState.CONNECTED)

        assert ConnectionState.ERROR in listener.states
        # Retry counter resets once connected again.
        assert client.retries_used == 0
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_clean_close_still_reconnects(self):
        first, second = FakeWebSocket(), FakeWebSocket()
        client = LiveUpdateClient("http://gotify.test", reconnect_base_delay=0.01)

        with _patch_connect([first, second]) as connect:
            await client.connect("C1")
            first.end()
            await _settle(lambda: connect.call_count == 2 and client.state is ConnectionState.CONNECTED)
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_disconnect_cancels_scheduled_reconnect(self):
        client = LiveUpdateClient("http://gotify.test", reconnect_base_delay=0.05)

        with _patch_connect(OSError("refused")) as connect:
            await client.connect("C1")
            assert client.reconnect_pending
            await client.disconnect()
            await asyncio.sleep(0.1)

        assert connect.call_count == 1
        assert client.state is ConnectionState.DISCONNECTED
