"""
Gotify live update (``/stream``) client for gotichat.

Keeps one websocket open to the Gotify stream, turns every frame into a
:class:`~gotichat.gotify.models.Message` and reconnects with linear backoff
(``attempt * base_delay``) for a bounded number of attempts.
"""

import asyncio
import logging
from typing import Any, Optional
from urllib.parse import quote

import websockets
from pydantic import ValidationError
from websockets.exceptions import ConnectionClosedError, WebSocketException

from gotichat.gotify.models import ConnectionState, Message

logger = logging.getLogger(__name__)

_OPEN_ERRORS = (OSError, asyncio.TimeoutError, WebSocketException)


def derive_stream_url(base_url: str) -> str:
    """Derive the stream URL from a Gotify REST URL.

    ``http://`` -> ``ws://``, ``https://`` -> ``wss://``, then append
    ``/stream``.
    """
    url = base_url.rstrip("/")
    if url.startswith("https://"):
        url = "wss://" + url[len("https://"):]
    elif url.startswith("http://"):
        url = "ws://" + url[len("http://"):]
    if not url.endswith("/stream"):
        url += "/stream"
    return url


class LiveUpdateListener:
    """Observer for :class:`LiveUpdateClient` events.

    Subclass and override what you need; every hook defaults to a no-op.
    Hooks run on the event loop and must not block.
    """

    def on_message(self, message: Message) -> None:
        pass

    def on_state_change(self, state: ConnectionState) -> None:
        pass

    def on_reconnect_scheduled(self, attempt: int, delay: float) -> None:
        pass

    def on_reconnect_exhausted(self, attempts: int) -> None:
        pass


class LiveUpdateClient:
    """Async websocket client for the Gotify message stream."""

    def __init__(
        self,
        base_url: str,
        listener: Optional[LiveUpdateListener] = None,
        max_reconnect_attempts: int = 5,
        reconnect_base_delay: float = 1.0,
    ):
        self.stream_url = derive_stream_url(base_url)
        self.listener = listener or LiveUpdateListener()
        self.max_reconnect_attempts = max_reconnect_attempts
        self.reconnect_base_delay = reconnect_base_delay

        self._token: Optional[str] = None
        self._state = ConnectionState.DISCONNECTED
        self._retries = 0
        self._closing = False
        self._ws: Optional[Any] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._open_task: Optional[asyncio.Task] = None
        self._reconnect_handle: Optional[asyncio.TimerHandle] = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def retries_used(self) -> int:
        return self._retries

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_handle is not None

    # ------------------------------------------------------------------
    # Observer plumbing
    # ------------------------------------------------------------------

    def _notify(self, hook: str, *args: Any) -> None:
        try:
            getattr(self.listener, hook)(*args)
        except Exception:
            logger.error(f"Live update listener {hook} failed", exc_info=True)

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        self._state = state
        logger.debug(f"Stream state -> {state.value}")
        self._notify("on_state_change", state)

    # ------------------------------------------------------------------
    # Connection management
    # ------------------------------------------------------------------

    async def connect(self, client_token: Optional[str] = None) -> None:
        """Open the stream, or do nothing if it is already connected.

        A manual call cancels any scheduled reconnect or open still in
        flight and resets the retry counter, so it also revives a client that
        gave up reconnecting. An overlapped call returns once the newer one
        has taken over.
        """
        if client_token:
            self._token = client_token
        if not self._token:
            raise ValueError("A client token is required to open the stream")
        if self._state is ConnectionState.CONNECTED:
            return

        self._cancel_reconnect()
        await self._cancel_task(self._open_task)
        self._retries = 0
        self._closing = False

        # Every open runs as _open_task so a later connect() or disconnect()
        # can cancel a handshake still in flight.
        task = asyncio.create_task(self._open())
        self._open_task = task
        try:
            await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            logger.debug("Stream open superseded")
        finally:
            if self._open_task is task:
                self._open_task = None

    async def disconnect(self) -> None:
        """Close the stream and stop reconnecting. Safe to call repeatedly."""
        self._closing = True
        self._cancel_reconnect()
        await self._cancel_task(self._open_task)
        self._open_task = None
        await self._cancel_task(self._reader_task)
        self._reader_task = None

        ws, self._ws = self._ws, None
        if ws is not None:
            try:
                await ws.close()
            except (OSError, WebSocketException) as e:
                logger.debug(f"Error while closing stream: {e}")
        self._set_state(ConnectionState.DISCONNECTED)

    async def _open(self) -> None:
        self._set_state(ConnectionState.CONNECTING)
        url = f"{self.stream_url}?token={quote(self._token or '', safe='')}"
        logger.info(f"Opening Gotify stream at {self.stream_url}")

        try:
            ws = await websockets.connect(url)
        except _OPEN_ERRORS as e:
            logger.warning(f"Stream connection failed: {e}")
            self._handle_close(error=True)
            return

        if self._closing:
            # disconnect() ran while the handshake was in flight
            await ws.close()
            return

        self._ws = ws
        self._retries = 0
        self._set_state(ConnectionState.CONNECTED)
        logger.info("Gotify stream connected")
        self._reader_task = asyncio.create_task(self._read_loop(ws))

    async def _read_loop(self, ws: Any) -> None:
        error = False
        try:
            async for raw in ws:
                self._dispatch(raw)
        except ConnectionClosedError as e:
            logger.warning(f"Gotify stream closed with error: {e}")
            error = True
        except (OSError, WebSocketException) as e:
            logger.warning(f"Gotify stream failed: {e}")
            error = True
        else:
            logger.info("Gotify stream closed")

        if self._ws is not ws:
            # A newer connection replaced this one.
            return
        self._ws = None
        self._reader_task = None
        if not self._closing:
            self._handle_close(error=error)

    def _dispatch(self, raw: Any) -> None:
        try:
            message = Message.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Dropping malformed stream frame ({e.error_count()} errors)")
            return
        self._notify("on_message", message)

    # ------------------------------------------------------------------
    # Reconnect
    # ------------------------------------------------------------------

    def _handle_close(self, error: bool) -> None:
        if error:
            self._set_state(ConnectionState.ERROR)
        self._set_state(ConnectionState.DISCONNECTED)
        if self._closing:
            return

        if self._retries >= self.max_reconnect_attempts:
            logger.warning(
                f"Stream reconnect gave up after {self.max_reconnect_attempts} attempts"
            )
            self._notify("on_reconnect_exhausted", self._retries)
            return

        self._retries += 1
        delay = self._retries * self.reconnect_base_delay
        logger.info(
            f"Attempting to reconnect ({self._retries}/{self.max_reconnect_attempts}) "
            f"in {delay:.1f}s"
        )
        loop = asyncio.get_running_loop()
        self._reconnect_handle = loop.call_later(delay, self._fire_reconnect)
        self._notify("on_reconnect_scheduled", self._retries, delay)

    def _fire_reconnect(self) -> None:
        self._reconnect_handle = None
        if self._closing:
            return
        self._open_task = asyncio.get_running_loop().create_task(self._open())

    def _cancel_reconnect(self) -> None:
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None

    @staticmethod
    async def _cancel_task(task: Optional[asyncio.Task]) -> None:
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
