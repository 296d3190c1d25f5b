"""
Session controller: one user's view of their Gotify messages.

Composes the credential store, message gateway and live update client.  On
``start()`` the history is loaded and the live stream opened; live arrivals,
sends and deletes all converge on a single :class:`MessageCollection`.
Everything runs on one event loop, so the collection needs no locking.
"""

import asyncio
import bisect
import logging
import uuid
from typing import Any, Iterable, Iterator, List, NamedTuple, Optional, Set

from gotichat.credentials.store import CredentialStore
from gotichat.gotify.errors import GotifyError, NotFound, Unauthorized
from gotichat.gotify.gateway import NOT_FOUND_REASON, MessageGateway
from gotichat.gotify.models import BatchDeleteResult, ConnectionState, Credential, Message
from gotichat.gotify.stream import LiveUpdateClient, LiveUpdateListener

logger = logging.getLogger(__name__)


class MessageCollection:
    """Messages ordered oldest-first by ``(timestamp, id)``, unique by id."""

    def __init__(self, messages: Iterable[Message] = ()):
        self._messages: List[Message] = []
        self._ids: Set[int] = set()
        self.replace(messages)

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(list(self._messages))

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._ids

    def ids(self) -> Set[int]:
        return set(self._ids)

    def as_list(self) -> List[Message]:
        return list(self._messages)

    def replace(self, messages: Iterable[Message]) -> None:
        """Swap in a new set of messages, sorted and de-duplicated."""
        self._messages = []
        self._ids = set()
        for message in sorted(messages, key=lambda m: m.sort_key):
            if message.id not in self._ids:
                self._messages.append(message)
                self._ids.add(message.id)

    def add(self, message: Message) -> bool:
        """Insert *message* at its sorted position unless its id is present."""
        if message.id in self._ids:
            return False
        bisect.insort(self._messages, message, key=lambda m: m.sort_key)
        self._ids.add(message.id)
        return True

    def remove(self, message_ids: Iterable[int]) -> int:
        doomed = set(message_ids) & self._ids
        if not doomed:
            return 0
        self._messages = [m for m in self._messages if m.id not in doomed]
        self._ids -= doomed
        return len(doomed)

    def clear(self) -> None:
        self._messages = []
        self._ids = set()


class SessionUpdate(NamedTuple):
    """An item delivered to :meth:`SessionController.subscribe` queues."""

    kind: str  # "message" | "state" | "removed" | "gave_up"
    payload: Any


class SessionController(LiveUpdateListener):
    """Drives one user's session against Gotify."""

    def __init__(
        self,
        credentials: CredentialStore,
        gateway: MessageGateway,
        live_client: Optional[LiveUpdateClient] = None,
        history_limit: int = 50,
        max_reconnect_attempts: int = 5,
        reconnect_base_delay: float = 1.0,
    ):
        self.credentials = credentials
        self.gateway = gateway
        self.history_limit = history_limit
        self.messages = MessageCollection()
        self.last_error: Optional[str] = None

        if live_client is None:
            live_client = LiveUpdateClient(
                gateway.client.base_url,
                max_reconnect_attempts=max_reconnect_attempts,
                reconnect_base_delay=reconnect_base_delay,
            )
        live_client.listener = self
        self.live = live_client

        self._setup_failed = False
        self._send_task: Optional[asyncio.Task] = None
        self._subscribers: List["asyncio.Queue[SessionUpdate]"] = []

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        if self._setup_failed and self.live.state is ConnectionState.DISCONNECTED:
            return ConnectionState.ERROR
        return self.live.state

    def subscribe(self) -> "asyncio.Queue[SessionUpdate]":
        """Return a queue receiving every message/state update from now on."""
        queue: "asyncio.Queue[SessionUpdate]" = asyncio.Queue()
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: "asyncio.Queue[SessionUpdate]") -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def _publish(self, kind: str, payload: Any) -> None:
        update = SessionUpdate(kind, payload)
        for queue in self._subscribers:
            queue.put_nowait(update)

    def on_message(self, message: Message) -> None:
        # The stream echoes messages this session just sent.
        if self.messages.add(message):
            self._publish("message", message)

    def on_state_change(self, state: ConnectionState) -> None:
        if state is ConnectionState.CONNECTED:
            self._setup_failed = False
        self._publish("state", state)

    def on_reconnect_exhausted(self, attempts: int) -> None:
        self.last_error = f"Live updates stopped after {attempts} reconnect attempts"
        self._publish("gave_up", attempts)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _require_credential(self) -> Credential:
        credential = self.credentials.current()
        if credential is None:
            raise Unauthorized("Not logged in")
        return credential

    async def start(self) -> None:
        """Load history, then open the live stream.

        A failed history load degrades to an empty history; a failed client
        token setup leaves the session in the ``error`` state.
        """
        credential = self._require_credential()

        try:
            history = await self.gateway.list_messages(credential, self.history_limit)
        except GotifyError as e:
            logger.error(f"Failed to load message history: {e.message}")
            history = []
        self.messages.replace(history)
        logger.info(f"Loaded {len(self.messages)} messages for {credential.username}")

        try:
            token = await self.gateway.resolve_client_token(credential)
        except GotifyError as e:
            logger.error(f"Failed to setup stream connection: {e.message}")
            self.last_error = e.message
            self._setup_failed = True
            self._publish("state", ConnectionState.ERROR)
            return

        await self.live.connect(token)

    async def stop(self) -> None:
        """Close the live stream. The message collection is left as is."""
        self.abort_send()
        await self.live.disconnect()

    async def logout(self) -> None:
        await self.stop()
        self.credentials.clear()
        self.messages.clear()
        self.last_error = None

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    def abort_send(self) -> None:
        """Cancel the in-flight send, if any; its outcome is discarded."""
        task, self._send_task = self._send_task, None
        if task is not None and not task.done():
            task.cancel()

    async def send_message(
        self,
        title: str,
        body: str,
        priority: int = 5,
        idempotency_key: Optional[str] = None,
    ) -> Optional[Message]:
        """Send a message, superseding any send still in flight.

        Returns:
            The created message, or None if this call was superseded or
            aborted before it finished.
        """
        credential = self._require_credential()
        self.abort_send()

        task = asyncio.create_task(
            self.gateway.send_message(
                credential,
                title,
                body,
                priority,
                idempotency_key=idempotency_key or uuid.uuid4().hex,
            )
        )
        self._send_task = task

        try:
            message = await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            logger.info("Send superseded; discarding its result")
            return None
        except GotifyError as e:
            if self._send_task is not task:
                return None
            self._send_task = None
            self.last_error = e.message
            raise

        if self._send_task is not task:
            return None
        self._send_task = None
        self.last_error = None
        if self.messages.add(message):
            self._publish("message", message)
        return message

    # ------------------------------------------------------------------
    # Deleting
    # ------------------------------------------------------------------

    async def request_delete(self, message_id: int) -> None:
        credential = self._require_credential()
        try:
            await self.gateway.delete_message(credential, message_id)
        except NotFound:
            # Gone upstream either way.
            self._remove({message_id})
            raise
        except GotifyError as e:
            self.last_error = e.message
            raise
        self._remove({message_id})

    async def request_batch_delete(self, message_ids: Iterable[int]) -> BatchDeleteResult:
        credential = self._require_credential()
        try:
            result = await self.gateway.batch_delete(credential, message_ids)
        except GotifyError as e:
            self.last_error = e.message
            raise

        gone = set(result.deleted)
        gone.update(mid for mid, reason in result.failed.items() if reason == NOT_FOUND_REASON)
        self._remove(gone)
        if result.failed:
            self.last_error = f"Failed to delete {len(result.failed)} message(s)"
        return result

    def _remove(self, message_ids: Set[int]) -> None:
        if self.messages.remove(message_ids):
            self._publish("removed", set(message_ids))
