"""
Message gateway: every notification operation gotichat performs against Gotify.

The gateway resolves the per-user delivery (application) and stream (client)
tokens, reusing an existing record when its name carries one of the known
markers and creating exactly one otherwise.  Resolved tokens are cached per
credential fingerprint for the lifetime of the gateway.
"""

import asyncio
import collections
import logging
from typing import Awaitable, Callable, Iterable, List, Optional, Sequence, Tuple, Union

import httpx

from gotichat.gotify.errors import (
    DuplicateRequest,
    GotifyError,
    InvalidArgument,
    NotFound,
    ProvisioningFailed,
    Unauthorized,
    UpstreamError,
)
from gotichat.gotify.models import (
    Application,
    BatchDeleteResult,
    Client,
    Credential,
    Message,
    UserProfile,
)
from gotichat.gotify.request_cache import PendingRequestCache
from gotichat.gotify.rest_client import GotifyRESTClient

logger = logging.getLogger(__name__)

DEFAULT_APPLICATION_MARKERS = ("Web App", "Web Client", "Message App")
DEFAULT_CLIENT_MARKERS = ("Gotify Web Client", "Web Client")
DEFAULT_CLIENT_NAME = "Gotify Web Client"

MIN_PRIORITY = 1
MAX_PRIORITY = 10
MAX_LIST_LIMIT = 200

NOT_FOUND_REASON = "Message not found"

Record = Union[Application, Client]


class TokenCache:
    """Bounded LRU of resolved tokens keyed by credential fingerprint."""

    def __init__(self, max_size: int = 256):
        self.cache: "collections.OrderedDict[str, str]" = collections.OrderedDict()
        self.max_size = max_size

    def get(self, key: str) -> Optional[str]:
        if key in self.cache:
            self.cache.move_to_end(key)
            return self.cache[key]
        return None

    def put(self, key: str, token: str) -> None:
        if key not in self.cache and len(self.cache) >= self.max_size:
            self.cache.popitem(last=False)
        self.cache[key] = token
        self.cache.move_to_end(key)

    def discard(self, key: str) -> None:
        self.cache.pop(key, None)


def _name_matches(name: str, markers: Sequence[str]) -> bool:
    return bool(name) and any(marker in name for marker in markers)


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


class MessageGateway:
    """Notification CRUD and token provisioning on behalf of a credential."""

    def __init__(
        self,
        client: GotifyRESTClient,
        request_cache: Optional[PendingRequestCache] = None,
        application_markers: Sequence[str] = DEFAULT_APPLICATION_MARKERS,
        client_markers: Sequence[str] = DEFAULT_CLIENT_MARKERS,
        client_name: str = DEFAULT_CLIENT_NAME,
        token_cache_size: int = 256,
    ):
        self.client = client
        self.request_cache = request_cache or PendingRequestCache()
        self.application_markers = tuple(application_markers)
        self.client_markers = tuple(client_markers)
        self.client_name = client_name
        self._delivery_tokens = TokenCache(token_cache_size)
        self._client_tokens = TokenCache(token_cache_size)

    async def aclose(self) -> None:
        await self.request_cache.stop()
        await self.client.aclose()

    # ------------------------------------------------------------------
    # Token provisioning
    # ------------------------------------------------------------------

    async def _provision(
        self,
        credential: Credential,
        kind: str,
        list_records: Callable[[Credential], Awaitable[List[Record]]],
        create_record: Callable[[], Awaitable[Record]],
        markers: Sequence[str],
    ) -> str:
        username = credential.username
        try:
            records = await list_records(credential)
        except Unauthorized:
            raise
        except GotifyError as e:
            logger.warning(f"Could not list {kind}s for {username}: {e.message}")
        else:
            logger.info(f"User {username} has {len(records)} {kind}s")
            for record in records:
                if record.token and _name_matches(record.name, markers):
                    logger.info(f"Using existing {kind} for {username}: {record.name}")
                    return record.token

        logger.info(f"Creating new {kind} for {username}...")
        try:
            record = await create_record()
        except Unauthorized:
            raise
        except GotifyError as e:
            logger.error(f"Failed to get/create {kind} for {username}: {e.message}")
            raise ProvisioningFailed(
                f"Failed to setup user {kind}", {"error": e.message}
            ) from e

        if not record.token:
            raise ProvisioningFailed(f"Gotify returned a {kind} without a token")
        logger.info(f"Created new {kind} for {username}: {record.name}")
        return record.token

    async def resolve_delivery_token(self, credential: Credential) -> str:
        """Return the application token used to send messages as *credential*."""
        key = credential.fingerprint()
        cached = self._delivery_tokens.get(key)
        if cached:
            return cached

        token = await self._provision(
            credential,
            "application",
            self.client.list_applications,
            lambda: self.client.create_application(
                credential,
                name=f"{credential.username} Web App",
                description=f"Web application for {credential.username}",
            ),
            self.application_markers,
        )
        self._delivery_tokens.put(key, token)
        return token

    async def resolve_client_token(self, credential: Credential) -> str:
        """Return the client token used to open the live stream as *credential*."""
        key = credential.fingerprint()
        cached = self._client_tokens.get(key)
        if cached:
            return cached

        token = await self._provision(
            credential,
            "client",
            self.client.list_clients,
            lambda: self.client.create_client(credential, self.client_name),
            self.client_markers,
        )
        self._client_tokens.put(key, token)
        return token

    async def list_clients(self, credential: Credential) -> List[Client]:
        return await self.client.list_clients(credential)

    async def create_client(self, credential: Credential, name: Optional[str] = None) -> Client:
        return await self.client.create_client(credential, name or self.client_name)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def register_user(
        self, admin_credential: Credential, username: str, password: str
    ) -> UserProfile:
        """Create a non-admin Gotify account using *admin_credential*."""
        if not username or not password:
            raise InvalidArgument("Username and password are required")
        profile = await self.client.create_user(admin_credential, username, password, admin=False)
        logger.info(f"Registered Gotify user {profile.name} (id={profile.id})")
        return profile

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_message(title: str, body: str, priority: int) -> None:
        if not title or not title.strip() or not body or not body.strip():
            raise InvalidArgument("Title and message are required")
        if not _is_int(priority) or not MIN_PRIORITY <= priority <= MAX_PRIORITY:
            raise InvalidArgument(
                f"Priority must be an integer between {MIN_PRIORITY} and {MAX_PRIORITY}"
            )

    async def send_message(
        self,
        credential: Credential,
        title: str,
        body: str,
        priority: int = 5,
        idempotency_key: Optional[str] = None,
    ) -> Message:
        """Send a notification through the user's application.

        Raises:
            InvalidArgument: Blank title/body or priority outside 1..10.
            DuplicateRequest: *idempotency_key* was used in the last few seconds.
        """
        self._validate_message(title, body, priority)

        if idempotency_key and not self.request_cache.check_and_record(idempotency_key):
            logger.info(f"Rejected duplicate send from {credential.username}")
            raise DuplicateRequest(idempotency_key)

        token = await self.resolve_delivery_token(credential)
        try:
            message = await self.client.create_message(token, title, body, priority)
        except (Unauthorized, UpstreamError) as e:
            if isinstance(e, Unauthorized) or e.status == 403:
                # The application may have been deleted upstream.
                self._delivery_tokens.discard(credential.fingerprint())
            raise
        logger.info(f"Message {message.id} sent for {credential.username}")
        return message

    async def list_messages(self, credential: Credential, limit: int = 50) -> List[Message]:
        """Fetch up to *limit* messages visible to *credential*."""
        if not _is_int(limit) or not 1 <= limit <= MAX_LIST_LIMIT:
            raise InvalidArgument(f"Limit must be between 1 and {MAX_LIST_LIMIT}")
        logger.info(f"Fetching messages for user: {credential.username}")
        messages = await self.client.list_messages(credential, limit)
        logger.debug(f"Fetched {len(messages)} messages for {credential.username}")
        return messages

    async def delete_message(self, credential: Credential, message_id: int) -> None:
        if not _is_int(message_id) or message_id < 1:
            raise InvalidArgument("Message ID is required")
        logger.info(f"Deleting message {message_id} for user: {credential.username}")
        await self.client.delete_message(credential, message_id)

    async def _delete_outcome(
        self, credential: Credential, message_id: int
    ) -> Tuple[int, Optional[str]]:
        try:
            await self.delete_message(credential, message_id)
        except NotFound:
            return message_id, NOT_FOUND_REASON
        except Unauthorized:
            return message_id, "Invalid credentials"
        except GotifyError as e:
            logger.warning(f"Failed to delete message {message_id}: {e.message}")
            return message_id, "Delete failed"
        return message_id, None

    async def batch_delete(
        self, credential: Credential, message_ids: Iterable[int]
    ) -> BatchDeleteResult:
        """Delete every id concurrently and report per-id outcomes.

        Never raises for individual failures; only an empty id set is rejected.
        """
        ids = set(message_ids)
        if not ids:
            raise InvalidArgument("Message IDs array is required")
        if not all(_is_int(message_id) for message_id in ids):
            raise InvalidArgument("Message IDs must be integers")

        logger.info(f"Batch deleting {len(ids)} messages for user: {credential.username}")
        outcomes = await asyncio.gather(
            *(self._delete_outcome(credential, message_id) for message_id in ids)
        )

        result = BatchDeleteResult()
        for message_id, reason in outcomes:
            if reason is None:
                result.deleted.add(message_id)
            else:
                result.failed[message_id] = reason
        logger.info(
            f"Batch delete completed: {len(result.deleted)} successful, "
            f"{len(result.failed)} failed"
        )
        return result


def build_gateway(
    loader=None, transport: Optional[httpx.AsyncBaseTransport] = None
) -> MessageGateway:
    """Create a :class:`MessageGateway` from configuration.

    Args:
        loader: A ConfigLoader; defaults to the module-level singleton.
        transport: Optional httpx transport passed to the REST client.
    """
    if loader is None:
        from gotichat.config.config_loader import config_loader as loader

    gotify_cfg = loader.get_gotify_config()
    gateway_cfg = loader.get_gateway_config()

    client = GotifyRESTClient(
        gotify_cfg["url"], timeout=gotify_cfg["timeout"], transport=transport
    )
    cache = PendingRequestCache(
        ttl=float(gateway_cfg.get("dedup_ttl", 5.0)),
        sweep_interval=float(gateway_cfg.get("dedup_sweep_interval", 10.0)),
    )
    return MessageGateway(
        client,
        request_cache=cache,
        application_markers=gateway_cfg.get("application_markers", DEFAULT_APPLICATION_MARKERS),
        client_markers=gateway_cfg.get("client_markers", DEFAULT_CLIENT_MARKERS),
        client_name=gateway_cfg.get("client_name", DEFAULT_CLIENT_NAME),
        token_cache_size=int(gateway_cfg.get("token_cache_size", 256)),
    )
