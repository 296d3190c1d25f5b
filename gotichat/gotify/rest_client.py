"""
Gotify REST API client for gotichat.

Thin async wrapper over the Gotify HTTP API.  Every call authenticates with
either basic auth (a :class:`Credential`) or an application token sent in the
``X-Gotify-Key`` header, and every failure surfaces as a
:class:`~gotichat.gotify.errors.GotifyError` subclass.
"""

import logging
from typing import Any, Dict, List, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from gotichat.gotify.errors import (
    InvalidArgument,
    ServiceUnavailable,
    UpstreamError,
    raise_for_gotify_status,
)
from gotichat.gotify.models import (
    Application,
    Client,
    Credential,
    Message,
    UserProfile,
    normalize_message_envelope,
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class GotifyRESTClient:
    """
    Async client for the Gotify REST API.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initializes the Gotify client.

        Args:
            base_url: The base URL of the Gotify server (e.g. https://push.example.com).
            timeout: Per-request timeout in seconds.
            transport: Optional httpx transport, used by tests to stub the server.
        """
        self.base_url = base_url.rstrip("/")
        if not self.base_url:
            logger.warning("Gotify URL is not configured; every request will fail")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        """Close the underlying connection pool."""
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        *,
        credential: Optional[Credential] = None,
        app_token: Optional[str] = None,
        **kwargs: Any,
    ) -> httpx.Response:
        headers: Dict[str, str] = {}
        if app_token:
            headers["X-Gotify-Key"] = app_token

        try:
            response = await self._client.request(
                method,
                path,
                auth=credential.as_auth() if credential else None,
                headers=headers,
                **kwargs,
            )
        except httpx.TimeoutException as e:
            logger.error(f"Request timed out: {method} {path}")
            raise ServiceUnavailable("Gotify server timed out", {"error": str(e)}) from e
        except httpx.TransportError as e:
            logger.error(f"Connection error: {method} {path} - {e}")
            raise ServiceUnavailable("Gotify server unreachable", {"error": str(e)}) from e

        logger.debug(f"Request to {path} ({method}) - Status: {response.status_code}")
        return response

    @staticmethod
    def _json(response: httpx.Response, action: str) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError(
                f"Failed to {action}: invalid JSON",
                status=response.status_code,
                body=response.text[:500],
            ) from e

    def _parse(self, response: httpx.Response, model: Type[ModelT], action: str) -> ModelT:
        data = self._json(response, action)
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise UpstreamError(
                f"Failed to {action}: unexpected response",
                status=response.status_code,
                body=data,
            ) from e

    def _parse_list(
        self, response: httpx.Response, model: Type[ModelT], action: str
    ) -> List[ModelT]:
        data = self._json(response, action)
        if not isinstance(data, list):
            raise UpstreamError(
                f"Failed to {action}: expected a list",
                status=response.status_code,
                body=data,
            )
        try:
            return [model.model_validate(item) for item in data]
        except ValidationError as e:
            raise UpstreamError(
                f"Failed to {action}: unexpected response",
                status=response.status_code,
                body=data,
            ) from e

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def get_current_user(self, credential: Credential) -> UserProfile:
        """Return the profile of the user owning *credential*."""
        response = await self._request("GET", "/current/user", credential=credential)
        raise_for_gotify_status(response, "fetch current user")
        return self._parse(response, UserProfile, "fetch current user")

    async def create_user(
        self,
        admin_credential: Credential,
        name: str,
        password: str,
        admin: bool = False,
    ) -> UserProfile:
        """Create a Gotify user. Requires admin credentials."""
        response = await self._request(
            "POST",
            "/user",
            credential=admin_credential,
            json={"name": name, "pass": password, "admin": admin},
        )
        if response.status_code == 400:
            body = self._json(response, "create user") if response.content else {}
            reason = "User creation failed"
            if isinstance(body, dict):
                reason = body.get("errorDescription") or body.get("error") or reason
            raise InvalidArgument(reason, {"status": 400})
        raise_for_gotify_status(response, "create user")
        return self._parse(response, UserProfile, "create user")

    # ------------------------------------------------------------------
    # Applications and clients
    # ------------------------------------------------------------------

    async def list_applications(self, credential: Credential) -> List[Application]:
        response = await self._request("GET", "/application", credential=credential)
        raise_for_gotify_status(response, "list applications")
        return self._parse_list(response, Application, "list applications")

    async def create_application(
        self, credential: Credential, name: str, description: str = ""
    ) -> Application:
        response = await self._request(
            "POST",
            "/application",
            credential=credential,
            json={"name": name, "description": description},
        )
        raise_for_gotify_status(response, "create application")
        return self._parse(response, Application, "create application")

    async def list_clients(self, credential: Credential) -> List[Client]:
        response = await self._request("GET", "/client", credential=credential)
        raise_for_gotify_status(response, "list clients")
        return self._parse_list(response, Client, "list clients")

    async def create_client(self, credential: Credential, name: str) -> Client:
        response = await self._request(
            "POST", "/client", credential=credential, json={"name": name}
        )
        raise_for_gotify_status(response, "create client")
        return self._parse(response, Client, "create client")

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def create_message(
        self, app_token: str, title: str, message: str, priority: int
    ) -> Message:
        """Post a message authorised by an application token."""
        response = await self._request(
            "POST",
            "/message",
            app_token=app_token,
            json={"title": title, "message": message, "priority": priority},
        )
        raise_for_gotify_status(response, "send message")
        return self._parse(response, Message, "send message")

    async def list_messages(self, credential: Credential, limit: int) -> List[Message]:
        response = await self._request(
            "GET", "/message", credential=credential, params={"limit": limit}
        )
        raise_for_gotify_status(response, "fetch messages")
        if not response.content:
            return []
        payload = self._json(response, "fetch messages")
        try:
            return normalize_message_envelope(payload)
        except ValidationError as e:
            raise UpstreamError(
                "Failed to fetch messages: unexpected response",
                status=response.status_code,
                body=payload,
            ) from e

    async def delete_message(self, credential: Credential, message_id: int) -> None:
        response = await self._request(
            "DELETE", f"/message/{message_id}", credential=credential
        )
        raise_for_gotify_status(response, "delete message", not_found="Message not found")

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    async def health(self) -> Dict[str, Any]:
        """Return Gotify's own ``/health`` document."""
        response = await self._request("GET", "/health")
        raise_for_gotify_status(response, "check health")
        return self._json(response, "check health")
