"""Unit tests for the Gotify REST client."""

import httpx
import pytest

from gotichat.gotify.errors import (
    InvalidArgument,
    NotFound,
    ServiceUnavailable,
    Unauthorized,
    UpstreamError,
)
from gotichat.gotify.models import Credential
from gotichat.gotify.rest_client import GotifyRESTClient
from tests.helpers.fake_gotify import BASE_URL

pytestmark = [pytest.mark.asyncio]


def _client_answering(handler) -> GotifyRESTClient:
    return GotifyRESTClient(BASE_URL, transport=httpx.MockTransport(handler))


class TestAuthentication:
    async def test_current_user(self, rest_client, alice):
        profile = await rest_client.get_current_user(alice)
        assert profile.id == 1
        assert profile.name == "alice"
        assert profile.is_admin is False

    async def test_wrong_password(self, rest_client):
        with pytest.raises(Unauthorized):
            await rest_client.get_current_user(Credential(username="alice", password="nope"))

    async def test_sends_basic_auth(self, alice):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers.get("authorization")
            return httpx.Response(200, json={"id": 1, "name": "alice", "admin": False})

        client = _client_answering(handler)
        await client.get_current_user(alice)
        await client.aclose()
        assert seen["auth"].startswith("Basic ")


class TestUsers:
    async def test_create_user(self, rest_client, fake_gotify):
        admin = Credential(username="admin", password="adminpass")
        profile = await rest_client.create_user(admin, "dave", "pw")
        assert profile.name == "dave"
        assert "dave" in fake_gotify.users

    async def test_duplicate_user_surfaces_gotify_reason(self, rest_client):
        admin = Credential(username="admin", password="adminpass")
        with pytest.raises(InvalidArgument, match="username already exists"):
            await rest_client.create_user(admin, "alice", "pw")


class TestMessages:
    async def test_create_message_uses_app_token(self):
        seen = {}

        def handler(request):
            seen["key"] = request.headers.get("x-gotify-key")
            seen["auth"] = request.headers.get("authorization")
            return httpx.Response(
                200,
                json={"id": 1, "appid": 2, "title": "t", "message": "m", "priority": 5,
                      "date": "2024-01-01T00:00:00Z"},
            )

        client = _client_answering(handler)
        message = await client.create_message("A123", "t", "m", 5)
        await client.aclose()
        assert message.id == 1
        assert seen == {"key": "A123", "auth": None}

    async def test_list_messages_wrapped(self, rest_client, fake_gotify, alice):
        fake_gotify.add_message("alice", 1, 0)
        fake_gotify.add_message("bob", 2, 1)
        messages = await rest_client.list_messages(alice, 50)
        assert [m.id for m in messages] == [1]

    async def test_list_messages_bare_array(self, rest_client, fake_gotify, alice):
        fake_gotify.list_as_bare_array = True
        fake_gotify.add_message("alice", 1, 0)
        messages = await rest_client.list_messages(alice, 50)
        assert [m.id for m in messages] == [1]

    async def test_list_messages_passes_limit(self, rest_client, fake_gotify, alice):
        for i in range(5):
            fake_gotify.add_message("alice", i + 1, i)
        messages = await rest_client.list_messages(alice, 2)
        assert len(messages) == 2

    async def test_delete_missing_message(self, rest_client, alice):
        with pytest.raises(NotFound, match="Message not found"):
            await rest_client.delete_message(alice, 404)


class TestFailures:
    async def test_transport_error_is_service_unavailable(self, alice):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = _client_answering(handler)
        with pytest.raises(ServiceUnavailable):
            await client.get_current_user(alice)
        await client.aclose()

    async def test_timeout_is_service_unavailable(self, alice):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        client = _client_answering(handler)
        with pytest.raises(ServiceUnavailable, match="timed out"):
            await client.list_applications(alice)
        await client.aclose()

    async def test_server_error_is_upstream_error(self, rest_client, fake_gotify, alice):
        fake_gotify.failures[("GET", "/application")] = 500
        with pytest.raises(UpstreamError) as exc_info:
            await rest_client.list_applications(alice)
        assert exc_info.value.status == 500

    async def test_invalid_json_is_upstream_error(self, alice):
        client = _client_answering(lambda request: httpx.Response(200, text="<html>"))
        with pytest.raises(UpstreamError, match="invalid JSON"):
            await client.get_current_user(alice)
        await client.aclose()

    async def test_non_list_is_upstream_error(self, alice):
        client = _client_answering(lambda request: httpx.Response(200, json={"oops": 1}))
        with pytest.raises(UpstreamError, match="expected a list"):
            await client.list_clients(alice)
        await client.aclose()

    async def test_health(self, rest_client):
        assert (await rest_client.health())["health"] == "green"
