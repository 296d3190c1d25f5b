"""
Configuration for pytest.

This file provides common fixtures for all tests: an in-memory Gotify server
and gateways wired to it through ``httpx.MockTransport``.
"""

import pytest
import pytest_asyncio

from gotichat.gotify.gateway import MessageGateway
from gotichat.gotify.models import Credential
from gotichat.gotify.request_cache import PendingRequestCache
from gotichat.gotify.rest_client import GotifyRESTClient
from tests.helpers.fake_gotify import BASE_URL, FakeGotify


class FakeClock:
    """Manually advanced replacement for ``time.monotonic``."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_gotify():
    return FakeGotify()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def alice():
    return Credential(username="alice", password="secret")


@pytest.fixture
def bob():
    return Credential(username="bob", password="hunter2")


@pytest_asyncio.fixture
async def rest_client(fake_gotify):
    client = GotifyRESTClient(BASE_URL, transport=fake_gotify.transport())
    yield client
    await client.aclose()


@pytest_asyncio.fixture
async def gateway(fake_gotify, clock):
    client = GotifyRESTClient(BASE_URL, transport=fake_gotify.transport())
    gw = MessageGateway(client, request_cache=PendingRequestCache(clock=clock))
    yield gw
    await gw.aclose()
