"""
Core fixtures for gotichat proxy e2e tests.

The FastAPI app is built in-process around a gateway that talks to the fake
Gotify server, and exercised through ``httpx.ASGITransport``.
"""

import httpx
import pytest
import pytest_asyncio

from gotichat.config.config_loader import ConfigLoader
from gotichat.gotify.gateway import MessageGateway
from gotichat.gotify.request_cache import PendingRequestCache
from gotichat.gotify.rest_client import GotifyRESTClient
from gotichat.web.app import create_app
from tests.helpers.fake_gotify import ADMIN_CONFIG, BASE_URL


@pytest.fixture
def make_loader(tmp_path, monkeypatch):
    """Return a factory writing a config file and loading it."""
    for name in ("GOTIFY_ADMIN_USERNAME", "GOTIFY_ADMIN_PASSWORD"):
        monkeypatch.delenv(name, raising=False)

    def _make(text: str = ADMIN_CONFIG, name: str = "config.yaml") -> ConfigLoader:
        path = tmp_path / name
        path.write_text(text)
        return ConfigLoader(path)

    return _make


@pytest.fixture
def loader(make_loader):
    return make_loader()


@pytest_asyncio.fixture
async def make_app(fake_gotify, clock):
    """Return a factory building an app around a fresh gateway.

    Every gateway created is closed on teardown.
    """
    gateways = []

    def _make(loader):
        client = GotifyRESTClient(BASE_URL, transport=fake_gotify.transport())
        gateway = MessageGateway(client, request_cache=PendingRequestCache(clock=clock))
        gateways.append(gateway)
        return create_app(gateway=gateway, loader=loader)

    yield _make

    for gateway in gateways:
        await gateway.aclose()


def asgi_client(app) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://testserver",
        timeout=10.0,
    )


@pytest.fixture
def app(make_app, loader):
    return make_app(loader)


@pytest_asyncio.fixture
async def client(app):
    """Async httpx client speaking to the app in-process."""
    async with asgi_client(app) as c:
        yield c


@pytest.fixture
def alice_auth():
    return {"username": "alice", "password": "secret"}


@pytest.fixture
def open_client():
    """Factory for clients against apps built with ``make_app``."""
    return asgi_client
