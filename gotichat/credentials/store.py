"""In-memory credential store for one gotichat session.

Usage::

    from gotichat.credentials.store import CredentialStore

    store = CredentialStore(rest_client)
    profile = await store.authenticate("alice", "s3cret")
    store.current()   # Credential(username='alice')
    store.clear()
"""

import logging
from typing import Optional

from gotichat.gotify.errors import (
    GotifyError,
    InvalidArgument,
    InvalidCredentials,
    ServiceUnavailable,
    Unauthorized,
)
from gotichat.gotify.models import Credential, UserProfile
from gotichat.gotify.rest_client import GotifyRESTClient

logger = logging.getLogger(__name__)


class CredentialStore:
    """Holds zero or one verified credential and the profile it belongs to."""

    def __init__(self, client: GotifyRESTClient):
        self._client = client
        self._credential: Optional[Credential] = None
        self._profile: Optional[UserProfile] = None

    @property
    def profile(self) -> Optional[UserProfile]:
        return self._profile

    @property
    def is_authenticated(self) -> bool:
        return self._credential is not None

    def current(self) -> Optional[Credential]:
        return self._credential

    async def authenticate(self, username: str, password: str) -> UserProfile:
        """Verify *username*/*password* against Gotify and keep them on success.

        Raises:
            InvalidArgument: Username or password is empty.
            InvalidCredentials: Gotify rejected the pair; nothing is stored.
            ServiceUnavailable: Gotify could not be reached or misbehaved.
        """
        if not username or not password:
            raise InvalidArgument("Username and password are required")

        credential = Credential(username=username, password=password)
        logger.info(f"Attempting login for: {username}")
        try:
            profile = await self._client.get_current_user(credential)
        except Unauthorized as e:
            logger.info(f"Login rejected for: {username}")
            raise InvalidCredentials() from e
        except ServiceUnavailable:
            raise
        except GotifyError as e:
            raise ServiceUnavailable("Authentication failed", e.details) from e

        self._credential = credential
        self._profile = profile
        logger.info(f"Login successful for {username} (id={profile.id})")
        return profile

    def restore(self, credential: Credential, profile: UserProfile) -> None:
        """Adopt a pair that was verified earlier (e.g. loaded from disk)."""
        self._credential = credential
        self._profile = profile

    def clear(self) -> None:
        """Forget the credential and profile. Idempotent."""
        if self._credential is not None:
            logger.info(f"Cleared credentials for {self._credential.username}")
        self._credential = None
        self._profile = None
