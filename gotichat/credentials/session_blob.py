"""
Local persistence of the logged-in session.

The blob is a small JSON document ``{"user": {...}, "credentials": {...}}``
written on login, read on startup and removed on logout.  The password is
only written when a session key is configured, and then only sealed with
Fernet; without a key the next start needs a fresh login.
"""

import json
import logging
import os
from pathlib import Path
from typing import Optional, Union

from pydantic import BaseModel, ValidationError

from gotichat.credentials.crypto import SealError, seal, unseal
from gotichat.gotify.models import Credential, UserProfile

logger = logging.getLogger(__name__)


class SessionBlob(BaseModel):
    user: UserProfile
    credentials: Optional[Credential] = None


class SessionBlobStore:
    """Reads and writes the session blob at *path*."""

    def __init__(self, path: Union[str, Path], session_key: str = ""):
        self.path = Path(path).expanduser()
        self._session_key = session_key
        if not session_key:
            logger.debug("No session key configured; passwords will not be persisted")

    @property
    def can_persist_credentials(self) -> bool:
        return bool(self._session_key)

    def save(self, user: UserProfile, credential: Optional[Credential]) -> None:
        """Write the blob, replacing any previous one."""
        stored_credentials = None
        if credential is not None and self._session_key:
            stored_credentials = {
                "username": credential.username,
                "sealed": seal(credential.password, self._session_key),
            }
        elif credential is not None:
            logger.warning(
                "GOTICHAT_SESSION_KEY is not set; saving profile without credentials"
            )

        document = {
            "user": user.model_dump(by_alias=True),
            "credentials": stored_credentials,
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as f:
            json.dump(document, f)
        logger.debug(f"Session blob written to {self.path}")

    def load(self) -> Optional[SessionBlob]:
        """Return the stored session, or None when absent or unreadable.

        A corrupt blob (or one sealed with a different key) is removed.
        """
        if not self.path.exists():
            return None

        try:
            with open(self.path, "r") as f:
                document = json.load(f)
            user = UserProfile.model_validate(document["user"])
            credential = None
            stored = document.get("credentials")
            if stored and self._session_key:
                credential = Credential(
                    username=stored["username"],
                    password=unseal(stored["sealed"], self._session_key),
                )
        except (OSError, ValueError, KeyError, TypeError, ValidationError, SealError) as e:
            logger.error(f"Failed to parse stored session data: {e}")
            self.clear()
            return None

        return SessionBlob(user=user, credentials=credential)

    def clear(self) -> None:
        """Remove the blob. Idempotent."""
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
