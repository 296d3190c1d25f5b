"""
Pydantic models for the Gotify resources gotichat works with.

Field names are pythonic; aliases carry Gotify's wire names (``appid``,
``message``, ``date``, ``admin``) so payloads validate straight from the API
and serialise back with ``by_alias=True``.
"""

import enum
import hashlib
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Set, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Gotify emits up to 9 fractional digits (Go's RFC3339Nano); Python keeps 6.
_FRACTION_RE = re.compile(r"(\.\d{6})\d+")


class Credential(BaseModel):
    """A username/password pair verified against Gotify."""

    model_config = ConfigDict(frozen=True)

    username: str
    password: str = Field(repr=False)

    def fingerprint(self) -> str:
        """Stable digest used to key caches without holding the raw password."""
        raw = f"{self.username}:{self.password}".encode("utf-8")
        return hashlib.sha256(raw).hexdigest()

    def as_auth(self) -> Tuple[str, str]:
        """Return the ``(username, password)`` tuple httpx expects for basic auth."""
        return (self.username, self.password)


class UserProfile(BaseModel):
    """The Gotify user behind a credential."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: int
    name: str
    is_admin: bool = Field(False, alias="admin")


class Application(BaseModel):
    """A Gotify application; its token authorises message sends."""

    model_config = ConfigDict(extra="ignore")

    id: int
    token: str = ""
    name: str = ""
    description: str = ""


class Client(BaseModel):
    """A Gotify client; its token authorises opening the stream."""

    model_config = ConfigDict(extra="ignore")

    id: int
    token: str = ""
    name: str = ""


class Message(BaseModel):
    """A notification stored on the Gotify server."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: int
    application_id: int = Field(0, alias="appid")
    title: str = ""
    body: str = Field("", alias="message")
    priority: int = 0
    timestamp: datetime = Field(alias="date")

    @field_validator("title", "body", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("timestamp", mode="before")
    @classmethod
    def _trim_fraction(cls, value: Any) -> Any:
        if isinstance(value, str):
            return _FRACTION_RE.sub(r"\1", value)
        return value

    @field_validator("timestamp")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @property
    def sort_key(self) -> Tuple[datetime, int]:
        return (self.timestamp, self.id)

    def to_wire(self) -> Dict[str, Any]:
        """Serialise with Gotify's field names and an ISO-8601 ``date``."""
        return self.model_dump(by_alias=True, mode="json")


class ConnectionState(str, enum.Enum):
    """Lifecycle of the live update stream."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class BatchDeleteResult(BaseModel):
    """Per-id outcome of a batch delete."""

    deleted: Set[int] = Field(default_factory=set)
    failed: Dict[int, str] = Field(default_factory=dict)

    @property
    def total(self) -> int:
        return len(self.deleted) + len(self.failed)

    def summary(self) -> Dict[str, int]:
        return {
            "total": self.total,
            "successful": len(self.deleted),
            "failed": len(self.failed),
        }

    def to_response(self) -> Dict[str, Any]:
        """Shape used by the ``/gotify/messages/batch`` endpoint."""
        return {
            "success": True,
            "deleted": sorted(self.deleted),
            "failed": [
                {"messageId": message_id, "error": reason}
                for message_id, reason in sorted(self.failed.items())
            ],
            "summary": self.summary(),
        }


def normalize_message_envelope(payload: Any) -> List[Message]:
    """Flatten Gotify's message listing into a list of :class:`Message`.

    Gotify answers ``GET /message`` with ``{"messages": [...], "paging": ...}``
    but older servers and proxies return a bare list.  Anything else is
    treated as an empty result.
    """
    if isinstance(payload, dict):
        items = payload.get("messages") or []
    elif isinstance(payload, list):
        items = payload
    else:
        items = []
    return [Message.model_validate(item) for item in items]
