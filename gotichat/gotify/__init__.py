"""
Gotify integration for gotichat.

This package provides an async REST client for the Gotify API, the message
gateway that provisions delivery/stream tokens and forwards message
operations, and a reconnecting client for the Gotify live stream.
"""

from .errors import (
    DuplicateRequest,
    GotifyError,
    InvalidArgument,
    InvalidCredentials,
    NotFound,
    ProvisioningFailed,
    ServiceUnavailable,
    Unauthorized,
    UpstreamError,
)
from .gateway import MessageGateway, build_gateway
from .models import (
    BatchDeleteResult,
    ConnectionState,
    Credential,
    Message,
    UserProfile,
)
from .request_cache import PendingRequestCache
from .rest_client import GotifyRESTClient
from .stream import LiveUpdateClient, LiveUpdateListener

__all__ = [
    "BatchDeleteResult",
    "ConnectionState",
    "Credential",
    "DuplicateRequest",
    "GotifyError",
    "GotifyRESTClient",
    "InvalidArgument",
    "InvalidCredentials",
    "LiveUpdateClient",
    "LiveUpdateListener",
    "Message",
    "MessageGateway",
    "NotFound",
    "PendingRequestCache",
    "ProvisioningFailed",
    "ServiceUnavailable",
    "Unauthorized",
    "UpstreamError",
    "UserProfile",
    "build_gateway",
]
