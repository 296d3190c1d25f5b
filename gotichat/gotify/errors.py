"""Exceptions raised by the Gotify client, gateway and session layers.

Every error carries an HTTP-style ``status_code`` so the web proxy can
translate it with a single exception handler.
"""

from typing import Any, Dict, Optional

import httpx


class GotifyError(Exception):
    """Base exception for Gotify-related failures."""

    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class InvalidArgument(GotifyError):
    """Caller error detected before any remote call."""

    status_code = 400


class Unauthorized(GotifyError):
    """Gotify rejected the supplied credential or token."""

    status_code = 401


class InvalidCredentials(Unauthorized):
    """Username/password pair rejected during authentication."""

    def __init__(self, message: str = "Invalid username or password", details=None):
        super().__init__(message, details)


class DuplicateRequest(GotifyError):
    """An idempotency key was seen again inside the dedup window."""

    status_code = 409

    def __init__(self, key: str):
        super().__init__("Duplicate request detected", {"requestId": key})
        self.key = key


class NotFound(GotifyError):
    """The referenced resource does not exist upstream."""

    status_code = 404


class ProvisioningFailed(GotifyError):
    """An application or client token could not be listed nor created."""


class UpstreamError(GotifyError):
    """Gotify answered with an unexpected non-2xx status."""

    def __init__(self, message: str, status: Optional[int] = None, body: Any = None):
        super().__init__(message, {"status": status, "body": body})
        self.status = status
        self.body = body


class ServiceUnavailable(GotifyError):
    """Gotify could not be reached at all."""


def _response_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text[:500]


def raise_for_gotify_status(
    response: httpx.Response,
    action: str,
    not_found: Optional[str] = None,
) -> None:
    """Raise the most specific :class:`GotifyError` for a failed response.

    Args:
        response: The httpx response to check.
        action: Short description used in the error message ("list messages").
        not_found: Message for a 404; when omitted a 404 is an UpstreamError.
    """
    if response.is_success:
        return

    status = response.status_code
    body = _response_body(response)
    if status == 401:
        raise Unauthorized("Invalid credentials", {"status": status})
    if status == 404 and not_found:
        raise NotFound(not_found, {"status": status})
    raise UpstreamError(f"Failed to {action}", status=status, body=body)
