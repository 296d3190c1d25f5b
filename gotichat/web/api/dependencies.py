"""
FastAPI dependencies shared by the gotichat routers.
"""

from typing import Any, Dict, Optional

from fastapi import Request

from gotichat.gotify.errors import InvalidArgument
from gotichat.gotify.gateway import MessageGateway
from gotichat.gotify.models import Credential


def get_gateway(request: Request) -> MessageGateway:
    """Return the process-wide gateway created by ``create_app()``."""
    return request.app.state.gateway


def get_settings(request: Request) -> Dict[str, Any]:
    """Return the config sections captured when the app was created."""
    return request.app.state.settings


def require_credential(username: Optional[str], password: Optional[str]) -> Credential:
    """Build a Credential from request fields, rejecting blanks with a 400."""
    if not username or not password:
        raise InvalidArgument("Username and password are required")
    return Credential(username=username, password=password)
