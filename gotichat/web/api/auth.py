"""
Authentication endpoints for the gotichat proxy.

Login verifies a username/password pair against Gotify; register creates a
new Gotify account with the admin credentials configured on the server.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from gotichat.credentials.store import CredentialStore
from gotichat.gotify.errors import GotifyError, Unauthorized
from gotichat.gotify.gateway import MessageGateway
from gotichat.gotify.models import Credential
from gotichat.web.api.dependencies import get_gateway, get_settings, require_credential

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


class CredentialsBody(BaseModel):
    username: Optional[str] = None
    password: Optional[str] = None


@router.post("/login")
async def login(
    body: CredentialsBody,
    gateway: MessageGateway = Depends(get_gateway),
    settings: Dict[str, Any] = Depends(get_settings),
):
    """
    Verify credentials against Gotify and return the user profile.

    The credentials are echoed back for the browser to keep while
    ``server.echo_credentials`` is enabled.
    """
    credential = require_credential(body.username, body.password)

    store = CredentialStore(gateway.client)
    profile = await store.authenticate(credential.username, credential.password)

    response: Dict[str, Any] = {
        "success": True,
        "user": profile.model_dump(by_alias=True),
    }
    if settings["server"].get("echo_credentials", True):
        response["credentials"] = {
            "username": credential.username,
            "password": credential.password,
        }
    return response


@router.post("/register")
async def register(
    body: CredentialsBody,
    gateway: MessageGateway = Depends(get_gateway),
    settings: Dict[str, Any] = Depends(get_settings),
):
    """Create a non-admin Gotify user."""
    credential = require_credential(body.username, body.password)

    gotify_cfg = settings["gotify"]
    admin_username = gotify_cfg.get("admin_username")
    admin_password = gotify_cfg.get("admin_password")
    if not admin_username or not admin_password:
        logger.error("Registration attempted but admin credentials are not configured")
        raise GotifyError("Admin credentials not configured on server")

    admin = Credential(username=admin_username, password=admin_password)
    try:
        profile = await gateway.register_user(admin, credential.username, credential.password)
    except Unauthorized as e:
        raise Unauthorized("Invalid admin credentials") from e

    return {
        "success": True,
        "message": "User created successfully",
        "user": profile.model_dump(by_alias=True),
    }


def register_auth_router(app):
    """Register the auth router with the FastAPI app."""
    app.include_router(router)
    logger.debug("Auth router registered")
