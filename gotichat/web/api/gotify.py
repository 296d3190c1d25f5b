"""
Gotify proxy endpoints: clients, message send/delete, listing and batch delete.

Every endpoint takes the caller's Gotify username/password (query string or
JSON body) and forwards the operation through the shared MessageGateway.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from gotichat.gotify.errors import InvalidArgument
from gotichat.gotify.gateway import MessageGateway
from gotichat.web.api.dependencies import get_gateway, get_settings, require_credential

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/gotify", tags=["gotify"])


class CreateClientBody(BaseModel):
    name: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None


class SendMessageBody(BaseModel):
    title: Optional[str] = None
    message: Optional[str] = None
    priority: Optional[int] = None
    requestId: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None


class BatchDeleteBody(BaseModel):
    messageIds: Optional[List[int]] = None
    username: Optional[str] = None
    password: Optional[str] = None


# ---- clients ----

@router.get("/client")
async def list_clients(
    username: Optional[str] = Query(None),
    password: Optional[str] = Query(None),
    gateway: MessageGateway = Depends(get_gateway),
):
    """List the caller's Gotify clients (stream tokens)."""
    credential = require_credential(username, password)
    clients = await gateway.list_clients(credential)
    return [client.model_dump() for client in clients]


@router.post("/client")
async def create_client(
    body: CreateClientBody,
    gateway: MessageGateway = Depends(get_gateway),
):
    """Create a Gotify client for the caller."""
    credential = require_credential(body.username, body.password)
    client = await gateway.create_client(credential, body.name)
    return client.model_dump()


# ---- messages ----

@router.post("/message")
async def send_message(
    body: SendMessageBody,
    gateway: MessageGateway = Depends(get_gateway),
):
    """
    Send a message through the caller's web application.

    ``requestId`` is an idempotency key: a repeat within the dedup window is
    answered with 409 and never reaches Gotify.
    """
    if not body.title or not body.message:
        raise InvalidArgument("Title and message are required")
    credential = require_credential(body.username, body.password)

    priority = 5 if body.priority is None else body.priority
    message = await gateway.send_message(
        credential,
        body.title,
        body.message,
        priority,
        idempotency_key=body.requestId,
    )
    return message.to_wire()


@router.delete("/message")
async def delete_message(
    id: Optional[int] = Query(None),
    username: Optional[str] = Query(None),
    password: Optional[str] = Query(None),
    gateway: MessageGateway = Depends(get_gateway),
):
    """Delete one message by id."""
    if id is None:
        raise InvalidArgument("Message ID is required")
    credential = require_credential(username, password)

    await gateway.delete_message(credential, id)
    return {"success": True, "messageId": id}


@router.delete("/messages/batch")
async def batch_delete_messages(
    body: BatchDeleteBody,
    gateway: MessageGateway = Depends(get_gateway),
):
    """Delete several messages concurrently, reporting per-id failures."""
    if not body.messageIds:
        raise InvalidArgument("Message IDs array is required")
    credential = require_credential(body.username, body.password)

    result = await gateway.batch_delete(credential, body.messageIds)
    return result.to_response()


@router.get("/messages")
async def list_messages(
    username: Optional[str] = Query(None),
    password: Optional[str] = Query(None),
    limit: Optional[int] = Query(None),
    gateway: MessageGateway = Depends(get_gateway),
    settings: Dict[str, Any] = Depends(get_settings),
):
    """List the caller's messages as ``{messages, total}``."""
    credential = require_credential(username, password)
    if limit is None:
        limit = int(settings["gateway"].get("default_list_limit", 50))

    messages = await gateway.list_messages(credential, limit)
    return {
        "messages": [message.to_wire() for message in messages],
        "total": len(messages),
    }


def register_gotify_router(app):
    """Register the Gotify proxy router with the FastAPI app."""
    app.include_router(router)
    logger.debug("Gotify router registered")
