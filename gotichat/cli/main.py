"""
CLI entry point for gotichat.

A small terminal front-end over the same session machinery the proxy uses:
log in once, then send, list, delete or follow messages from the shell.

Usage:
    gotichat login alice
    gotichat send "Build" "finished in 42s" --priority 7
    gotichat listen
"""

import argparse
import asyncio
import getpass
import logging
import sys
from typing import List, Optional

from dotenv import load_dotenv

from gotichat import __version__
from gotichat.credentials.session_blob import SessionBlobStore
from gotichat.credentials.store import CredentialStore
from gotichat.gotify.errors import GotifyError
from gotichat.gotify.gateway import MessageGateway, build_gateway
from gotichat.gotify.models import ConnectionState, Message
from gotichat.logging_config import setup_logging
from gotichat.session.controller import SessionController

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2


class NotLoggedIn(Exception):
    """No usable session blob; the user has to run ``gotichat login``."""


def format_message(message: Message) -> str:
    stamp = message.timestamp.strftime("%Y-%m-%d %H:%M:%S")
    return f"[{stamp}] #{message.id} (p{message.priority}) {message.title}: {message.body}"


def _loader():
    from gotichat.config.config_loader import config_loader

    return config_loader


def _blob_store() -> SessionBlobStore:
    session_cfg = _loader().get_session_config()
    return SessionBlobStore(session_cfg["blob_path"], session_cfg["key"])


def _restore_session(gateway: MessageGateway) -> CredentialStore:
    """Rebuild a CredentialStore from the session blob."""
    blob = _blob_store().load()
    if blob is None or blob.credentials is None:
        raise NotLoggedIn()
    store = CredentialStore(gateway.client)
    store.restore(blob.credentials, blob.user)
    return store


def _controller(store: CredentialStore, gateway: MessageGateway) -> SessionController:
    live_cfg = _loader().get_live_config()
    return SessionController(
        store,
        gateway,
        history_limit=int(_loader().get_gateway_config().get("default_list_limit", 50)),
        max_reconnect_attempts=int(live_cfg.get("max_reconnect_attempts", 5)),
        reconnect_base_delay=float(live_cfg.get("reconnect_base_delay", 1.0)),
    )


# ---- commands ----

async def cmd_login(args, gateway: MessageGateway) -> int:
    password = args.password if args.password is not None else getpass.getpass("Password: ")
    store = CredentialStore(gateway.client)
    profile = await store.authenticate(args.username, password)

    blobs = _blob_store()
    blobs.save(profile, store.current())
    print(f"Logged in as {profile.name}{' (admin)' if profile.is_admin else ''}")
    if not blobs.can_persist_credentials:
        print(
            "Warning: GOTICHAT_SESSION_KEY is not set, so the password was not saved. "
            "Other commands will ask you to log in again.",
            file=sys.stderr,
        )
    return EXIT_OK


async def cmd_logout(args, gateway: MessageGateway) -> int:
    _blob_store().clear()
    print("Logged out")
    return EXIT_OK


async def cmd_whoami(args, gateway: MessageGateway) -> int:
    blob = _blob_store().load()
    if blob is None:
        raise NotLoggedIn()
    user = blob.user
    print(f"{user.name} (id={user.id}{', admin' if user.is_admin else ''})")
    return EXIT_OK


async def cmd_send(args, gateway: MessageGateway) -> int:
    controller = _controller(_restore_session(gateway), gateway)
    message = await controller.send_message(args.title, args.body, args.priority)
    if message is None:
        print("Send was cancelled", file=sys.stderr)
        return EXIT_FAILURE
    print(f"Sent message #{message.id}")
    return EXIT_OK


async def cmd_history(args, gateway: MessageGateway) -> int:
    store = _restore_session(gateway)
    messages = await gateway.list_messages(store.current(), args.limit)
    for message in sorted(messages, key=lambda m: m.sort_key):
        print(format_message(message))
    print(f"{len(messages)} message(s)")
    return EXIT_OK


async def cmd_delete(args, gateway: MessageGateway) -> int:
    controller = _controller(_restore_session(gateway), gateway)

    if len(args.ids) == 1:
        await controller.request_delete(args.ids[0])
        print(f"Deleted message #{args.ids[0]}")
        return EXIT_OK

    result = await controller.request_batch_delete(args.ids)
    summary = result.summary()
    print(f"Deleted {summary['successful']} of {summary['total']} message(s)")
    for message_id, reason in sorted(result.failed.items()):
        print(f"  #{message_id}: {reason}", file=sys.stderr)
    return EXIT_OK if not result.failed else EXIT_FAILURE


async def cmd_listen(args, gateway: MessageGateway) -> int:
    controller = _controller(_restore_session(gateway), gateway)

    # Subscribed before start() so a give-up during the first connect is seen.
    updates = controller.subscribe()
    try:
        await controller.start()
        if controller.state is ConnectionState.ERROR:
            print(f"Live updates unavailable: {controller.last_error}", file=sys.stderr)
            return EXIT_FAILURE

        printed = set()
        for message in controller.messages:
            print(format_message(message))
            printed.add(message.id)

        while True:
            update = await updates.get()
            if update.kind == "message":
                if update.payload.id not in printed:
                    print(format_message(update.payload))
                    printed.add(update.payload.id)
            elif update.kind == "state":
                print(f"-- {update.payload.value} --", file=sys.stderr)
            elif update.kind == "gave_up":
                print(f"Connection lost; giving up: {controller.last_error}", file=sys.stderr)
                return EXIT_FAILURE
    finally:
        controller.unsubscribe(updates)
        await controller.stop()


COMMANDS = {
    "login": cmd_login,
    "logout": cmd_logout,
    "whoami": cmd_whoami,
    "send": cmd_send,
    "history": cmd_history,
    "delete": cmd_delete,
    "listen": cmd_listen,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="gotichat", description="Chat-style Gotify client")
    parser.add_argument("--version", action="version", version=f"gotichat {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    login = sub.add_parser("login", help="Log in and remember the session")
    login.add_argument("username")
    login.add_argument("--password", help=argparse.SUPPRESS)

    sub.add_parser("logout", help="Forget the stored session")
    sub.add_parser("whoami", help="Show the logged-in user")

    send = sub.add_parser("send", help="Send a message")
    send.add_argument("title")
    send.add_argument("body")
    send.add_argument("--priority", type=int, default=5, help="Priority 1-10 (default 5)")

    history = sub.add_parser("history", help="List stored messages")
    history.add_argument("--limit", type=int, default=50, help="Maximum messages (1-200)")

    delete = sub.add_parser("delete", help="Delete one or more messages")
    delete.add_argument("ids", type=int, nargs="+", metavar="ID")

    sub.add_parser("listen", help="Print history, then follow live messages")

    serve = sub.add_parser("serve", help="Run the web proxy")
    serve.add_argument("--host", type=str, default=None, help="Host to bind to")
    serve.add_argument("--port", type=int, default=None, help="Port to bind to")
    serve.add_argument("--reload", action="store_true", help="Reload on code changes")

    return parser


async def run_command(args) -> int:
    """Run one client sub-command with a gateway built from config."""
    gateway = build_gateway(_loader())
    try:
        return await COMMANDS[args.command](args, gateway)
    finally:
        await gateway.aclose()


def _serve(args) -> int:
    from gotichat.web.app import start_server

    server_cfg = _loader().get_server_config()
    log_cfg = _loader().get_logging_config()
    setup_logging(level=log_cfg.get("level"), json_format=log_cfg.get("json"))
    start_server(
        host=args.host or server_cfg.get("host", "0.0.0.0"),
        port=args.port or int(server_cfg.get("port", 8000)),
        reload=args.reload,
    )
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point. Returns the process exit code."""
    load_dotenv()
    args = build_parser().parse_args(argv)

    if args.command == "serve":
        return _serve(args)

    setup_logging(level="DEBUG" if args.verbose else "WARNING", json_format=False)

    try:
        return asyncio.run(run_command(args))
    except NotLoggedIn:
        print("Not logged in. Run `gotichat login USERNAME` first.", file=sys.stderr)
        return EXIT_USAGE
    except GotifyError as e:
        logger.debug(f"Command {args.command} failed", exc_info=True)
        print(f"Error: {e.message}", file=sys.stderr)
        return EXIT_FAILURE
    except KeyboardInterrupt:
        print("\nInterrupted by user. Exiting.")
        return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
