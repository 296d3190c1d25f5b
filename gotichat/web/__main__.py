"""
Command-line entry point for the gotichat proxy.

Usage:
    python -m gotichat.web [--host HOST] [--port PORT] [--reload]
"""

import argparse

from dotenv import load_dotenv

from gotichat.logging_config import setup_logging


def main():
    """Parse arguments and start the web server."""
    load_dotenv()

    from gotichat.config.config_loader import config_loader

    server_cfg = config_loader.get_server_config()
    log_cfg = config_loader.get_logging_config()
    setup_logging(level=log_cfg.get("level"), json_format=log_cfg.get("json"))

    parser = argparse.ArgumentParser(description="Start the gotichat Gotify proxy")
    parser.add_argument("--host", type=str, default=server_cfg.get("host", "0.0.0.0"), help="Host to bind to")
    parser.add_argument("--port", type=int, default=server_cfg.get("port", 8000), help="Port to bind to")
    parser.add_argument("--reload", action="store_true", help="Reload on code changes")

    args = parser.parse_args()

    # Imported late so .env is loaded before the app reads its config.
    from gotichat.web.app import start_server

    start_server(host=args.host, port=args.port, reload=args.reload)


if __name__ == "__main__":
    main()
