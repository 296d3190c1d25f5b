"""
Centralized logging configuration for gotichat.

Call ``setup_logging()`` once from each entry point (web/__main__.py,
cli/main.py).  Every other module should just do::

    import logging
    logger = logging.getLogger(__name__)

No module besides an entry point should call ``logging.basicConfig()``.
Passwords and tokens are never passed to a logger; usernames are fine.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Optional

PLAIN_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Libraries that log every frame/request at INFO or DEBUG.
_NOISY_LOGGERS = ("httpx", "httpcore", "websockets")


class _JSONFormatter(logging.Formatter):
    """Emit each log record as a single JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc)
            .isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info and record.exc_info[0] is not None:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def setup_logging(
    *, level: Optional[str] = None, json_format: Optional[bool] = None
) -> None:
    """Configure the root logger with a single handler on *stdout*.

    Parameters
    ----------
    level:
        Log level name (DEBUG, INFO, WARNING, ...).
        Falls back to the ``LOG_LEVEL`` env-var, then ``INFO``.
    json_format:
        Emit JSON lines instead of the plain text format.  Falls back to the
        ``LOG_JSON`` env-var, then ``True``.
    """
    resolved_level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    use_json = _env_flag("LOG_JSON", True) if json_format is None else json_format

    root = logging.getLogger()
    # Avoid adding duplicate handlers if called more than once.
    if any(getattr(h, "_gotichat_handler", False) for h in root.handlers):
        root.setLevel(resolved_level)
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(_JSONFormatter() if use_json else logging.Formatter(PLAIN_FORMAT))
    handler._gotichat_handler = True  # type: ignore[attr-defined]

    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(resolved_level)

    if resolved_level != "DEBUG":
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
