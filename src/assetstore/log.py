from __future__ import annotations

import json
import logging
import os
import sys
import time
from typing import Any, Dict, Optional, TextIO


Json = Dict[str, Any]

PACKAGE_LOGGER = "assetstore"

# Field names whose values are credentials and must never reach a log line.
SECRET_FIELDS = frozenset({"key", "access_token", "token", "secret", "authorization", "password"})
REDACTED = "[redacted]"


class _JsonlHandler(logging.StreamHandler):
    """Marker type so configure_logging() can find its own handler again."""


def configure_logging(level: Optional[str] = None, *, stream: Optional[TextIO] = None) -> logging.Logger:
    """Send every assetstore.* event to `stream` (stdout) as one JSON object per line.

    Level comes from `level`, else ASSETSTORE_LOG_LEVEL, else INFO. Calling
    again only adjusts the level.
    """
    name = (level or os.environ.get("ASSETSTORE_LOG_LEVEL") or "INFO").strip().upper()
    lvl = logging.getLevelName(name)
    if not isinstance(lvl, int):
        lvl = logging.INFO

    pkg = logging.getLogger(PACKAGE_LOGGER)
    pkg.setLevel(lvl)
    if not any(isinstance(h, _JsonlHandler) for h in pkg.handlers):
        handler = _JsonlHandler(stream or sys.stdout)
        handler.setFormatter(logging.Formatter("%(message)s"))
        pkg.addHandler(handler)
        pkg.propagate = False
    return pkg


def redact(fields: Json) -> Json:
    return {k: (REDACTED if k.lower() in SECRET_FIELDS and v else v) for k, v in fields.items()}


def log_event(logger: logging.Logger, event: str, *, level: int = logging.INFO, **fields: Any) -> None:
    """Emit a single JSONL event tagged with the emitting component."""
    if not logger.isEnabledFor(level):
        return
    payload: Json = {
        "ts_ms": int(time.time() * 1000),
        "component": logger.name.rsplit(".", 1)[-1],
        "event": str(event),
    }
    payload.update(redact(fields))
    logger.log(level, json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str))
