"""Root logger setup.

Environment variables:
    LOG_FORMAT  - "json" for JSON lines, "text" for human-readable (default: "text")
    LOG_LEVEL   - root log level name (default: "INFO")
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone


class _JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1] is not None:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def configure_logging(level: str | None = None, fmt: str | None = None) -> None:
    """Configures the root logger from arguments or LOG_LEVEL / LOG_FORMAT."""
    fmt = (fmt or os.getenv("LOG_FORMAT", "text")).strip().lower()
    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).strip().upper()

    root = logging.getLogger()
    root.setLevel(getattr(logging, level_name, logging.INFO))

    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    if fmt == "json":
        handler.setFormatter(_JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)-7s [%(name)s] %(message)s"))
    root.addHandler(handler)
