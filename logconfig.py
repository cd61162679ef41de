"""
logconfig.py
Logging setup (plain text for development, JSON lines when configured).
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from config import AppConfig


class JsonLogFormatter(logging.Formatter):
    """Format log records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        for attr in ("user", "organization_id", "component"):
            if hasattr(record, attr):
                payload[attr] = getattr(record, attr)
        return json.dumps(payload, ensure_ascii=False)


def configure_logging(config: AppConfig, *, log_level: str | None = None) -> None:
    """Install a single stdout handler on the root logger.

    Streamlit re-runs the script on every interaction, so a second call is a
    no-op.
    """

    root_logger = logging.getLogger()
    if any(getattr(h, "_donordesk", False) for h in root_logger.handlers):
        return

    level_name = log_level or config.log_level
    level = getattr(logging, level_name.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler._donordesk = True  # type: ignore[attr-defined]
    if config.log_json:
        handler.setFormatter(JsonLogFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))

    root_logger.setLevel(level)
    root_logger.addHandler(handler)

    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("openpyxl").setLevel(logging.WARNING)
