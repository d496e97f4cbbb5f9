from __future__ import annotations

import json
import logging
import sys
from typing import Any, Dict, Optional

LOGGER_NAME = "fo_bridge"

STRUCTURED_FIELDS = ("tool", "entity", "status", "duration_ms")


class StructuredFormatter(logging.Formatter):
    """One JSON object per line; structured `extra` fields default to ""."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "ts": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
        }
        for name in STRUCTURED_FIELDS:
            entry[name] = getattr(record, name, "")
        entry["msg"] = record.getMessage()
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


def setup_logger(config: Optional[Dict[str, Any]] = None) -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    if logger.handlers:
        return logger
    server_cfg = (config or {}).get("server", {}) or {}
    level_name = str(server_cfg.get("log_level", "INFO")).upper()
    logger.setLevel(getattr(logging, level_name, logging.INFO))

    # stdout belongs to the stdio protocol transport
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(StructuredFormatter())
    logger.addHandler(handler)
    logger.propagate = False
    return logger
