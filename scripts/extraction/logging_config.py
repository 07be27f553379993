"""Structured JSON logging configuration.

Every record may carry crawl context (tenant, crawl id, forge, caller) passed
through ``extra``; ``metadata_extra`` builds that mapping from message
metadata so handlers log the same keys.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Optional

CONTEXT_KEYS = (
    "tenant_id",
    "crawl_id",
    "forge",
    "caller",
    "kind",
    "page",
    "entity_type",
    "records",
    "duration_s",
)

TEXT_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def metadata_extra(metadata, **extra: Any) -> dict[str, Any]:
    """Log context for one message or trigger event."""
    return {
        "tenant_id": metadata.tenant_id,
        "crawl_id": metadata.crawl_id,
        "forge": metadata.source_control,
        "caller": metadata.caller,
        **extra,
    }


class JsonFormatter(logging.Formatter):
    """One JSON object per line; crawl context keys are lifted to the top level."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in CONTEXT_KEYS:
            value = getattr(record, key, None)
            if value is not None:
                entry[key] = value
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def configure_logging(level: str = "INFO", fmt: Optional[str] = None) -> None:
    """Attach a single stderr handler to the ``extraction`` logger tree.

    ``fmt`` is ``json`` (default, Lambda and workers) or ``text`` for local
    runs; ``LOG_FORMAT`` is consulted when it is not given.
    """
    fmt = (fmt or os.environ.get("LOG_FORMAT", "json")).lower()
    handler = logging.StreamHandler(sys.stderr)
    if fmt == "text":
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))
    else:
        handler.setFormatter(JsonFormatter())

    tree = logging.getLogger("extraction")
    tree.setLevel(getattr(logging, level.upper(), logging.INFO))
    tree.handlers.clear()
    tree.addHandler(handler)
    tree.propagate = False
