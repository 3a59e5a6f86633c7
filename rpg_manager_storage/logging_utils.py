"""
Logging setup for the CLI and for sync runs.

Every record written during one save or load carries the same ``operation``
and ``sync_id`` (see :class:`SyncLoggerAdapter`), and the final record of a
run carries its ``status``. Plain output shows that context as a
``[save 1a2b3c4d]`` prefix; JSON output promotes it to top-level fields so
one run can be picked out of an interleaved log.
"""

from __future__ import annotations

import json
import logging
import sys
import uuid
from datetime import UTC, datetime
from typing import Any, TextIO

PACKAGE_LOGGER = "rpg_manager_storage"

# Record attributes that describe a sync run, in output order
SYNC_CONTEXT_FIELDS = ("operation", "sync_id", "status")

PLAIN_FORMAT = "%(levelname)s  %(name)s  %(sync_prefix)s%(message)s"


def sync_context(record: logging.LogRecord) -> dict[str, Any]:
    """Return the sync context fields set on a record."""
    return {
        name: getattr(record, name)
        for name in SYNC_CONTEXT_FIELDS
        if getattr(record, name, None) is not None
    }


class SyncContextFilter(logging.Filter):
    """Sets ``record.sync_prefix`` for the plain text format."""

    def filter(self, record: logging.LogRecord) -> bool:
        context = sync_context(record)
        if "operation" in context:
            record.sync_prefix = "[" + " ".join(str(v) for v in context.values()) + "] "
        else:
            record.sync_prefix = ""
        return True


class SyncJsonFormatter(logging.Formatter):
    """One JSON object per line with the sync context as top-level fields."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            **sync_context(record),
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


def configure_logging(
    level: int = logging.WARNING,
    json_output: bool = False,
    stream: TextIO | None = None,
) -> logging.Logger:
    """
    Route this package's logs to a single stream handler.

    Args:
        level: Level for the package logger
        json_output: Write SyncJsonFormatter lines instead of plain text
        stream: Output stream (default: stderr)

    Returns:
        The configured package logger
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.addFilter(SyncContextFilter())
    handler.setFormatter(SyncJsonFormatter() if json_output else logging.Formatter(PLAIN_FORMAT))

    logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False
    return logger


class SyncLoggerAdapter(logging.LoggerAdapter):
    """Tags every record of one save/load with its operation and sync id."""

    def __init__(self, logger: logging.Logger, operation: str, sync_id: str | None = None):
        context = {"operation": operation, "sync_id": sync_id or uuid.uuid4().hex[:8]}
        super().__init__(logger, context)

    @property
    def sync_id(self) -> str:
        return self.extra["sync_id"]

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        # Call-site extras such as ``status`` are kept; the run context wins
        kwargs["extra"] = {**kwargs.get("extra", {}), **self.extra}
        return msg, kwargs
