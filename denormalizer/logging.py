"""Logging setup for the worker process.

Log records are written to stderr. Records emitted while a change event is
being handled are enriched with the stream, event and delivery identifiers of
the current ChangeContext. Document contents are never logged.
"""

import logging
import sys

from .context import get_context

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s%(change_context)s"


class ChangeContextFilter(logging.Filter):
    """Attach the current ChangeContext to every record passing through."""

    def filter(self, record: logging.LogRecord) -> bool:
        ctx = get_context()
        parts = []
        if ctx.stream_id is not None:
            parts.append(f"stream={ctx.stream_id}")
        if ctx.event_id is not None:
            parts.append(f"event={ctx.event_id}")
        if ctx.delivery_id is not None:
            parts.append(f"delivery={ctx.delivery_id}")
        record.change_context = f" [{' '.join(parts)}]" if parts else ""
        return True


def configure_logging(level: str = "INFO") -> None:
    """Install the worker's stderr handler on the root logger.

    Args:
        level: Name of the log level (e.g. "INFO", "DEBUG").
            Case-insensitive.

    Raises:
        ValueError: If the level name is unknown.
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        raise ValueError(f"Unknown log level: {level}")

    handler = logging.StreamHandler(sys.stderr)
    handler.addFilter(ChangeContextFilter())
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(numeric_level)
