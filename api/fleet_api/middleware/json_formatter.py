"""Single-line JSON logging, enabled with ``FLEET_API_STRUCTURED_LOGGING=true``.

Each line carries ``timestamp``, ``level``, ``logger`` and ``message``, plus
whichever context the caller attached with ``extra=``:

* ``request``: the access-log payload from :class:`RequestLoggingMiddleware`.
* ``instance``, ``build_id``: set by the build pipeline.
* ``profile``: set by the cutover controller.

Tracebacks are rendered into ``exc_info`` as one string.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import Any

_CONTEXT_FIELDS = ("request", "instance", "build_id", "profile")


class JSONFormatter(logging.Formatter):
    """Render a :class:`logging.LogRecord` as one JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(
            (field, getattr(record, field))
            for field in _CONTEXT_FIELDS
            if getattr(record, field, None) is not None
        )
        if record.exc_info and record.exc_info[0] is not None:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str, ensure_ascii=False)


def install_json_logging(level: int = logging.INFO) -> None:
    """Route every logger through a single JSON handler on stderr."""
    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter())
    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level)
