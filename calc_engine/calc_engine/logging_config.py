"""Logging setup for processes that embed the engine.

Library modules only ever call ``logging.getLogger(__name__)``; handlers
are installed by the host process through :func:`configure_logging`.
With ``structured_logging`` enabled every record is emitted as a single
JSON line::

    {"timestamp": "...", "level": "INFO", "logger": "calc_engine.engine.propagation",
     "message": "Recalculation complete: 6 evaluated, 2 updated, 0 failed"}
"""

from __future__ import annotations

import json
import logging
import traceback
from datetime import UTC, datetime
from typing import Any

from calc_engine.config import Settings

_TEXT_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


class JSONFormatter(logging.Formatter):
    """Format log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        module_id = getattr(record, "module_id", None)
        if module_id is not None:
            payload["module_id"] = module_id

        if record.exc_info and record.exc_info[0] is not None:
            payload["exc_info"] = "".join(traceback.format_exception(*record.exc_info))

        return json.dumps(payload, default=str, ensure_ascii=False)


def configure_logging(settings: Settings, *, stream: Any = None) -> logging.Handler:
    """Install a single handler on the ``calc_engine`` logger.

    Repeated calls replace the previously installed handler, so the CLI can
    reconfigure per invocation.

    Returns
    -------
    logging.Handler
        The handler that was installed.
    """
    engine_logger = logging.getLogger("calc_engine")
    for existing in list(engine_logger.handlers):
        if getattr(existing, "_calc_engine_handler", False):
            engine_logger.removeHandler(existing)

    handler = logging.StreamHandler(stream)
    if settings.structured_logging:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(_TEXT_FORMAT))
    handler._calc_engine_handler = True  # type: ignore[attr-defined]

    engine_logger.addHandler(handler)
    engine_logger.setLevel("DEBUG" if settings.debug else settings.log_level)
    return handler
