"""Structured logging for the payout ledger.

Every module logs through ``logging.getLogger(__name__)``, so all ledger
loggers sit under the ``payout_ledger`` namespace. configure_logging()
attaches one handler to that namespace; by default it writes one JSON
object per line with the record's ``extra`` fields merged in.
"""

from __future__ import annotations

import json
import logging
import sys
import threading
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional, Union

__all__ = [
    "LOGGER_NAMESPACE",
    "StructuredFormatter",
    "configure_logging",
    "reset_logging",
]

LOGGER_NAMESPACE = "payout_ledger"

_STDLIB_KEYS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "taskName"}

_PLAIN_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _json_default(obj: Any) -> Any:
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, Decimal):
        return str(obj)
    return str(obj)


class StructuredFormatter(logging.Formatter):
    """Formats each log record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key, val in vars(record).items():
            if key not in _STDLIB_KEYS and key not in payload:
                payload[key] = val

        if record.exc_info and record.exc_info[1] is not None:
            exc = record.exc_info[1]
            payload["exc_type"] = type(exc).__name__
            payload["exc_message"] = str(exc)
            if hasattr(exc, "code"):
                payload["exc_code"] = exc.code
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_json_default, sort_keys=True)


_configured = False
_handler: Optional[logging.Handler] = None
_lock = threading.Lock()


def configure_logging(
    level: Union[int, str] = logging.INFO,
    stream: Any = None,
    json_format: bool = True,
) -> logging.Logger:
    """Configure the payout_ledger logger hierarchy (idempotent).

    A second call only adjusts the level; the handler installed by the
    first call stays in place.
    """
    global _configured, _handler
    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        if not isinstance(resolved, int):
            raise ValueError(f"Unknown log level: {level}")
        level = resolved

    root_logger = logging.getLogger(LOGGER_NAMESPACE)
    with _lock:
        root_logger.setLevel(level)
        if _configured:
            return root_logger
        _configured = True

        handler = logging.StreamHandler(stream or sys.stderr)
        if json_format:
            handler.setFormatter(StructuredFormatter())
        else:
            handler.setFormatter(logging.Formatter(_PLAIN_FORMAT))
        root_logger.addHandler(handler)
        root_logger.propagate = False
        _handler = handler
    return root_logger


def reset_logging() -> None:
    """Remove the installed handler. For tests."""
    global _configured, _handler
    with _lock:
        root_logger = logging.getLogger(LOGGER_NAMESPACE)
        if _handler is not None:
            root_logger.removeHandler(_handler)
        _handler = None
        _configured = False
        root_logger.setLevel(logging.NOTSET)
        root_logger.propagate = True
