from __future__ import annotations

import json
import logging
import sys
from enum import Enum
from pathlib import Path
from typing import Any

LOGGER_NAME = "drover"
_HANDLER_NAME = "drover.stderr"


def _coerce_field(value: Any) -> Any:
    if isinstance(value, BaseException):
        return f"{type(value).__name__}: {value}"
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_coerce_field(item) for item in value]
    if isinstance(value, dict):
        return {str(key): _coerce_field(item) for key, item in value.items()}
    if isinstance(value, Enum):
        return value.name
    return value


def log_event(logger: logging.Logger, level: int, event: str, **fields: Any) -> None:
    """Emit a structured log line: ``event`` plus JSON-encoded fields."""
    if not logger.isEnabledFor(level):
        return
    payload: dict[str, Any] = {"event": event}
    for key, value in fields.items():
        if value is None:
            continue
        payload[key] = _coerce_field(value)
    logger.log(level, json.dumps(payload, default=str))


def verbosity_to_level(*, verbose: bool = False, debug: bool = False) -> int:
    if debug:
        return logging.DEBUG
    if verbose:
        return logging.INFO
    return logging.WARNING


def configure_logging(level: int = logging.WARNING) -> logging.Logger:
    """Attach a single stderr handler to the ``drover`` logger tree.

    A handler left by an earlier call is replaced rather than re-pointed: its
    stream may be a stderr that has since been closed.
    """
    logger = logging.getLogger(LOGGER_NAME)
    for stale in [h for h in logger.handlers if h.get_name() == _HANDLER_NAME]:
        logger.removeHandler(stale)
    handler = logging.StreamHandler(sys.stderr)
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(logging.Formatter("[%(levelname)s] %(name)s: %(message)s"))
    logger.addHandler(handler)
    handler.setLevel(level)
    logger.setLevel(level)
    return logger


__all__ = [
    "LOGGER_NAME",
    "configure_logging",
    "log_event",
    "verbosity_to_level",
]
