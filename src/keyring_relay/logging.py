"""Structured logging setup for keyring-relay."""
from __future__ import annotations

import logging
import sys
from typing import Dict, TextIO

import structlog

from .keyring.secret import NAME_LEN

_DEFAULT_LEVEL = "info"

_LEVELS: Dict[str, int] = {
    "critical": logging.CRITICAL,
    "error": logging.ERROR,
    "warning": logging.WARNING,
    "warn": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}


def configure_logging(level: str | None = None, *, stream: TextIO | None = None) -> None:
    """Configure structlog for the relay.

    Every record is one JSON line carrying ``ts``, ``level``, ``component`` and
    ``msg`` plus the caller's context. Byte values are never rendered as-is:
    they are reduced to the hex of their first 16 bytes, the key name, so a
    stray key entry in a log call cannot leak key material.
    """

    numeric_level = level_from_str(level or _DEFAULT_LEVEL)

    logging.basicConfig(
        level=numeric_level,
        handlers=[logging.StreamHandler(stream or sys.stdout)],
        format="%(message)s",
        force=True,
    )

    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso", key="ts"),
            structlog.stdlib.add_log_level,
            _component_processor,
            _rename_event_to_msg,
            redact_key_material,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        cache_logger_on_first_use=True,
    )


def redact_key_material(
    _logger: object, _name: str, event_dict: dict[str, object]
) -> dict[str, object]:
    for key, value in event_dict.items():
        if isinstance(value, (bytes, bytearray, memoryview)):
            event_dict[key] = bytes(value[:NAME_LEN]).hex()
    return event_dict


def _component_processor(
    logger: structlog.BoundLoggerBase, _name: str, event_dict: dict[str, object]
) -> dict[str, object]:
    if event_dict.get("component") is None:
        event_dict["component"] = getattr(logger, "name", None) or "keyring_relay"
    return event_dict


def _rename_event_to_msg(
    _logger: structlog.BoundLoggerBase, _name: str, event_dict: dict[str, object]
) -> dict[str, object]:
    if "msg" not in event_dict:
        event_dict["msg"] = event_dict.pop("event", "")
    return event_dict


def level_from_str(level: str) -> int:
    return _LEVELS.get(level.lower(), logging.INFO)


__all__ = ["configure_logging", "level_from_str", "redact_key_material"]
