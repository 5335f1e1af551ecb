"""
Structured logging for the verifier: one JSON line per event on stdout.

Every module logs through get_logger(__name__) with a snake_case event name and
keyword context (wallet_id, contract_id, identity_id, cycle, ...). Third-party
stdlib loggers (uvicorn, httpx) are routed through the same renderer so the
process emits a single format. httpx per-request INFO lines are raised to WARNING.

LOG_LEVEL (default INFO) and LOG_FORMAT (json | console) are read at import.
No backend_chaingate imports here; everything else imports this module.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Any

import structlog

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_LEVEL_VALUE = getattr(logging, LOG_LEVEL, logging.INFO)
LOG_FORMAT = os.getenv("LOG_FORMAT", "json").strip().lower()

NOISY_LOGGERS = ("httpx", "httpcore")

_stdlib_handler: logging.Handler | None = None


def _normalize_event(
    logger: Any,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """structlog 'event' becomes event_type; message mirrors it unless given."""
    if "event" in event_dict and "event_type" not in event_dict:
        event_dict["event_type"] = event_dict.pop("event")
    event_dict.setdefault("message", str(event_dict.get("event_type", "")))
    return event_dict


def _renderer(fmt: str) -> Any:
    if fmt == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())


def configure_structlog(level: int = LOG_LEVEL_VALUE, fmt: str = LOG_FORMAT) -> None:
    """Configure structlog and attach a matching handler to the stdlib root logger."""
    global _stdlib_handler

    timestamper = structlog.processors.TimeStamper(fmt="iso", utc=True, key="timestamp")
    renderer = _renderer(fmt)
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            timestamper,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            _normalize_event,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=[
                structlog.stdlib.add_logger_name,
                structlog.processors.add_log_level,
                timestamper,
            ],
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _normalize_event,
                renderer,
            ],
        )
    )
    root = logging.getLogger()
    if _stdlib_handler is not None:
        root.removeHandler(_stdlib_handler)
    root.addHandler(handler)
    root.setLevel(level)
    _stdlib_handler = handler
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


if not structlog.is_configured():
    configure_structlog()


def get_logger(name: str) -> structlog.BoundLogger:
    """
    Return a structured logger for the given module name.

        logger = get_logger(__name__)
        logger.info("auto_verify_user_verified", wallet_id=wallet, contract_id="contract1")

    Output (JSON): {"event_type": "auto_verify_user_verified", "wallet_id": "0x...",
    "contract_id": "contract1", "timestamp": "...", "level": "info", "logger": "module.name"}
    """
    return structlog.get_logger(name).bind(logger=name)


def bind_wallet(wallet_id: str, **context: Any) -> structlog.BoundLogger:
    """Logger with wallet_id (plus e.g. identity_id, contract_id) bound to every call."""
    return get_logger("backend_chaingate").bind(wallet_id=wallet_id, **context)
