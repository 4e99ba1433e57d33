"""structlog configuration for the auth service.

Modules log with ``structlog.get_logger(__name__)`` and event-style messages
(``logger.info("tokens_issued", user_id=...)``). ``configure_logging`` is
called once by the application factory.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Final

import structlog

_SECRET_KEYS: Final[frozenset[str]] = frozenset(
    {"token", "access_token", "refresh_token", "password", "secret", "authorization", "auth_code"}
)


def _redact_secrets(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Processor that drops raw credentials from log entries."""
    for key in list(event_dict):
        if key.lower() in _SECRET_KEYS:
            event_dict[key] = "[redacted]"
    return event_dict


def configure_logging(level: str | None = None, json_output: bool | None = None) -> None:
    """Configure structlog processors and output format.

    Args:
        level: Minimum level name. Defaults to ``LOG_LEVEL`` or INFO.
        json_output: JSON lines if True, colored console output otherwise.
            Defaults to ``LOG_JSON`` (true).
    """
    if level is None:
        level = os.getenv("LOG_LEVEL", "INFO")
    if json_output is None:
        json_output = os.getenv("LOG_JSON", "true").lower() in {"1", "true", "yes", "on"}

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        _redact_secrets,
        structlog.processors.StackInfoRenderer(),
    ]

    if json_output:
        renderer: list[Any] = [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        renderer = [structlog.dev.ConsoleRenderer(colors=True)]

    structlog.configure(
        processors=shared_processors + renderer,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
