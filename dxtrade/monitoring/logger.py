"""
Structured logging setup for the DXtrade client.

Library code only calls get_logger(); applications (and the CLI) call
setup_logging() once. Output goes to stderr so command output on stdout
stays machine-readable, and session secrets (password, cookies, CSRF token)
are masked before rendering.
"""
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import structlog

REDACTED = "***"

_SECRET_KEYS = frozenset({"password", "cookie", "cookies", "csrf", "x-csrf-token"})

# Per-frame chatter from the websocket library; stream frames are logged by
# the DebugFilter instead.
_NOISY_LOGGERS = ("websockets", "aiohttp.access")


def redact_secrets(_logger: Any, _method: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """structlog processor masking values bound under a secret key."""
    for key in list(event_dict):
        if key.lower() in _SECRET_KEYS and event_dict[key]:
            event_dict[key] = REDACTED
    return event_dict


def setup_logging(log_level: str = "INFO", log_format: str = "console", log_file: Optional[str] = None) -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG/INFO/WARNING/ERROR/CRITICAL)
        log_format: Format (json or console)
        log_file: Optional log file path (rotating, 10MB x 5)
    """
    level = getattr(logging, log_level.upper())

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=level,
    )
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.INFO))

    processors = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.contextvars.merge_contextvars,
        redact_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    if log_file:
        from logging.handlers import RotatingFileHandler

        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter("%(message)s"))
        logging.root.addHandler(file_handler)

        get_logger(__name__).info("Logging initialized", log_file=str(log_file), log_level=log_level)


def get_logger(name: str) -> structlog.BoundLogger:
    return structlog.get_logger(name)
