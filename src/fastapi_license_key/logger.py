"""Structured logging for the license key service.

Service and application events are emitted through structlog on top of the
standard ``logging`` module, so uvicorn and SQLAlchemy records share the
same output. Logs go to stderr by default, leaving stdout to the CLI.
"""

import logging
import sys
from typing import Any, List, Optional, TextIO

import structlog

# Third-party loggers that only report at WARNING and above.
QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "aiosqlite")


def _renderer(json_logs: bool) -> Any:
    if json_logs:
        return structlog.processors.JSONRenderer(sort_keys=True)
    return structlog.dev.ConsoleRenderer(colors=False)


def configure_logging(log_level: str = "INFO", json_logs: bool = True, stream: Optional[TextIO] = None) -> None:
    """Route structlog and stdlib records to a single handler.

    Args:
        log_level: Name of the root level; unknown names fall back to INFO.
        json_logs: One JSON object per line when true, plain key=value otherwise.
        stream: Output stream, stderr when omitted.
    """
    pre_chain: List[Any] = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]

    structlog.configure(
        processors=[
            *pre_chain,
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _renderer(json_logs),
            ],
        )
    )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: Optional[str] = None) -> Any:
    return structlog.get_logger(name)
