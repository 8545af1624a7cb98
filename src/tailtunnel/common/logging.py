"""Structured logging for the tunnel service, built on structlog."""

import logging
import sys

import structlog
from structlog.typing import Processor

# uvicorn installs its own handlers on these; they are routed through the root handler instead
_SERVER_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")

_FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(
    level: str = "INFO",
    json_format: bool = False,
    log_file: str | None = None,
) -> None:
    """Configure stdlib logging and the structlog processor chain.

    Events carry any context bound with ``bind_request_context`` (the HTTP
    middleware binds a request id) in addition to their own key/value pairs.

    Args:
        level: Logging level name, case-insensitive
        json_format: Render events as JSON lines instead of console output
        log_file: Optional file that receives a copy of every record
    """
    log_level = logging.getLevelName(level.upper())
    if not isinstance(log_level, int):
        raise ValueError(f"Unknown log level: {level}")

    root_logger = logging.getLogger()
    root_logger.handlers = []
    root_logger.setLevel(log_level)
    root_logger.addHandler(_handler(logging.StreamHandler(sys.stdout), log_level, "%(message)s"))
    if log_file:
        root_logger.addHandler(_handler(logging.FileHandler(log_file), log_level, _FILE_FORMAT))

    for name in _SERVER_LOGGERS:
        server_logger = logging.getLogger(name)
        server_logger.handlers = []
        server_logger.propagate = True

    structlog.configure(
        processors=_processors(json_format),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def _handler(handler: logging.Handler, level: int, fmt: str) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt))
    return handler


def _processors(json_format: bool) -> list[Processor]:
    renderer: Processor = (
        structlog.processors.JSONRenderer()
        if json_format
        else structlog.dev.ConsoleRenderer()
    )
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        renderer,
    ]


def bind_request_context(**values: object) -> None:
    """Replace the per-request context merged into every event."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(**values)


def clear_request_context() -> None:
    structlog.contextvars.clear_contextvars()


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structlog logger named after the calling module."""
    return structlog.get_logger(name)  # type: ignore[no-any-return]
