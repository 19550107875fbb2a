import logging
import os
import sys
from typing import Any, Optional

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _resolve_level(level: Optional[int]) -> int:
    if level is not None:
        return level
    name = os.getenv("LOG_LEVEL", "INFO").upper()
    return getattr(logging, name, logging.INFO)


def setup_enhanced_logging(name: Optional[str] = None, level: Optional[int] = None) -> logging.Logger:
    """
    Setup logging for a compressor component.

    All component loggers live under the ``compressor`` namespace and share a
    single stdout handler installed on that parent logger.

    Args:
        name: Logger name (defaults to the ``compressor`` parent logger)
        level: Logging level (default: LOG_LEVEL env var, else INFO)

    Returns:
        Configured logger instance
    """
    parent = logging.getLogger("compressor")

    if not parent.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        parent.addHandler(handler)
        parent.setLevel(_resolve_level(level))
        parent.propagate = False
    elif level is not None:
        parent.setLevel(level)

    if not name or name == "compressor":
        return parent
    if not name.startswith("compressor."):
        name = f"compressor.{name.rsplit('.', 1)[-1]}"
    return logging.getLogger(name)


def log_with_context(logger: logging.Logger, level: str, message: str, **context: Any) -> None:
    """
    Log a message with additional context information.

    Args:
        logger: Logger instance to use
        level: Log level as string ('debug', 'info', 'warning', 'error', 'critical')
        message: Log message
        **context: Key-value pairs appended as ``[k=v, ...]``; None values are dropped.
            ``exc_info`` is passed through to the logging call.
    """
    exc_info = context.pop("exc_info", None)

    context_str = ""
    context_parts = [f"{k}={v}" for k, v in context.items() if v is not None]
    if context_parts:
        context_str = f" [{', '.join(context_parts)}]"

    log_method = getattr(logger, level.lower(), logger.info)
    log_method(f"{message}{context_str}", exc_info=exc_info)
