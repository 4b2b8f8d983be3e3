"""Centralized logging setup for the document scanning service.

Provides a structured logging configuration with consistent formatting
across all modules, plus a helper for per-step processing records.
"""

import json
import logging
import sys
from typing import Any


def setup_logging(level: str = "INFO") -> None:
    """Configure the root logger with a standard format.

    Args:
        level: Logging level string (DEBUG, INFO, WARNING, ERROR, CRITICAL).
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    root = logging.getLogger()

    if root.handlers:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    root.addHandler(handler)
    root.setLevel(numeric_level)


def get_logger(name: str) -> logging.Logger:
    """Get a named logger instance.

    Args:
        name: Logger name, typically ``__name__`` of the calling module.

    Returns:
        Configured logger instance.
    """
    return logging.getLogger(name)


def log_processing_step(
    logger: logging.Logger,
    document_id: str,
    step: str,
    message: str,
    **data: Any,
) -> None:
    """Emit a single INFO record describing one document processing step.

    Args:
        logger: Logger to write to.
        document_id: Identifier of the document being processed.
        step: Short upper-case step name, e.g. ``TEXT EXTRACTION``.
        message: Human readable description.
        **data: Extra values serialized as JSON after the message.
    """
    if data:
        payload = json.dumps(data, default=str, sort_keys=True)
        logger.info("[%s] %s: %s %s", document_id, step, message, payload)
    else:
        logger.info("[%s] %s: %s", document_id, step, message)
