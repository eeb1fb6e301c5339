#!/usr/bin/env python3
"""
Centralized logging configuration for the head-end console backend.

Every module obtains its logger through setup_logging(__name__) so that the
DEBUG_MODE environment variable controls verbosity in one place.

The operator frontend polls health, service status and analysis every few
seconds; successful werkzeug access lines for those endpoints are dropped so
that service control and configuration activity stays readable.
"""

import logging
import os
import re
import sys
import time
from typing import Optional

# Endpoints the frontend polls continuously
POLLED_PATHS = ('/api/health', '/api/services/status', '/api/analyze', '/api/channels')

# werkzeug access line: 127.0.0.1 - - [date] "GET /api/health HTTP/1.1" 200 -
ACCESS_LINE = re.compile(r'"([A-Z]+) (\S+) HTTP/[\d.]+" (\d{3})')

# Unit states that deserve operator attention after a control action
ALARM_STATES = ('error', 'not_found', 'stopped')

LOG_FORMAT = '%(asctime)s - %(levelname)s - [%(name)s:%(funcName)s:%(lineno)d] - %(message)s'


class PollingAccessFilter(logging.Filter):
    """Drop successful access-log lines of polled GET endpoints."""

    def filter(self, record):
        match = ACCESS_LINE.search(record.getMessage())
        if not match:
            return True
        method, path, status = match.groups()
        if method != 'GET' or int(status) >= 400:
            return True
        return not path.split('?', 1)[0].startswith(POLLED_PATHS)


def is_debug_mode() -> bool:
    """Return True when DEBUG_MODE is set to a truthy value."""
    return os.getenv('DEBUG_MODE', 'false').lower() in ('true', '1', 'yes', 'on')


def setup_logging(module_name: Optional[str] = None) -> logging.Logger:
    """
    Configure logging with DEBUG_MODE support.

    Args:
        module_name: Name of the module for the logger. If None, returns root logger.

    Returns:
        logging.Logger: Configured logger instance.
    """
    log_level = logging.DEBUG if is_debug_mode() else logging.INFO

    if not logging.root.handlers:
        logging.basicConfig(level=log_level, format=LOG_FORMAT, datefmt='%Y-%m-%d %H:%M:%S', stream=sys.stdout)
        for handler in logging.root.handlers:
            handler.addFilter(PollingAccessFilter())
    else:
        logging.root.setLevel(log_level)

    logger = logging.getLogger(module_name) if module_name else logging.root
    logger.setLevel(log_level)
    return logger


def log_call(logger: logging.Logger, operation: str, **params):
    """Log an operation with its non-empty parameters (only in debug mode)."""
    if logger.isEnabledFor(logging.DEBUG):
        args = ', '.join(f"{k}={v}" for k, v in params.items() if v is not None)
        logger.debug(f"→ {operation}({args})")


def log_elapsed(logger: logging.Logger, operation: str, started: float, detail: str = ""):
    """
    Log how long an operation took (only in debug mode).

    Args:
        logger: Logger instance to use
        operation: Name of the finished operation
        started: time.monotonic() value taken when the operation began
        detail: Short summary of the outcome
    """
    if logger.isEnabledFor(logging.DEBUG):
        msg = f"← {operation} ({time.monotonic() - started:.3f}s)"
        if detail:
            msg += f": {detail}"
        logger.debug(msg)


def log_unit_transition(logger: logging.Logger, unit: str, action: str, status: str):
    """Log the state a unit reached after a control action."""
    if status in ALARM_STATES and action != 'stop':
        logger.warning(f"⚠ {action} {unit} → {status}")
    else:
        logger.info(f"✓ {action} {unit} → {status}")


def log_exception(logger: logging.Logger, exc: Exception, context: str = ""):
    """Log an exception with context, with a stack trace in debug mode."""
    msg = f"Exception in {context}: {type(exc).__name__}: {exc}" if context else f"{type(exc).__name__}: {exc}"
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(msg, exc_info=True)
    else:
        logger.error(msg)
