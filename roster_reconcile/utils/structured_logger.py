"""
Structured logging for the reconciliation services.

Log lines carry a message plus an optional JSON context and error summary:
``2024-05-01 10:00:00 | INFO     | roster_reconcile.matching | Sheet matched | Context: {...}``
"""

import json
import logging
import sys
from typing import Any, Dict, Optional

LOG_FORMAT = '%(asctime)s | %(levelname)-8s | %(name)s | %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def configure_logging(level: int = logging.INFO) -> None:
    """Attach a console handler to the package root logger once."""
    root = logging.getLogger("roster_reconcile")
    root.setLevel(level)
    if not root.handlers:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
        root.addHandler(console_handler)


class StructuredLogger:
    """Thin wrapper that renders a context dict next to every message."""

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    def _log(self, level: int, message: str, context: Optional[Dict[str, Any]] = None,
             error: Optional[Exception] = None, exc_info: bool = False):
        context_str = f" | Context: {json.dumps(context, ensure_ascii=False, default=str)}" if context else ""
        error_str = f" | Error: {type(error).__name__}: {str(error)}" if error else ""
        self.logger.log(level, f"{message}{context_str}{error_str}", exc_info=exc_info)

    def debug(self, message: str, context: Optional[Dict[str, Any]] = None):
        self._log(logging.DEBUG, message, context)

    def info(self, message: str, context: Optional[Dict[str, Any]] = None):
        self._log(logging.INFO, message, context)

    def warning(self, message: str, context: Optional[Dict[str, Any]] = None,
                error: Optional[Exception] = None):
        self._log(logging.WARNING, message, context, error)

    def error(self, message: str, context: Optional[Dict[str, Any]] = None,
              error: Optional[Exception] = None):
        self._log(logging.ERROR, message, context, error, exc_info=error is not None)
