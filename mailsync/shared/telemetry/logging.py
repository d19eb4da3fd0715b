"""Logging configuration for the application.

Every record carries a correlation_id attribute (from the current
workflow or request context) so sync runs can be followed across modules.
"""

import logging
import sys

from mailsync.core.config import get_settings
from mailsync.shared.context import get_correlation_id, get_sync_account_id

LOG_FORMAT = (
    "%(asctime)s - %(name)s - %(levelname)s - "
    "[cid=%(correlation_id)s account=%(sync_account_id)s] %(message)s"
)


class CorrelationIdFilter(logging.Filter):
    """Attach correlation_id and sync_account_id from contextvars to each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id() or "-"
        record.sync_account_id = get_sync_account_id() or "-"
        return True


def setup_logging() -> None:
    """Configure application-wide logging.

    Level is DEBUG when settings.debug is True, otherwise INFO.
    Output goes to stdout.
    """
    settings = get_settings()
    log_level = logging.DEBUG if settings.debug else logging.INFO
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(CorrelationIdFilter())
    logging.basicConfig(
        level=log_level,
        format=LOG_FORMAT,
        handlers=[handler],
    )


def get_logger(name: str) -> logging.Logger:
    """Return a logger for the given module name.

    Args:
        name: Usually __name__ of the calling module.

    Returns:
        Logger instance.
    """
    return logging.getLogger(name)
