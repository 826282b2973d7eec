"""Observability module for Branchwright.

Provides structured logging for the repair pipeline.
"""

from branchwright.observability.logging import (
    LOG_FILE_NAME,
    close_file_logging,
    configure_logging,
    get_logger,
)

__all__ = [
    "LOG_FILE_NAME",
    "close_file_logging",
    "configure_logging",
    "get_logger",
]
