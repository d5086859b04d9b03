"""
Shared utilities module.

Contains:
- logger_config: Non-blocking logging configuration
- email_template: HTML rendering of emails archived to OneDrive
"""

from utils.logger_config import (
    configure_non_blocking_logging,
    get_log_listener,
    stop_logging,
    is_logging_configured,
    DEFAULT_LOG_FORMAT,
    DEFAULT_DATE_FORMAT,
)

from utils.email_template import render_outlook_email

__all__ = [
    # Logger
    "configure_non_blocking_logging",
    "get_log_listener",
    "stop_logging",
    "is_logging_configured",
    "DEFAULT_LOG_FORMAT",
    "DEFAULT_DATE_FORMAT",
    # Email archive
    "render_outlook_email",
]
