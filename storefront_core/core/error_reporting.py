"""
Error reporting seam.

The cache and the limiter report failures to an external error tracker
through the ErrorReporter protocol. LoggingErrorReporter is the default
and writes to the "storefront_core.errors" logger; a tracker client can
be plugged in by implementing the two methods.
"""

import logging
from typing import Any, Dict, Optional, Protocol

logger = logging.getLogger("storefront_core.errors")

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}


class ErrorReporter(Protocol):
    def capture_exception(
        self,
        error: BaseException,
        *,
        tags: Optional[Dict[str, str]] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        ...

    def capture_message(
        self,
        message: str,
        *,
        level: str = "info",
        tags: Optional[Dict[str, str]] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        ...


class LoggingErrorReporter:
    """
    Report to the standard logging system.

    Args:
        only_warnings_and_errors: Drop info/debug messages (production)
    """

    def __init__(self, only_warnings_and_errors: bool = False):
        self.only_warnings_and_errors = only_warnings_and_errors
        self.reported = 0

    def capture_exception(self, error, *, tags=None, extra=None) -> None:
        self.reported += 1
        logger.error(
            f"{type(error).__name__}: {error} tags={tags or {}} extra={extra or {}}"
        )

    def capture_message(self, message, *, level="info", tags=None, extra=None) -> None:
        numeric_level = _LEVELS.get(level, logging.INFO)
        if self.only_warnings_and_errors and numeric_level < logging.WARNING:
            return

        self.reported += 1
        logger.log(numeric_level, f"{message} tags={tags or {}} extra={extra or {}}")


class NullErrorReporter:
    """Discard everything."""

    def capture_exception(self, error, *, tags=None, extra=None) -> None:
        return None

    def capture_message(self, message, *, level="info", tags=None, extra=None) -> None:
        return None
