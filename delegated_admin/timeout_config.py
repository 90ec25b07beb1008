"""
Timeouts for HTTP calls and interactive waits.

This module provides consistent timeout values for HTTP calls to the
directory service and the token endpoint, the loopback authorization wait
and the relationship termination wait.

Usage:
    from delegated_admin.timeout_config import Timeouts

    session.get(url, timeout=(Timeouts.HTTP_CONNECT, Timeouts.HTTP_READ))

Environment Variables:
    - DAM_TIMEOUT_HTTP_CONNECT: TCP/TLS connect (default: 10s)
    - DAM_TIMEOUT_HTTP_READ: Response read (default: 30s)
    - DAM_TIMEOUT_AUTHORIZATION: Loopback authorization wait (default: 300s)
    - DAM_TIMEOUT_TERMINATION: Relationship termination settle (default: 300s)
"""

import logging
import os
from typing import Final

logger = logging.getLogger(__name__)


def _get_timeout(env_var: str, default: int) -> int:
    """Read a positive whole number of seconds from ``env_var``, else ``default``."""
    raw = os.environ.get(env_var)
    if raw is None:
        return default
    try:
        seconds = int(raw)
    except ValueError:
        seconds = 0
    if seconds <= 0:
        logger.warning(f"Ignoring {env_var}={raw!r}: expected a positive integer, using {default}s")
        return default
    return seconds


class Timeouts:
    """Timeouts in seconds, read once at import."""

    # HTTP request timeouts
    HTTP_CONNECT: Final[int] = _get_timeout("DAM_TIMEOUT_HTTP_CONNECT", 10)
    HTTP_READ: Final[int] = _get_timeout("DAM_TIMEOUT_HTTP_READ", 30)

    # Interactive loopback authorization (user has to click through consent)
    AUTHORIZATION: Final[int] = _get_timeout("DAM_TIMEOUT_AUTHORIZATION", 300)

    # Remote settle waits
    TERMINATION: Final[int] = _get_timeout("DAM_TIMEOUT_TERMINATION", 300)


def http_timeout() -> tuple:
    """Return the (connect, read) tuple used for every requests call."""
    return (Timeouts.HTTP_CONNECT, Timeouts.HTTP_READ)


def log_timeout_event(
    operation: str,
    timeout_value: float,
    level: str = "warning",
) -> None:
    log_func = getattr(logger, level, logger.warning)
    log_func(f"Operation '{operation}' timed out after {timeout_value:g} seconds")
