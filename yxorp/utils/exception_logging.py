"""
Exception logging helpers for the request boundary.

Everything here is safe to call from an ``except`` block: none of these
functions raise, even for exceptions whose ``__str__`` is broken.
"""

import logging
import ssl

import httpx

from yxorp.addressing import AddressDecodeError


def _safe_str(obj) -> str:
    try:
        return str(obj)
    except Exception:
        try:
            return repr(obj)
        except Exception:
            return f"<{type(obj).__name__} object (string conversion failed)>"


def _safe_get_exceptions(exception_group) -> list:
    try:
        return list(exception_group.exceptions)
    except Exception:
        return []


def describe_upstream_error(exception: Exception) -> str:
    """
    Short category for a failed upstream fetch, used as span attribute and in logs.

    Returns one of ``decode``, ``timeout``, ``tls``, ``connection``, ``protocol``,
    ``http`` or ``internal``.
    """
    if isinstance(exception, AddressDecodeError):
        return "decode"
    if isinstance(exception, httpx.TimeoutException):
        return "timeout"
    if isinstance(exception, httpx.ConnectError):
        cause = exception.__cause__ or exception.__context__
        if isinstance(cause, ssl.SSLError) or "SSL" in _safe_str(exception):
            return "tls"
        return "connection"
    if isinstance(exception, (httpx.ProtocolError, httpx.NetworkError)):
        return "protocol"
    if isinstance(exception, httpx.HTTPError):
        return "http"
    return "internal"


def log_exception_with_details(
    logger: logging.Logger,
    prefix: str,
    exception: Exception,
    level: int = logging.ERROR,
) -> None:
    """
    Log an exception, expanding sub-exceptions of exception groups.

    Args:
        logger: The logger instance to use
        prefix: Prefix for the log message (e.g., "[Proxy]", "[Retry]")
        exception: The exception to log
        level: The logging level to use (default: ERROR)
    """
    try:
        safe_prefix = _safe_str(prefix) if prefix is not None else ""
        sub_exceptions = (
            _safe_get_exceptions(exception) if hasattr(exception, "exceptions") else []
        )

        if sub_exceptions:
            logger.log(
                level,
                f"{safe_prefix} Exception with {len(sub_exceptions)} sub-exceptions: "
                f"{_safe_str(exception)}",
            )
            for i, sub_exc in enumerate(sub_exceptions):
                logger.log(
                    level,
                    f"{safe_prefix} Sub-exception {i+1}: "
                    f"{type(sub_exc).__name__}: {_safe_str(sub_exc)}",
                    exc_info=sub_exc,
                )
        else:
            logger.log(
                level,
                f"{safe_prefix} Exception: {_safe_str(exception)}",
                exc_info=exception if exception is not None else False,
            )
    except Exception:
        try:
            logger.log(logging.ERROR, f"{prefix} Exception logging failed")
        except Exception:
            pass


def format_exception_message(exception: Exception) -> str:
    """Single-line description of an exception, including sub-exceptions."""
    try:
        if exception is None:
            return "None"

        sub_exceptions = (
            _safe_get_exceptions(exception) if hasattr(exception, "exceptions") else []
        )
        if not sub_exceptions:
            return _safe_str(exception)

        details = "; ".join(
            f"{type(sub_exc).__name__}: {_safe_str(sub_exc)}" for sub_exc in sub_exceptions
        )
        return f"{_safe_str(exception)} (Sub-exceptions: {details})"
    except Exception:
        return f"<{type(exception).__name__} (formatting failed)>"
