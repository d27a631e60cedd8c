"""
Exception logging helpers.

Streaming responses run inside anyio task groups, so failures can arrive
wrapped in exception groups. These helpers unwrap them for the log.
"""

import logging


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


def log_exception_with_details(
    logger: logging.Logger,
    prefix: str,
    exception: BaseException,
    level: int = logging.ERROR,
) -> None:
    """
    Log an exception, including each sub-exception when it is an exception group.

    Args:
        logger: The logger instance to use
        prefix: Prefix for the log message (e.g., "[Dispatch]", "[Config]")
        exception: The exception to log
        level: The logging level to use (default: ERROR)
    """
    sub_exceptions = (
        _safe_get_exceptions(exception) if hasattr(exception, "exceptions") else []
    )
    if sub_exceptions:
        logger.log(
            level,
            f"{prefix} Exception with {len(sub_exceptions)} sub-exceptions: {_safe_str(exception)}",
        )
        for i, sub_exc in enumerate(sub_exceptions):
            logger.log(
                level,
                f"{prefix} Sub-exception {i+1}: {type(sub_exc).__name__}: {_safe_str(sub_exc)}",
                exc_info=sub_exc,
            )
    else:
        logger.log(
            level,
            f"{prefix} Exception: {_safe_str(exception)}",
            exc_info=exception,
        )


def format_exception_message(exception: BaseException) -> str:
    """Format an exception message, including sub-exceptions of exception groups."""
    if exception is None:
        return "None"
    sub_exceptions = (
        _safe_get_exceptions(exception) if hasattr(exception, "exceptions") else []
    )
    if not sub_exceptions:
        return _safe_str(exception)
    joined = "; ".join(
        f"{type(sub_exc).__name__}: {_safe_str(sub_exc)}" for sub_exc in sub_exceptions
    )
    return f"{_safe_str(exception)} (Sub-exceptions: {joined})"
