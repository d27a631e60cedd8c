"""
Error types raised by the routing and dispatch engine.

Per-request errors carry the HTTP status the caller should receive when the
response has not started yet. ``HeaderResourceReadError`` and
``ResponseStreamError`` are never surfaced to the caller; they are logged and
the request carries on (or the stream ends).
"""

from typing import Optional


class PathProxyError(Exception):
    """Base class for all proxy errors."""

    status_code: int = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


class ConfigLoadError(PathProxyError):
    """The routing config file is missing or cannot be parsed."""


class MalformedTargetURL(PathProxyError):
    """The path-embedded target URL cannot be turned into an absolute URL."""

    status_code = 400


class ProxyConfigError(PathProxyError):
    """A configured proxy rule carries an unusable proxy URL."""

    status_code = 500


class DispatchError(PathProxyError):
    """Transport failure reaching the target or the upstream proxy."""

    status_code = 502


class HeaderResourceReadError(PathProxyError):
    def __init__(self, path: str, reason: str):
        self.path = path
        super().__init__(f"Cannot read header list {path}: {reason}")


class ResponseStreamError(PathProxyError):
    pass
