"""
chartflow error kinds and exception hierarchy

Fetch failures are classified so the scheduler can tell retryable conditions
(network, timeout, server) from terminal ones (not found, permission denied,
configuration). Renderer resolution failures are a separate kind so the UI can
tell "can't show this chart type" from "can't get data for this chart".
"""

import asyncio
import socket
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence
from urllib.error import HTTPError, URLError


class ErrorKind(str, Enum):
    NETWORK = "network"
    TIMEOUT = "timeout"
    SERVER = "server"
    NOT_FOUND = "not_found"
    PERMISSION_DENIED = "permission_denied"
    RENDERER_NOT_FOUND = "renderer_not_found"
    CONFIGURATION = "configuration"
    UNKNOWN = "unknown"


RETRYABLE_KINDS = frozenset({
    ErrorKind.NETWORK,
    ErrorKind.TIMEOUT,
    ErrorKind.SERVER,
    ErrorKind.UNKNOWN,
})


@dataclass(frozen=True)
class ErrorInfo:
    """Classified failure as stored on a chart's runtime state"""
    kind: ErrorKind
    message: str

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS

    def to_dict(self) -> dict:
        return {"kind": self.kind.value, "message": self.message, "retryable": self.retryable}


class ChartflowError(Exception):
    """Base class for all chartflow errors"""
    kind = ErrorKind.UNKNOWN

    def to_info(self) -> ErrorInfo:
        return ErrorInfo(kind=self.kind, message=str(self))


class DataFetchError(ChartflowError):
    """Failure reported by the data query service"""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class NetworkError(DataFetchError):
    kind = ErrorKind.NETWORK


class FetchTimeoutError(DataFetchError):
    kind = ErrorKind.TIMEOUT


class ServerError(DataFetchError):
    kind = ErrorKind.SERVER


class NotFoundError(DataFetchError):
    kind = ErrorKind.NOT_FOUND


class PermissionDeniedError(DataFetchError):
    kind = ErrorKind.PERMISSION_DENIED


class ConfigurationError(ChartflowError):
    """Malformed chart or dashboard configuration"""
    kind = ErrorKind.CONFIGURATION


class RendererNotFoundError(ChartflowError):
    kind = ErrorKind.RENDERER_NOT_FOUND

    def __init__(self, library: str, chart_type: str, tried_keys: Sequence[str]):
        self.library = library
        self.chart_type = chart_type
        self.tried_keys: List[str] = list(tried_keys)
        super().__init__(
            f"No renderer registered for {library}/{chart_type} (tried: {', '.join(self.tried_keys)})"
        )


class DuplicateRendererError(ChartflowError):
    kind = ErrorKind.CONFIGURATION

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"A different renderer is already registered under '{key}'")


class InvalidTransitionError(ChartflowError):
    """Chart state machine was asked for a transition it does not allow"""


class ChartNotMountedError(ChartflowError, KeyError):
    """Operation on a chart id that is not mounted in the session"""

    def __str__(self) -> str:
        return Exception.__str__(self)


def error_for_status(status: int, message: str) -> DataFetchError:
    """Map an HTTP-like status code to the matching fetch error."""
    if status == 404:
        return NotFoundError(message, status)
    if status in (401, 403):
        return PermissionDeniedError(message, status)
    if status == 408 or status == 504:
        return FetchTimeoutError(message, status)
    if status >= 500:
        return ServerError(message, status)
    if status == 429:
        return ServerError(message, status)  # throttled, worth retrying
    return DataFetchError(message, status)


def classify_exception(exc: BaseException) -> ErrorInfo:
    """Classify any exception raised while fetching chart data."""
    if isinstance(exc, ChartflowError):
        if type(exc) is DataFetchError:
            # Generic client-side 4xx: the request itself is wrong
            return ErrorInfo(ErrorKind.CONFIGURATION, str(exc))
        return exc.to_info()

    if isinstance(exc, (asyncio.TimeoutError, socket.timeout)):
        return ErrorInfo(ErrorKind.TIMEOUT, str(exc) or "request timed out")

    if isinstance(exc, HTTPError):
        return classify_exception(error_for_status(exc.code, f"HTTP {exc.code}: {exc.reason}"))

    if isinstance(exc, URLError):
        if isinstance(exc.reason, socket.timeout):
            return ErrorInfo(ErrorKind.TIMEOUT, str(exc.reason) or "request timed out")
        return ErrorInfo(ErrorKind.NETWORK, f"failed to reach server: {exc.reason}")

    if isinstance(exc, (ConnectionError, OSError)):
        return ErrorInfo(ErrorKind.NETWORK, str(exc))

    if isinstance(exc, (ValueError, KeyError, TypeError)):
        # Unparseable payloads and the like
        return ErrorInfo(ErrorKind.SERVER, f"invalid response: {exc}")

    return ErrorInfo(ErrorKind.UNKNOWN, str(exc) or exc.__class__.__name__)
