"""
Error taxonomy for the remote news service.
Every failed round trip is classified into one of a small set of kinds.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Classification of feed failures."""
    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    SERVER_UNAVAILABLE = "server_unavailable"
    CLIENT_ERROR = "client_error"
    OFFLINE = "offline"
    MALFORMED_RESPONSE = "malformed_response"
    EMPTY_RESULT = "empty_result"

    @property
    def message(self) -> str:
        """User-facing message for this kind of failure."""
        return _MESSAGES[self]


_MESSAGES = {
    ErrorKind.TIMEOUT: "The news service took too long to respond. Please try again.",
    ErrorKind.RATE_LIMITED: "Too many requests. Please wait a moment and try again.",
    ErrorKind.SERVER_UNAVAILABLE: "The news service is unavailable right now. Please try again.",
    ErrorKind.CLIENT_ERROR: "The news service rejected the request. Try adjusting your filters.",
    ErrorKind.OFFLINE: "Failed to reach the news service. Please check your connection.",
    ErrorKind.MALFORMED_RESPONSE: "The news service returned an unexpected response.",
    ErrorKind.EMPTY_RESULT: "No articles found. Try adjusting your filters or search terms.",
}


class NetworkError(Exception):
    """
    Base class for failed round trips.

    Carries the HTTP status code when the server responded, otherwise None.
    """
    kind: ErrorKind = ErrorKind.OFFLINE

    def __init__(
        self,
        detail: str = "",
        status_code: Optional[int] = None,
        path: Optional[str] = None
    ):
        self.detail = detail or self.kind.message
        self.status_code = status_code
        self.path = path
        super().__init__(self.detail)

    @property
    def responded(self) -> bool:
        """Whether the server produced an HTTP response."""
        return self.status_code is not None

    def __repr__(self) -> str:
        return f"<{type(self).__name__}(status={self.status_code}, path={self.path!r}, detail={self.detail!r})>"


class RequestTimeout(NetworkError):
    kind = ErrorKind.TIMEOUT


class Offline(NetworkError):
    kind = ErrorKind.OFFLINE


class RateLimited(NetworkError):
    kind = ErrorKind.RATE_LIMITED


class ServerUnavailable(NetworkError):
    """5xx from the service, usually a cold start."""
    kind = ErrorKind.SERVER_UNAVAILABLE

    def __init__(self, *args, attempts: int = 1, attempts_remaining: int = 0, **kwargs):
        super().__init__(*args, **kwargs)
        self.attempts = attempts
        self.attempts_remaining = attempts_remaining


class ClientError(NetworkError):
    kind = ErrorKind.CLIENT_ERROR


class MalformedResponse(NetworkError):
    kind = ErrorKind.MALFORMED_RESPONSE


def error_for_status(status: int, detail: str = "", path: Optional[str] = None) -> NetworkError:
    """
    Build the error matching an HTTP status code.

    Args:
        status: HTTP status code (>= 400)
        detail: Server-provided message, if any
        path: Request path

    Returns:
        NetworkError subclass instance
    """
    if status == 429:
        return RateLimited(detail, status_code=status, path=path)
    if 500 <= status < 600:
        return ServerUnavailable(detail, status_code=status, path=path)
    return ClientError(detail, status_code=status, path=path)
