"""
Error taxonomy for the gateway.

Every failure the core can produce is a ``GatewayError`` carrying an
``ErrorKind``. The HTTP status and the retry decision are both looked up in
``ERROR_POLICY`` so no caller has to match on message text.
"""

import re
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class ErrorKind(str, Enum):
    UNSUPPORTED_PLATFORM = "unsupported_platform"
    INVALID_REQUEST = "invalid_request"
    UPSTREAM_AUTH_REQUIRED = "upstream_auth_required"
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"
    NOT_FOUND_OR_EXPIRED = "not_found_or_expired"
    RANGE_NOT_SATISFIABLE = "range_not_satisfiable"
    PROCESS_FAILED = "process_failed"
    PROCESS_EMPTY_OUTPUT = "process_empty_output"
    PROCESS_TIMEOUT = "process_timeout"
    RESOURCE_EXHAUSTED = "resource_exhausted"
    INTERNAL = "internal"


# kind -> (HTTP status, retryable)
ERROR_POLICY: Dict[ErrorKind, Tuple[int, bool]] = {
    ErrorKind.UNSUPPORTED_PLATFORM: (400, False),
    ErrorKind.INVALID_REQUEST: (400, False),
    ErrorKind.UPSTREAM_AUTH_REQUIRED: (403, False),
    ErrorKind.UPSTREAM_UNAVAILABLE: (404, False),
    ErrorKind.NOT_FOUND_OR_EXPIRED: (404, False),
    ErrorKind.RANGE_NOT_SATISFIABLE: (416, False),
    ErrorKind.PROCESS_FAILED: (500, True),
    ErrorKind.PROCESS_EMPTY_OUTPUT: (500, True),
    ErrorKind.RESOURCE_EXHAUSTED: (503, False),
    ErrorKind.PROCESS_TIMEOUT: (504, True),
    ErrorKind.INTERNAL: (500, False),
}


class GatewayError(Exception):
    """Base class for all classified failures."""

    kind = ErrorKind.INTERNAL

    def __init__(self, message: str, details: Optional[str] = None, **extra: Any):
        super().__init__(message)
        self.message = message
        self.details = details
        self.extra = extra

    @property
    def status_code(self) -> int:
        return ERROR_POLICY[self.kind][0]

    @property
    def retryable(self) -> bool:
        return ERROR_POLICY[self.kind][1]

    def to_dict(self) -> Dict[str, Any]:
        body = {"error": self.message, "kind": self.kind.value}
        if self.details:
            body["details"] = self.details
        body.update(self.extra)
        return body


class UnsupportedPlatform(GatewayError):
    kind = ErrorKind.UNSUPPORTED_PLATFORM


class InvalidRequest(GatewayError):
    kind = ErrorKind.INVALID_REQUEST


class UpstreamAuthRequired(GatewayError):
    kind = ErrorKind.UPSTREAM_AUTH_REQUIRED


class UpstreamUnavailable(GatewayError):
    kind = ErrorKind.UPSTREAM_UNAVAILABLE


class NotFoundOrExpired(GatewayError):
    kind = ErrorKind.NOT_FOUND_OR_EXPIRED


class RangeNotSatisfiable(GatewayError):
    kind = ErrorKind.RANGE_NOT_SATISFIABLE

    def __init__(self, message: str, file_size: int, **extra: Any):
        super().__init__(message, **extra)
        self.file_size = file_size


class ResourceExhausted(GatewayError):
    kind = ErrorKind.RESOURCE_EXHAUSTED


class ProcessError(GatewayError):
    """Failure of an external tool invocation."""


class ProcessTimeout(ProcessError):
    kind = ErrorKind.PROCESS_TIMEOUT


class ProcessEmptyOutput(ProcessError):
    kind = ErrorKind.PROCESS_EMPTY_OUTPUT


class ProcessFailed(ProcessError):
    """Nonzero exit. ``kind`` comes from the stderr classifier."""

    def __init__(self, message: str, exit_code: Optional[int], stderr_tail: str = "",
                 kind: ErrorKind = ErrorKind.PROCESS_FAILED, **extra: Any):
        super().__init__(message, details=stderr_tail or None, **extra)
        self.exit_code = exit_code
        self.stderr_tail = stderr_tail
        self.kind = kind


# Checked in order. "Private video. Sign in if you've been granted access"
# must land on unavailable, so that list comes first.
_STDERR_PATTERNS = [
    (ErrorKind.UPSTREAM_UNAVAILABLE, re.compile(
        r"private video|video is private|video unavailable|this video is unavailable|"
        r"has been removed|no longer available|not available in your country|"
        r"copyright|account (?:has been )?terminated|does not exist|"
        r"http error 404|404: not found",
        re.IGNORECASE,
    )),
    (ErrorKind.UPSTREAM_AUTH_REQUIRED, re.compile(
        r"sign in to confirm|not a bot|login required|log in|requires authentication|"
        r"age[- ]restricted|confirm your age|inappropriate for some users|"
        r"use --cookies|--cookies-from-browser",
        re.IGNORECASE,
    )),
]


def classify_stderr(text: str) -> ErrorKind:
    """Best-effort mapping of tool diagnostics to an error kind."""
    if not text:
        return ErrorKind.PROCESS_FAILED
    for kind, pattern in _STDERR_PATTERNS:
        if pattern.search(text):
            return kind
    return ErrorKind.PROCESS_FAILED


_PROMOTIONS = {
    ErrorKind.UPSTREAM_UNAVAILABLE: UpstreamUnavailable,
    ErrorKind.UPSTREAM_AUTH_REQUIRED: UpstreamAuthRequired,
}


def promote(error: GatewayError) -> GatewayError:
    """Turn a ProcessFailed with a permanent kind into its dedicated class."""
    error_class = _PROMOTIONS.get(error.kind)
    if error_class is None or isinstance(error, error_class):
        return error
    if error.kind == ErrorKind.UPSTREAM_UNAVAILABLE:
        message = "Video is private, removed or unavailable"
    else:
        message = "Upstream requires authentication (login or age verification)"
    return error_class(message, details=error.details, **error.extra)
