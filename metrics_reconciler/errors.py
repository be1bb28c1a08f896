"""
Fetch error taxonomy and classification.

Adapters raise these at their boundary; the reconciliation controller is the
only place they are caught, classified into an :class:`ErrorInfo`, and shown
to the presentation layer. Anything else an upstream call raises is mapped
through :func:`classify_error` so that no fetch failure escapes as an
unhandled exception.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Optional

import httpx
from pydantic import BaseModel, ValidationError


class ErrorCode(str, Enum):
    """Standardized error codes surfaced to the presentation layer."""

    NETWORK_ERROR = "NETWORK_ERROR"
    SERVER_ERROR = "SERVER_ERROR"
    CLIENT_ERROR = "CLIENT_ERROR"
    MALFORMED_RESPONSE = "MALFORMED_RESPONSE"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class FetchError(Exception):
    """Base class for upstream fetch failures."""

    code: ErrorCode = ErrorCode.UNKNOWN_ERROR
    retryable: bool = False

    def __init__(self, message: str, *, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status = status


class TransportError(FetchError):
    """No response was received (connection refused, DNS, timeout)."""

    code = ErrorCode.NETWORK_ERROR
    retryable = True


class ServerError(FetchError):
    """Upstream answered with a 5xx status."""

    code = ErrorCode.SERVER_ERROR
    retryable = True


class ClientError(FetchError):
    """Upstream rejected the request (4xx), including malformed filters."""

    code = ErrorCode.CLIENT_ERROR


class MalformedResponseError(FetchError):
    """Response body is not in the expected shape."""

    code = ErrorCode.MALFORMED_RESPONSE


class ErrorInfo(BaseModel):
    """User-facing description of a failed fetch."""

    code: ErrorCode
    message: str
    source: str = ""
    status: Optional[int] = None
    retryable: bool = False


def from_http_status(exc: httpx.HTTPStatusError) -> FetchError:
    """Translate an ``httpx`` status error into the taxonomy."""
    status = exc.response.status_code
    if status >= 500:
        return ServerError(
            f"Server error ({status}). Please try again later.", status=status
        )
    detail = ""
    try:
        body = exc.response.json()
        if isinstance(body, dict):
            detail = str(body.get("message") or body.get("detail") or "")
    except ValueError:
        detail = ""
    return ClientError(detail or f"Request failed ({status})", status=status)


def classify_error(exc: BaseException) -> FetchError:
    """Map any exception raised by a fetch into a :class:`FetchError`."""
    if isinstance(exc, FetchError):
        return exc
    if isinstance(exc, httpx.HTTPStatusError):
        return from_http_status(exc)
    if isinstance(exc, (httpx.TransportError, asyncio.TimeoutError, OSError)):
        return TransportError("Network error. Please check your connection.")
    if isinstance(exc, (ValidationError, ValueError, KeyError, TypeError)):
        return MalformedResponseError(f"Unexpected response shape: {exc}")
    return FetchError(str(exc) or "An unknown error occurred")


def to_error_info(exc: BaseException, source: str = "") -> ErrorInfo:
    """Classify ``exc`` and render it for display."""
    err = classify_error(exc)
    return ErrorInfo(
        code=err.code,
        message=err.message,
        source=source,
        status=err.status,
        retryable=err.retryable,
    )
