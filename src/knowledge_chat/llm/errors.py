"""Error taxonomy and classification for chat streams.

Every failure that leaves this layer is a :class:`ChatError` with one of a
small closed set of kinds:

  network     - backend unreachable, connection dropped, timeout
  api         - backend answered, but with a non-2xx status or a
                non-success application code
  validation  - caller input rejected before any request was issued
  cancelled   - the caller's cancel token fired
  unknown     - anything else
"""

from __future__ import annotations

import asyncio
import enum
import json
import logging
from typing import Any

import httpx
import pydantic

from .cancel import CancelToken, StreamCancelled

_logger = logging.getLogger(__name__)


class ErrorKind(enum.Enum):
    NETWORK = "network"
    API = "api"
    VALIDATION = "validation"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"


class ChatError(Exception):
    """A classified, user-presentable failure."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        cause: BaseException | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self._kind = kind
        self._message = message
        self._cause = cause
        self._status_code = status_code

    @property
    def kind(self) -> ErrorKind:
        return self._kind

    @property
    def message(self) -> str:
        return self._message

    @property
    def cause(self) -> BaseException | None:
        return self._cause

    @property
    def status_code(self) -> int | None:
        return self._status_code

    @property
    def cancelled(self) -> bool:
        return self._kind is ErrorKind.CANCELLED

    def __repr__(self) -> str:
        return f"ChatError({self._kind.value!r}, {self._message!r})"


class ApiEnvelopeError(Exception):
    """The backend's ``{code, info, data}`` envelope reported failure."""

    def __init__(self, code: Any, info: str) -> None:
        super().__init__(f"{info} (code {code})")
        self.code = code
        self.info = info


# ---------------------------------------------------------------------------
# User-facing messages
# ---------------------------------------------------------------------------

MSG_CANCELLED = "Stopped by user"
MSG_NETWORK = (
    "Network connection failed, check your network settings "
    "and that the backend service is running"
)
MSG_TIMEOUT = "Request timed out, check your network connection or try again later"
MSG_INVALID_RESPONSE = "The server returned a response that could not be read"
MSG_UNKNOWN = "An unknown error occurred, please try again later"

_STATUS_MESSAGES = {
    401: "Access denied, check your credentials",
    403: "Access denied, check your credentials",
    404: "The requested resource does not exist, check the API configuration",
    500: "Internal server error, please try again later",
}


def status_message(status_code: int) -> str:
    return _STATUS_MESSAGES.get(status_code, f"Server returned error: {status_code}")


# ---------------------------------------------------------------------------
# Classifier
# ---------------------------------------------------------------------------

class ErrorClassifier:
    """Map raw failures onto :class:`ErrorKind`.

    Cancellation is decided structurally (the caller's token fired, or the
    failure *is* a cancellation) before any other rule, so an aborted read
    that surfaces as a transport error is never reported as a network
    failure.
    """

    def classify(
        self,
        exc: BaseException,
        cancel: CancelToken | None = None,
    ) -> ChatError:
        if isinstance(exc, ChatError):
            return exc

        if (
            (cancel is not None and cancel.cancelled)
            or isinstance(exc, (StreamCancelled, asyncio.CancelledError))
        ):
            return ChatError(ErrorKind.CANCELLED, MSG_CANCELLED, cause=exc)

        if isinstance(exc, pydantic.ValidationError):
            return ChatError(
                ErrorKind.VALIDATION, _validation_message(exc), cause=exc,
            )

        if isinstance(exc, httpx.HTTPStatusError):
            code = exc.response.status_code
            return ChatError(
                ErrorKind.API, status_message(code), cause=exc, status_code=code,
            )

        if isinstance(exc, httpx.TimeoutException):
            return ChatError(ErrorKind.NETWORK, MSG_TIMEOUT, cause=exc)

        if isinstance(exc, httpx.TransportError):
            return ChatError(ErrorKind.NETWORK, MSG_NETWORK, cause=exc)

        if isinstance(exc, ApiEnvelopeError):
            return ChatError(ErrorKind.API, exc.info or MSG_UNKNOWN, cause=exc)

        if isinstance(exc, json.JSONDecodeError):
            return ChatError(ErrorKind.API, MSG_INVALID_RESPONSE, cause=exc)

        _logger.debug("Unclassified failure: %r", exc)
        return ChatError(ErrorKind.UNKNOWN, str(exc) or MSG_UNKNOWN, cause=exc)


def _validation_message(exc: pydantic.ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    field = ".".join(str(part) for part in first.get("loc", ()))
    msg = first.get("msg", "invalid value")
    return f"{field}: {msg}" if field else msg
