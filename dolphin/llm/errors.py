"""Error taxonomy for calls to the inference service."""

from __future__ import annotations

from typing import Any, Optional

import httpx
from google.genai import errors as genai_errors


ENTITY_NOT_FOUND = "entity_not_found"
FORBIDDEN = "forbidden"
UNAUTHENTICATED = "unauthenticated"

_ENTITY_NOT_FOUND_MESSAGE = "requested entity was not found"


class InferenceError(RuntimeError):
    """Base class for failures talking to the inference service."""


class ConfigurationError(InferenceError):
    """Raised when no credential or SDK client is available for a call."""


class TransportError(InferenceError):
    """Raised on network or service failures, including call timeouts."""

    def __init__(self, message: str, status_code: Optional[int] = None, timed_out: bool = False) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.timed_out = bool(timed_out)


class PollTimeoutError(TransportError):
    """Raised when a polled job does not finish within the attempt budget."""

    def __init__(self, message: str, attempts: int) -> None:
        super().__init__(message, timed_out=True)
        self.attempts = int(attempts)


class AuthorizationError(InferenceError):
    """Raised when the service rejects the credential."""

    def __init__(self, message: str, reason: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.reason = reason
        self.status_code = status_code

    @property
    def entity_not_found(self) -> bool:
        return self.reason == ENTITY_NOT_FOUND


class EmptyResultError(InferenceError):
    """Raised when the service returned no usable content."""


class NoResponseError(EmptyResultError):
    """Raised when a structured call returns an empty body."""


class SchemaViolationError(NoResponseError):
    """Raised when a response does not parse against the expected structure."""


class NoVideoError(EmptyResultError):
    """Raised when a finished generation job carries no video reference."""


def translate_api_error(exc: Any) -> InferenceError:
    """Maps an SDK `APIError` onto the local taxonomy.

    Args:
        exc: Error raised by `google.genai`.

    Returns:
        `AuthorizationError` for credential problems, else `TransportError`.
    """
    code = getattr(exc, "code", None)
    try:
        status_code = int(code) if code is not None else None
    except (TypeError, ValueError):
        status_code = None
    status = str(getattr(exc, "status", "") or "").upper()
    message = str(getattr(exc, "message", "") or exc)

    if status_code == 401 or status == "UNAUTHENTICATED":
        return AuthorizationError(message, reason=UNAUTHENTICATED, status_code=status_code)
    if status_code == 403 or status == "PERMISSION_DENIED":
        return AuthorizationError(message, reason=FORBIDDEN, status_code=status_code)
    if status_code == 404 or status == "NOT_FOUND":
        return AuthorizationError(message, reason=ENTITY_NOT_FOUND, status_code=status_code)
    if status_code is None and _ENTITY_NOT_FOUND_MESSAGE in message.lower():
        return AuthorizationError(message, reason=ENTITY_NOT_FOUND)
    return TransportError(message, status_code=status_code)


def translate_exception(exc: BaseException) -> BaseException:
    """Maps SDK and HTTP transport exceptions; returns others unchanged."""
    if isinstance(exc, InferenceError):
        return exc
    if isinstance(exc, genai_errors.APIError):
        return translate_api_error(exc)
    if isinstance(exc, httpx.TimeoutException):
        return TransportError("Inference request timed out: {}".format(exc), timed_out=True)
    if isinstance(exc, httpx.HTTPError):
        return TransportError("Inference transport failed: {}".format(exc))
    return exc


def is_authorization_failure(exc: BaseException) -> bool:
    """Tells whether a failure should clear the credential-selected flag."""
    return isinstance(exc, (AuthorizationError, ConfigurationError))


def is_entity_not_found(exc: BaseException) -> bool:
    return isinstance(exc, AuthorizationError) and exc.entity_not_found
