"""
Error taxonomy and classification.

Every failure that crosses a component boundary is mapped onto one of six
categories. Only `network` and `server` are transient; the retry executor
absorbs those, everything else propagates to the caller.
"""

import logging
from collections.abc import Callable
from enum import Enum
from typing import Any

import httpx
import pydantic
import websockets.exceptions

logger = logging.getLogger(__name__)


class ErrorCategory(str, Enum):
    """Error buckets used to decide between retry, surface and ignore."""

    NETWORK = "network"
    AUTH = "auth"
    NOT_FOUND = "not_found"
    SERVER = "server"
    VALIDATION = "validation"
    UNKNOWN = "unknown"


TRANSIENT_CATEGORIES = frozenset({ErrorCategory.NETWORK, ErrorCategory.SERVER})


class SyncError(Exception):
    """
    Base class for all classified errors.

    Attributes:
        code: Stable identifier (e.g. "NETWORK_ERROR")
        category: Taxonomy bucket
        context: Extra data attached by the raising component
        recoverable: Whether the caller can reasonably try again
    """

    code = "UNKNOWN_ERROR"
    category = ErrorCategory.UNKNOWN
    recoverable = False
    default_message = "An unexpected error occurred."

    def __init__(
        self,
        message: str | None = None,
        context: dict[str, Any] | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.context = dict(context or {})
        self.status_code = status_code

    @property
    def transient(self) -> bool:
        return self.category in TRANSIENT_CATEGORIES

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


class NetworkError(SyncError):
    code = "NETWORK_ERROR"
    category = ErrorCategory.NETWORK
    recoverable = True
    default_message = "Unable to connect. Please check your network connection."


class AuthError(SyncError):
    code = "AUTH_ERROR"
    category = ErrorCategory.AUTH
    recoverable = True
    default_message = "Authentication failed. Please re-authenticate."


class NotFoundError(SyncError):
    code = "NOT_FOUND"
    category = ErrorCategory.NOT_FOUND
    default_message = "The requested resource was not found."


class ServerError(SyncError):
    code = "SERVER_ERROR"
    category = ErrorCategory.SERVER
    recoverable = True
    default_message = "Server error. Please try again later."


class ValidationError(SyncError):
    code = "VALIDATION_ERROR"
    category = ErrorCategory.VALIDATION
    recoverable = True
    default_message = "Invalid input."


class MalformedEventError(ValidationError):
    """A pushed frame could not be decoded."""

    code = "MALFORMED_EVENT"
    default_message = "Malformed event payload."


class ConfigError(ValidationError):
    """The config file is unreadable or fails validation."""

    code = "CONFIG_ERROR"
    default_message = "Invalid configuration file."


def error_for_status(status: int, message: str | None = None, **context: Any) -> SyncError:
    """Build the taxonomy error matching an HTTP status code."""
    context["status_code"] = status
    if status in (401, 403):
        return AuthError(message, context, status)
    if status == 404:
        return NotFoundError(message, context, status)
    if status == 429 or status >= 500:
        return ServerError(message, context, status)
    if 400 <= status < 500:
        return ValidationError(message or f"Request rejected ({status})", context, status)
    return SyncError(message, context, status)


def classify(error: BaseException, context: dict[str, Any] | None = None) -> SyncError:
    """
    Map any exception onto the taxonomy.

    Already-classified errors are returned as-is (with context merged in).
    The returned object keeps the original exception as `__cause__`.
    """
    if isinstance(error, SyncError):
        if context:
            error.context.update(context)
        return error

    result: SyncError
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        result = error_for_status(
            status,
            _response_message(error.response),
            url=str(error.request.url),
            **(context or {}),
        )
    elif isinstance(
        error,
        (
            httpx.TransportError,
            websockets.exceptions.WebSocketException,
            ConnectionError,
            TimeoutError,
            OSError,
        ),
    ):
        result = NetworkError(context=context)
    elif isinstance(error, pydantic.ValidationError):
        result = ValidationError(str(error), context)
    else:
        result = SyncError(str(error) or None, context)

    result.__cause__ = error
    return result


def is_transient(error: BaseException) -> bool:
    """True for network and 5xx-equivalent failures."""
    return classify(error).transient


def _response_message(response: httpx.Response) -> str | None:
    """Pull a human-readable message out of an error response body."""
    try:
        data = response.json()
    except ValueError:
        return None
    if isinstance(data, dict):
        for key in ("message", "error"):
            value = data.get(key)
            if isinstance(value, str) and value:
                return value
    return None


ErrorListener = Callable[[SyncError], None]


class ErrorReporter:
    """
    Central sink for classified errors.

    Keeps a bounded history for debugging and fans errors out to listeners
    (e.g. a toast in the view layer). Listener failures are logged and
    never propagate.
    """

    def __init__(self, max_recent: int = 50) -> None:
        self._listeners: list[ErrorListener] = []
        self._recent: list[SyncError] = []
        self._max_recent = max_recent

    def subscribe(self, listener: ErrorListener) -> Callable[[], None]:
        """
        Register a listener.

        Returns:
            Function that removes the listener again.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def handle(
        self,
        error: BaseException,
        *,
        notify: bool = True,
        context: dict[str, Any] | None = None,
    ) -> SyncError:
        """
        Classify, record and optionally broadcast an error.

        Args:
            error: Any exception
            notify: Whether listeners should see it
            context: Extra data merged into the error context

        Returns:
            The classified error.
        """
        classified = classify(error, context)

        self._recent.insert(0, classified)
        del self._recent[self._max_recent :]

        cause = classified.__cause__
        logger.debug(
            f"[{classified.code}] {classified.message}"
            + (f" - cause: {cause}" if cause else "")
        )

        if notify:
            for listener in list(self._listeners):
                try:
                    listener(classified)
                except Exception:
                    logger.exception("Error listener failed")

        return classified

    @property
    def recent(self) -> list[SyncError]:
        return list(self._recent)

    def clear(self) -> None:
        self._recent.clear()

    @staticmethod
    def user_message(error: SyncError) -> str:
        """Short text suitable for a status bar or toast."""
        if error.category is ErrorCategory.NETWORK:
            return "Connection problem. Please check your internet."
        if error.category is ErrorCategory.AUTH:
            return "Session expired. Please log in again."
        if error.category in (
            ErrorCategory.SERVER,
            ErrorCategory.NOT_FOUND,
            ErrorCategory.VALIDATION,
        ):
            return error.message or "Something went wrong. Please try again."
        return "An unexpected error occurred."
