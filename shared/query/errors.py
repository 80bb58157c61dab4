"""Error taxonomy for query construction and execution."""

from typing import Any


class QueryError(Exception):
    """Base exception for every error raised by the query engine."""
    pass


class ConfigurationError(QueryError):
    """Raised by the builder when a clause combination is invalid. Never reaches the executor."""
    pass


class InternalInvariantError(QueryError):
    """Raised by the compiler when a clause model violates an invariant the builder should have enforced."""
    pass


class BackendError(QueryError):
    """Raised when the backend answers with a non-2xx status.

    Attributes:
        status_code (int): HTTP status code returned by the backend.
        detail (Any): Backend-provided error detail (parsed JSON body or raw text).
    """

    retryable: bool = False

    def __init__(self, message: str, status_code: int = 0, detail: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


class AuthenticationError(BackendError):
    """401: credentials missing or rejected."""
    pass


class PermissionDeniedError(BackendError):
    """403: credentials valid but not allowed to perform the query."""
    pass


class NotFoundError(BackendError):
    """404: collection or endpoint does not exist."""
    pass


class ValidationError(BackendError):
    """422: backend rejected the request. `detail` carries field-level messages."""

    @property
    def field_errors(self) -> list[dict]:
        if isinstance(self.detail, dict):
            return list(self.detail.get("errors") or self.detail.get("detail") or [])
        return []


class RateLimitError(BackendError):
    """429: retried with backoff."""

    retryable = True


class ServerError(BackendError):
    """5xx and 408: retried with backoff."""

    retryable = True


class TransportError(QueryError):
    """Network failure or per-attempt timeout. Retried with backoff."""

    retryable = True


class ResponseFormatError(QueryError):
    """Raised when a successful backend response cannot be normalized."""
    pass


class RetriesExhaustedError(QueryError):
    """Raised when a retryable error persisted through the whole attempt budget.

    Attributes:
        last_error (QueryError): The error raised by the final attempt.
        attempts (int): Number of attempts made.
    """

    def __init__(self, last_error: QueryError, attempts: int):
        super().__init__(f"Giving up after {attempts} attempts: {last_error}")
        self.last_error = last_error
        self.attempts = attempts


_STATUS_ERRORS: dict[int, type[BackendError]] = {
    401: AuthenticationError,
    403: PermissionDeniedError,
    404: NotFoundError,
    408: ServerError,
    422: ValidationError,
    429: RateLimitError,
}


def is_retryable(error: BaseException) -> bool:
    """Return True if the error class is eligible for retry."""
    return bool(getattr(error, "retryable", False))


def error_for_status(status_code: int, detail: Any = None, url: str = "") -> BackendError:
    """Map an HTTP status code to the matching taxonomy class.

    Args:
        status_code (int): The HTTP status code (>= 300).
        detail (Any): Backend error detail to attach.
        url (str): Request URL, used in the message only.

    Returns:
        BackendError: An instance of the matching subclass. Unknown 4xx codes map
        to ValidationError, 5xx codes and 408 map to ServerError.
    """
    if status_code in _STATUS_ERRORS:
        error_class = _STATUS_ERRORS[status_code]
    elif status_code >= 500:
        error_class = ServerError
    else:
        error_class = ValidationError
    return error_class(
        f"Request to {url or 'backend'} failed with status {status_code}",
        status_code=status_code,
        detail=detail,
    )
