from enum import Enum
from typing import Any

from .codec import parse_error_body


class ErrorKind(str, Enum):
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT = "TIMEOUT"
    HTTP_ERROR = "HTTP_ERROR"
    PARSE_ERROR = "PARSE_ERROR"
    AUTH_ERROR = "AUTH_ERROR"


class ApiError(Exception):
    """The one failure type raised by ApiClient.

    Match on ``code`` rather than ``message``.
    """

    def __init__(
        self,
        message: str,
        *,
        code: ErrorKind,
        status: int | None = None,
        details: Any = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status = status
        self.details = details

    def __repr__(self) -> str:
        return f"ApiError(code={self.code.value}, status={self.status}, message={self.message!r})"

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"message": self.message, "code": self.code.value}
        if self.status is not None:
            out["status"] = self.status
        if self.details is not None:
            out["details"] = self.details
        return out


def network_error(exc: BaseException) -> ApiError:
    return ApiError(
        "Network request failed", code=ErrorKind.NETWORK_ERROR, details={"error": str(exc)}
    )


def timeout_error() -> ApiError:
    return ApiError("Request timeout", code=ErrorKind.TIMEOUT)


def cancelled_error(reason: str | None = None) -> ApiError:
    details = {"reason": reason} if reason else None
    return ApiError("Request cancelled", code=ErrorKind.TIMEOUT, details=details)


def parse_error(message: str, details: Any = None) -> ApiError:
    return ApiError(message, code=ErrorKind.PARSE_ERROR, details=details)


def http_error(response) -> ApiError:
    message, details = parse_error_body(response)
    return ApiError(
        message, code=ErrorKind.HTTP_ERROR, status=response.status_code, details=details
    )


def auth_error(response) -> ApiError:
    """Surface an unrecoverable 401 with the original response's message."""
    message, details = parse_error_body(response)
    return ApiError(
        message, code=ErrorKind.AUTH_ERROR, status=response.status_code, details=details
    )
