from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Generic, TypeVar, Union

from .signals import CancellationSignal

T = TypeVar("T")

Scalar = Union[str, int, float, bool]

DEFAULT_BASE_URL = "http://localhost:8000"
DEFAULT_REFRESH_ENDPOINT = "/auth/refresh"


@dataclass(frozen=True)
class ClientSettings:
    base_url: str = DEFAULT_BASE_URL
    default_headers: Mapping[str, str] = field(default_factory=dict)
    refresh_endpoint: str = DEFAULT_REFRESH_ENDPOINT
    auth_header: str = "Authorization"
    auth_scheme: str = "Bearer"
    # Seconds; applies inside the transport, independent of per-call timeouts.
    transport_timeout: float = 30.0
    log_level: int | None = None


@dataclass(frozen=True)
class RequestConfig:
    # A None value removes that header, including defaults and Authorization.
    headers: Mapping[str, str | None] | None = None
    params: Mapping[str, Scalar | None] | None = None
    signal: CancellationSignal | None = None
    # Milliseconds
    timeout: float | None = None
    skip_auth_refresh: bool = False


@dataclass
class RequestSpec:
    """The outgoing request as request interceptors see it.

    ``body`` is already encoded: ``bytes`` for JSON/raw payloads or a
    ``MultipartForm`` for form uploads.
    """

    method: str
    headers: dict[str, str] = field(default_factory=dict)
    body: Any = None
    signal: CancellationSignal | None = None


@dataclass
class ApiResponse(Generic[T]):
    data: T
    status: int
    headers: dict[str, str]


@dataclass(frozen=True)
class Tokens:
    access_token: str
    refresh_token: str
    access_token_expires_at: datetime | None = None
    refresh_token_expires_at: datetime | None = None

    def is_access_token_expired(self, now: datetime | None = None) -> bool:
        return _expired(self.access_token_expires_at, now)

    def is_refresh_token_expired(self, now: datetime | None = None) -> bool:
        return _expired(self.refresh_token_expires_at, now)


def _expired(expires_at: datetime | None, now: datetime | None) -> bool:
    # Unknown expiry is treated as still valid; the server's 401 is authoritative.
    if expires_at is None:
        return False
    now = now or datetime.now(timezone.utc)
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now >= expires_at
