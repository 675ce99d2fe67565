import asyncio
import dataclasses
import inspect
import json
import logging
import re
import time
from collections.abc import Awaitable, Coroutine, Mapping
from datetime import datetime, timezone
from typing import Any, Callable, Union

import httpx

from .codec import decode_body, encode_body, find_header
from .env import load_settings_from_env
from .errors import (
    ApiError,
    auth_error,
    cancelled_error,
    http_error,
    network_error,
    parse_error,
    timeout_error,
)
from .interceptors import InterceptorPipeline, RequestInterceptor, ResponseInterceptor
from .refresh import RefreshCoordinator, RefreshFn
from .signals import CancellationSignal
from .tokens import TokenStore
from .transports import HttpxTransport, Transport, strip_encoding_headers
from .types import ApiResponse, ClientSettings, RequestConfig, RequestSpec, Tokens

ChunkCallback = Callable[[Any], Union[None, Awaitable[None]]]

_SSE_DATA = re.compile(r"^data:\s*(.+)$")
_SSE_FIELDS = ("event:", "id:", "retry:")
# Epoch values this large are milliseconds (seconds would be past year 5000).
_EPOCH_MS_THRESHOLD = 100_000_000_000


def _format_param(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _parse_timestamp(value: Any) -> datetime | None:
    """ISO-8601 string or epoch number (seconds or milliseconds) -> aware datetime."""
    if value is None or value == "":
        return None
    try:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            if abs(value) >= _EPOCH_MS_THRESHOLD:
                value = value / 1000
            return datetime.fromtimestamp(value, tz=timezone.utc)
        text = str(value)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return datetime.fromisoformat(text)
    except (ValueError, OverflowError, OSError):
        logging.getLogger("portcullis").warning(f"ignoring unparseable token expiry {value!r}")
        return None


class ApiClient:
    """Shared async HTTP gateway for every backend call.

    - Request/response interceptors run in registration order, one at a time.
    - ``Authorization: Bearer <token>`` comes from the client's TokenStore.
    - A 401 triggers one shared refresh (see RefreshCoordinator) and one retry.
    - Every failure surfaces as ApiError with an ErrorKind code.

    Usage:
        async with ApiClient(base_url="https://api.example.com") as client:
            client.set_tokens(access, refresh)
            resp = await client.get("/users", RequestConfig(params={"page": 1}))
    """

    def __init__(
        self,
        settings: ClientSettings | None = None,
        *,
        transport: Transport | None = None,
        token_store: TokenStore | None = None,
        refresh_fn: RefreshFn | None = None,
        base_url: str | None = None,
        default_headers: Mapping[str, str] | None = None,
    ):
        settings = settings or ClientSettings()
        if base_url is not None:
            settings = dataclasses.replace(settings, base_url=base_url)
        if default_headers is not None:
            settings = dataclasses.replace(settings, default_headers=dict(default_headers))
        self.settings = settings
        self._transport = transport or HttpxTransport(timeout=settings.transport_timeout)
        self.token_store = token_store or TokenStore()
        self._pipeline = InterceptorPipeline()
        self._refresher = RefreshCoordinator(
            self.token_store, refresh_fn or self._call_refresh_endpoint
        )
        self._logger = logging.getLogger("portcullis")
        if settings.log_level is not None:
            self._logger.setLevel(settings.log_level)

    @classmethod
    def from_env(cls, env_path: str | None = None, prefix: str | None = None, **kwargs):
        """Build a client whose settings come from the environment (and optional .env file)."""
        client_keys = {
            k: kwargs.pop(k)
            for k in list(kwargs.keys())
            if k in {"transport", "token_store", "refresh_fn"}
        }
        loader_kwargs = {"env_path": env_path}
        if prefix is not None:
            loader_kwargs["prefix"] = prefix
        settings = load_settings_from_env(**loader_kwargs, **kwargs)
        return cls(settings, **client_keys)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()
        return False

    async def aclose(self) -> None:
        await self._transport.aclose()

    # ------------------------ tokens ------------------------
    def set_tokens(self, access_token: str, refresh_token: str, **expiry) -> None:
        self.token_store.set_tokens(access_token, refresh_token, **expiry)

    def clear_tokens(self) -> None:
        self.token_store.clear_tokens()

    def set_auth_token(self, token: str | None) -> None:
        self.token_store.set_access_token(token)

    def get_auth_token(self) -> str | None:
        return self.token_store.get_access_token()

    def get_access_token(self) -> str | None:
        return self.token_store.get_access_token()

    def get_refresh_token(self) -> str | None:
        return self.token_store.get_refresh_token()

    @property
    def refresh_coordinator(self) -> RefreshCoordinator:
        return self._refresher

    # ------------------------ interceptors ------------------------
    def add_request_interceptor(self, fn: RequestInterceptor) -> None:
        self._pipeline.add_request_interceptor(fn)

    def add_response_interceptor(self, fn: ResponseInterceptor) -> None:
        self._pipeline.add_response_interceptor(fn)

    def remove_request_interceptor(self, fn: RequestInterceptor) -> None:
        self._pipeline.remove_request_interceptor(fn)

    def remove_response_interceptor(self, fn: ResponseInterceptor) -> None:
        self._pipeline.remove_response_interceptor(fn)

    # ------------------------ verbs ------------------------
    async def get(self, endpoint: str, config: RequestConfig | None = None) -> ApiResponse:
        return await self.request("GET", endpoint, None, config)

    async def post(
        self, endpoint: str, body: Any = None, config: RequestConfig | None = None
    ) -> ApiResponse:
        return await self.request("POST", endpoint, body, config)

    async def put(
        self, endpoint: str, body: Any = None, config: RequestConfig | None = None
    ) -> ApiResponse:
        return await self.request("PUT", endpoint, body, config)

    async def patch(
        self, endpoint: str, body: Any = None, config: RequestConfig | None = None
    ) -> ApiResponse:
        return await self.request("PATCH", endpoint, body, config)

    async def delete(self, endpoint: str, config: RequestConfig | None = None) -> ApiResponse:
        return await self.request("DELETE", endpoint, None, config)

    async def request(
        self,
        method: str,
        endpoint: str,
        body: Any = None,
        config: RequestConfig | None = None,
    ) -> ApiResponse:
        config = config or RequestConfig()
        method = method.upper()
        started = time.monotonic()
        self._logger.debug(f"req start method={method} endpoint={endpoint}")
        try:
            result = await self._execute(method, endpoint, body, config)
        except ApiError as e:
            self._logger.debug(
                f"req failed method={method} endpoint={endpoint} code={e.code.value} "
                f"status={e.status} duration_ms={(time.monotonic() - started) * 1000:.0f}"
            )
            raise
        self._logger.debug(
            f"req done method={method} endpoint={endpoint} status={result.status} "
            f"duration_ms={(time.monotonic() - started) * 1000:.0f}"
        )
        return result

    async def _execute(
        self, method: str, endpoint: str, body: Any, config: RequestConfig
    ) -> ApiResponse:
        url, spec, token = await self._prepare(method, endpoint, body, config)
        resp = await self._exchange(url, spec, config)

        if resp.status_code == 401 and not config.skip_auth_refresh:  # noqa: PLR2004, http status code can be constant
            if not await self._await_refresh(token, spec.signal, config.timeout):
                raise auth_error(resp)
            url, spec, token = await self._prepare(method, endpoint, body, config)
            resp = await self._exchange(url, spec, config)
            if resp.status_code == 401:  # noqa: PLR2004, http status code can be constant
                # Fresh credentials rejected too; stop further doomed refreshes.
                self.token_store.clear_tokens()
                raise auth_error(resp)

        if not resp.is_success:
            raise http_error(resp)
        return ApiResponse(data=decode_body(resp), status=resp.status_code, headers=dict(resp.headers))

    # ------------------------ request building ------------------------
    def build_url(self, endpoint: str, params: Mapping[str, Any] | None = None) -> str:
        if endpoint.startswith(("http://", "https://")):
            url = endpoint
        else:
            url = f"{self.settings.base_url.rstrip('/')}/{endpoint.lstrip('/')}"
        query = [(k, _format_param(v)) for k, v in (params or {}).items() if v is not None]
        if query:
            url = str(httpx.URL(url).copy_merge_params(query))
        return url

    def build_headers(
        self, overrides: Mapping[str, str | None] | None, token: str | None
    ) -> dict[str, str]:
        headers = dict(self.settings.default_headers)
        # per-call keys, lowercased; these beat both defaults and the stored token
        touched: set[str] = set()
        for key, value in (overrides or {}).items():
            existing = find_header(headers, key)
            if existing is not None:
                del headers[existing]
            touched.add(key.lower())
            if value is not None:
                headers[key] = value
        auth = self.settings.auth_header
        if token and auth.lower() not in touched:
            default_auth = find_header(headers, auth)
            if default_auth is not None:
                del headers[default_auth]
            headers[auth] = f"{self.settings.auth_scheme} {token}".strip()
        return headers

    async def _prepare(
        self, method: str, endpoint: str, body: Any, config: RequestConfig
    ) -> tuple[str, RequestSpec, str | None]:
        token = self.token_store.get_access_token()
        url = self.build_url(endpoint, config.params)
        content, headers = encode_body(body, self.build_headers(config.headers, token))
        spec = RequestSpec(method=method, headers=headers, body=content, signal=config.signal)
        url, spec = await self._pipeline.apply_request(url, spec)
        return url, spec, token

    # ------------------------ transport + cancellation ------------------------
    async def _exchange(self, url: str, spec: RequestSpec, config: RequestConfig) -> httpx.Response:
        resp = await self._guarded(
            self._transport.send(spec.method, url, spec.headers, spec.body),
            spec.signal,
            config.timeout,
        )
        return await self._pipeline.apply_response(resp)

    async def _await_refresh(
        self, token: str | None, signal: CancellationSignal | None, timeout_ms: float | None
    ) -> bool:
        # The caller's deadline and signal bound the wait; the shared refresh itself is shielded.
        return await self._race(self._refresher.refresh(token), signal, timeout_ms)

    def _translate(self, exc: BaseException) -> ApiError | None:
        if isinstance(exc, ApiError):
            return exc
        # Timeouts first: builtin TimeoutError is an OSError subclass.
        if isinstance(exc, self._transport.timeout_errors):
            return timeout_error()
        if isinstance(exc, self._transport.network_errors):
            return network_error(exc)
        return None

    async def _guarded(
        self,
        call: Coroutine,
        signal: CancellationSignal | None,
        timeout_ms: float | None,
    ):
        """Await ``call`` under the caller's signal and deadline, translating transport errors."""
        try:
            return await self._race(call, signal, timeout_ms)
        except ApiError:
            raise
        except Exception as e:
            err = self._translate(e)
            if err is None:
                raise
            raise err from e

    async def _race(self, call: Coroutine, signal: CancellationSignal | None, timeout_ms):
        if signal is None and timeout_ms is None:
            return await call
        if signal is not None and signal.cancelled:
            call.close()
            raise cancelled_error(signal.reason)

        work = asyncio.ensure_future(call)
        waiters: set[asyncio.Future] = {work}
        aborted = None
        if signal is not None:
            aborted = asyncio.ensure_future(signal.wait())
            waiters.add(aborted)
        deadline = timeout_ms / 1000 if timeout_ms is not None else None
        try:
            done, _ = await asyncio.wait(
                waiters, timeout=deadline, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            if aborted is not None:
                aborted.cancel()

        if work in done:
            return work.result()
        # Only this call's transport work is aborted; shared refreshes live elsewhere.
        work.cancel()
        await asyncio.gather(work, return_exceptions=True)
        if not done:
            raise timeout_error()
        raise cancelled_error(signal.reason if signal is not None else None)

    # ------------------------ refresh endpoint ------------------------
    async def _call_refresh_endpoint(self, refresh_token: str) -> Tokens:
        """POST the refresh token straight to the transport: no interceptors, no auth header."""
        url = self.build_url(self.settings.refresh_endpoint)
        content, headers = encode_body(
            {"refreshToken": refresh_token}, {"Accept": "application/json"}
        )
        resp = await self._guarded(self._transport.send("POST", url, headers, content), None, None)
        if not resp.is_success:
            raise http_error(resp)
        data = decode_body(resp)
        if not isinstance(data, dict):
            raise parse_error("Invalid refresh response", data)
        access = data.get("accessToken") or data.get("access_token")
        if not access:
            raise parse_error("Invalid refresh response", data)
        return Tokens(
            access_token=access,
            refresh_token=data.get("refreshToken") or data.get("refresh_token") or refresh_token,
            access_token_expires_at=_parse_timestamp(
                data.get("accessTokenExpiresAt", data.get("access_token_expires_at"))
            ),
            refresh_token_expires_at=_parse_timestamp(
                data.get("refreshTokenExpiresAt", data.get("refresh_token_expires_at"))
            ),
        )

    # ------------------------ streaming ------------------------
    async def stream_post(
        self,
        endpoint: str,
        body: Any = None,
        on_chunk: ChunkCallback | None = None,
        config: RequestConfig | None = None,
    ) -> None:
        """POST and feed each SSE ``data:`` / NDJSON line of the response to ``on_chunk``.

        Response interceptors do not run for streams. Auth refresh and error
        normalization behave as for ``request``.
        """
        config = config or RequestConfig()
        started = time.monotonic()
        url, spec, token = await self._prepare("POST", endpoint, body, config)
        failed = await self._guarded(self._consume(url, spec, on_chunk), spec.signal, config.timeout)

        if failed is not None and failed.status_code == 401 and not config.skip_auth_refresh:  # noqa: PLR2004, http status code can be constant
            if not await self._await_refresh(token, spec.signal, config.timeout):
                raise auth_error(failed)
            url, spec, token = await self._prepare("POST", endpoint, body, config)
            failed = await self._guarded(
                self._consume(url, spec, on_chunk), spec.signal, config.timeout
            )
            if failed is not None and failed.status_code == 401:  # noqa: PLR2004, http status code can be constant
                self.token_store.clear_tokens()
                raise auth_error(failed)

        if failed is not None:
            raise http_error(failed)
        self._logger.debug(
            f"stream done endpoint={endpoint} duration_ms={(time.monotonic() - started) * 1000:.0f}"
        )

    async def _consume(
        self, url: str, spec: RequestSpec, on_chunk: ChunkCallback | None
    ) -> httpx.Response | None:
        """Read the stream; returns a buffered error response instead of raising for non-2xx."""
        async with self._transport.stream(spec.method, url, spec.headers, spec.body) as resp:
            if not resp.is_success:
                return httpx.Response(
                    resp.status_code,
                    headers=strip_encoding_headers(resp.headers),
                    content=await resp.aread(),
                    request=resp.request,
                )
            async for line in resp.aiter_lines():
                ok, chunk = self._parse_stream_line(line)
                if ok and on_chunk is not None:
                    result = on_chunk(chunk)
                    if inspect.isawaitable(result):
                        await result
        return None

    def _parse_stream_line(self, line: str) -> tuple[bool, Any]:
        stripped = line.strip()
        # blank lines and SSE comments/fields carry no payload
        if not stripped or stripped.startswith(":") or stripped.startswith(_SSE_FIELDS):
            return False, None
        match = _SSE_DATA.match(stripped)
        payload = match.group(1) if match else stripped
        try:
            return True, json.loads(payload)
        except ValueError as e:
            self._logger.warning(f"skipping unparseable stream line {stripped[:100]!r}: {e}")
            return False, None
