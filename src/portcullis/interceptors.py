import inspect
import logging
from collections.abc import Awaitable
from typing import Callable, Union

import httpx

from .codec import MultipartForm
from .types import RequestSpec

logger = logging.getLogger("portcullis")

RequestInterceptor = Callable[
    [str, RequestSpec],
    Union[tuple[str, RequestSpec], Awaitable[tuple[str, RequestSpec]]],
]
ResponseInterceptor = Callable[
    [httpx.Response], Union[httpx.Response, Awaitable[httpx.Response]]
]


async def _resolve(value):
    if inspect.isawaitable(value):
        return await value
    return value


class InterceptorPipeline:
    """Two ordered interceptor lists, applied by sequential reduction.

    Registration is not deduplicated: adding the same function twice runs it twice.
    """

    def __init__(self):
        self._request: list[RequestInterceptor] = []
        self._response: list[ResponseInterceptor] = []

    def add_request_interceptor(self, fn: RequestInterceptor) -> None:
        self._request.append(fn)

    def add_response_interceptor(self, fn: ResponseInterceptor) -> None:
        self._response.append(fn)

    def remove_request_interceptor(self, fn: RequestInterceptor) -> None:
        self._request.remove(fn)

    def remove_response_interceptor(self, fn: ResponseInterceptor) -> None:
        self._response.remove(fn)

    @property
    def request_interceptors(self) -> tuple[RequestInterceptor, ...]:
        return tuple(self._request)

    @property
    def response_interceptors(self) -> tuple[ResponseInterceptor, ...]:
        return tuple(self._response)

    async def apply_request(self, url: str, spec: RequestSpec) -> tuple[str, RequestSpec]:
        # Snapshot so an interceptor registering another mid-flight doesn't affect this request
        for fn in list(self._request):
            result = await _resolve(fn(url, spec))
            if not (isinstance(result, tuple) and len(result) == 2):  # noqa: PLR2004
                raise TypeError(
                    f"request interceptor {fn!r} must return a (url, RequestSpec) pair"
                )
            url, spec = result
        return url, spec

    async def apply_response(self, response: httpx.Response) -> httpx.Response:
        for fn in list(self._response):
            response = await _resolve(fn(response))
            if response is None:
                raise TypeError(f"response interceptor {fn!r} returned None")
        return response


# ---------- logging helpers (register like any other interceptor) ----------


def logging_request_interceptor(url: str, spec: RequestSpec) -> tuple[str, RequestSpec]:
    if logger.isEnabledFor(logging.DEBUG):
        if spec.body is None:
            body = "-"
        elif isinstance(spec.body, MultipartForm):
            body = f"multipart parts={len(spec.body.parts)}"
        else:
            body = f"{len(spec.body)} bytes"
        logger.debug(f"API {spec.method} request url={url} body={body}")
    return url, spec


def logging_response_interceptor(response: httpx.Response) -> httpx.Response:
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(
            f"API {response.status_code} response status_text={response.reason_phrase} "
            f"content_type={response.headers.get('content-type', 'N/A')}"
        )
    return response
