import asyncio
import codecs
import contextlib
from collections.abc import AsyncIterator, Mapping
from typing import Any, Protocol

import httpx

from .codec import MultipartForm


class Transport(Protocol):
    """What ApiClient needs from an HTTP library.

    ``timeout_errors`` / ``network_errors`` are the library's exception types
    the client translates into TIMEOUT / NETWORK_ERROR.
    """

    timeout_errors: tuple[type[BaseException], ...]
    network_errors: tuple[type[BaseException], ...]

    async def send(
        self, method: str, url: str, headers: Mapping[str, str], content: Any
    ) -> httpx.Response: ...

    def stream(
        self, method: str, url: str, headers: Mapping[str, str], content: Any
    ) -> contextlib.AbstractAsyncContextManager: ...

    async def aclose(self) -> None: ...


# ---------- httpx (default) ----------
class HttpxTransport:
    timeout_errors = (httpx.TimeoutException, asyncio.TimeoutError)
    network_errors = (httpx.TransportError, OSError)

    def __init__(self, client: httpx.AsyncClient | None = None, timeout: float = 30.0):
        self.client = client
        self.timeout = timeout
        self._own_client = client is None

    def _client(self) -> httpx.AsyncClient:
        if self.client is None:
            self.client = httpx.AsyncClient(timeout=self.timeout)
        return self.client

    def _build(self, method, url, headers, content) -> httpx.Request:
        client = self._client()
        if isinstance(content, MultipartForm):
            # (None, value) renders a plain form field; httpx picks the boundary.
            files = [(n, (None, v.encode("utf-8"))) for n, v in content.fields]
            for n, f in content.files:
                if f.content_type:
                    files.append((n, (f.filename, f.content, f.content_type)))
                else:
                    files.append((n, (f.filename, f.content)))
            return client.build_request(method, url, headers=dict(headers), files=files)
        return client.build_request(method, url, headers=dict(headers), content=content)

    async def send(self, method, url, headers, content) -> httpx.Response:
        request = self._build(method, url, headers, content)
        return await self._client().send(request)

    @contextlib.asynccontextmanager
    async def stream(self, method, url, headers, content) -> AsyncIterator[httpx.Response]:
        request = self._build(method, url, headers, content)
        resp = await self._client().send(request, stream=True)
        try:
            yield resp
        finally:
            await resp.aclose()

    async def aclose(self) -> None:
        if self._own_client and self.client is not None:
            with contextlib.suppress(Exception):
                await self.client.aclose()
            self.client = None


# ---------- aiohttp (async) ----------
class _AiohttpStreamResponse:
    """Line iterator over an aiohttp response, shaped like httpx's streaming API."""

    def __init__(self, resp, request: httpx.Request):
        self._resp = resp
        self.status_code = resp.status
        self.headers = httpx.Headers(list(resp.headers.items()))
        self.reason_phrase = resp.reason or ""
        self.request = request

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300  # noqa: PLR2004

    async def aread(self) -> bytes:
        return await self._resp.read()

    async def aiter_lines(self) -> AsyncIterator[str]:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        buffer = ""
        async for chunk in self._resp.content.iter_any():
            buffer += decoder.decode(chunk)
            *lines, buffer = buffer.split("\n")
            for line in lines:
                yield line.rstrip("\r")
        buffer += decoder.decode(b"", final=True)
        if buffer:
            yield buffer


class AiohttpTransport:
    """aiohttp-backed transport; responses are normalized into httpx.Response."""

    timeout_errors = (asyncio.TimeoutError,)

    def __init__(self, session=None):
        import aiohttp  # noqa: PLC0415

        self._aiohttp = aiohttp
        self.session = session
        self._own_session = session is None
        self.network_errors = (aiohttp.ClientError, OSError)

    def _session(self):
        if self.session is None:
            self.session = self._aiohttp.ClientSession()
        return self.session

    def _data(self, content):
        if not isinstance(content, MultipartForm):
            return content
        form = self._aiohttp.FormData()
        for name, value in content.parts:
            if isinstance(value, str):
                form.add_field(name, value)
            else:
                form.add_field(
                    name,
                    value.content,
                    filename=value.filename,
                    content_type=value.content_type,
                )
        return form

    async def send(self, method, url, headers, content) -> httpx.Response:
        request = httpx.Request(method, url, headers=dict(headers))
        async with self._session().request(
            method, url, headers=dict(headers), data=self._data(content)
        ) as resp:
            body = await resp.read()
            return httpx.Response(
                resp.status,
                headers=strip_encoding_headers(resp.headers),
                content=body,
                request=request,
            )

    @contextlib.asynccontextmanager
    async def stream(self, method, url, headers, content) -> AsyncIterator[_AiohttpStreamResponse]:
        request = httpx.Request(method, url, headers=dict(headers))
        async with self._session().request(
            method, url, headers=dict(headers), data=self._data(content)
        ) as resp:
            yield _AiohttpStreamResponse(resp, request)

    async def aclose(self) -> None:
        if self._own_session and self.session is not None:
            await self.session.close()
            self.session = None


def strip_encoding_headers(headers) -> list[tuple[str, str]]:
    # aiohttp has already decompressed the body; keeping these would make httpx decode twice.
    drop = {"content-encoding", "content-length", "transfer-encoding"}
    return [(k, v) for k, v in headers.items() if k.lower() not in drop]
