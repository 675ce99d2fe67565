from unittest.mock import MagicMock

import aiohttp
import httpx
import pytest

from portcullis import AiohttpTransport, ApiClient, ApiError, ErrorKind, MultipartForm


class FakeContent:
    def __init__(self, chunks):
        self._chunks = chunks

    async def iter_any(self):
        for chunk in self._chunks:
            yield chunk


class FakeResponse:
    def __init__(self, status=200, headers=None, body=b"", chunks=None, reason="OK"):
        self.status = status
        self.headers = headers or {}
        self.reason = reason
        self._body = body
        self.content = FakeContent(chunks or [body])

    async def read(self):
        return self._body

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


def _session(response=None, error=None):
    session = MagicMock()
    if error is not None:
        session.request.side_effect = error
    else:
        session.request.return_value = response
    return session


@pytest.mark.asyncio
async def test_send_normalizes_into_httpx_response():
    session = _session(
        FakeResponse(
            200,
            {"Content-Type": "application/json", "Content-Encoding": "gzip", "Content-Length": "9"},
            b'{"a": 1}',
        )
    )
    transport = AiohttpTransport(session=session)
    resp = await transport.send("GET", "http://api.test/x", {"Accept": "application/json"}, None)
    assert isinstance(resp, httpx.Response)
    assert resp.status_code == 200  # noqa: PLR2004
    assert resp.json() == {"a": 1}
    assert "content-encoding" not in resp.headers
    args, kwargs = session.request.call_args
    assert args == ("GET", "http://api.test/x")
    assert kwargs["headers"] == {"Accept": "application/json"}


@pytest.mark.asyncio
async def test_multipart_becomes_form_data():
    session = _session(FakeResponse(200, {}, b""))
    transport = AiohttpTransport(session=session)
    form = MultipartForm().add_field("metadata", "{}").add_file("photo", b"img", "a.jpg", "image/jpeg")
    await transport.send("POST", "http://api.test/upload", {}, form)
    _, kwargs = session.request.call_args
    assert isinstance(kwargs["data"], aiohttp.FormData)


@pytest.mark.asyncio
async def test_client_over_aiohttp_maps_errors():
    transport = AiohttpTransport(session=_session(error=aiohttp.ClientConnectionError("refused")))
    client = ApiClient(base_url="http://api.test", transport=transport)
    with pytest.raises(ApiError) as exc_info:
        await client.get("/x")
    assert exc_info.value.code is ErrorKind.NETWORK_ERROR


@pytest.mark.asyncio
async def test_client_over_aiohttp_http_error():
    session = _session(FakeResponse(404, {"Content-Type": "text/plain"}, b"gone", reason="Not Found"))
    client = ApiClient(base_url="http://api.test", transport=AiohttpTransport(session=session))
    with pytest.raises(ApiError) as exc_info:
        await client.get("/x")
    assert exc_info.value.status == 404  # noqa: PLR2004
    assert exc_info.value.message == "gone"


@pytest.mark.asyncio
async def test_stream_lines_split_across_chunks():
    resp = FakeResponse(200, {}, chunks=[b'data: {"a"', b': 1}\n\ndata: {"b": 2}\r\n', b'{"c": 3}'])
    client = ApiClient(base_url="http://api.test", transport=AiohttpTransport(session=_session(resp)))
    chunks = []
    await client.stream_post("/chat", {}, chunks.append)
    assert chunks == [{"a": 1}, {"b": 2}, {"c": 3}]


@pytest.mark.asyncio
async def test_aclose_leaves_injected_session_open():
    session = _session(FakeResponse())
    transport = AiohttpTransport(session=session)
    await transport.aclose()
    session.close.assert_not_called()
