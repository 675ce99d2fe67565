import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Union

import httpx

logger = logging.getLogger("portcullis")

JSON_CONTENT_TYPE = "application/json"


@dataclass
class FormFile:
    content: bytes
    filename: str | None = None
    content_type: str | None = None


@dataclass
class MultipartForm:
    """Multipart/binary form container.

    Passed through the codec untouched; the transport renders it and sets the
    multipart boundary itself, so no Content-Type header may accompany it.
    """

    parts: list[tuple[str, Union[str, FormFile]]] = field(default_factory=list)

    def add_field(self, name: str, value: Any) -> "MultipartForm":
        self.parts.append((name, value if isinstance(value, str) else str(value)))
        return self

    def add_file(
        self,
        name: str,
        content: Union[bytes, str],
        filename: str | None = None,
        content_type: str | None = None,
    ) -> "MultipartForm":
        if isinstance(content, str):
            content = content.encode("utf-8")
        self.parts.append((name, FormFile(content, filename, content_type)))
        return self

    @property
    def fields(self) -> list[tuple[str, str]]:
        return [(n, v) for n, v in self.parts if isinstance(v, str)]

    @property
    def files(self) -> list[tuple[str, FormFile]]:
        return [(n, v) for n, v in self.parts if isinstance(v, FormFile)]


def find_header(headers: Mapping[str, Any], name: str) -> str | None:
    """Return the actual key in ``headers`` matching ``name`` case-insensitively."""
    lname = name.lower()
    for k in headers:
        if k.lower() == lname:
            return k
    return None


def without_header(headers: Mapping[str, str], name: str) -> dict[str, str]:
    lname = name.lower()
    return {k: v for k, v in headers.items() if k.lower() != lname}


def encode_body(body: Any, headers: Mapping[str, str]) -> tuple[Any, dict[str, str]]:
    """Serialize an outgoing body; returns (content, headers) without touching the inputs."""
    out = dict(headers)
    if body is None:
        return None, out
    if isinstance(body, MultipartForm):
        return body, without_header(out, "Content-Type")
    if isinstance(body, (bytes, bytearray)):
        return bytes(body), out
    content = json.dumps(body).encode("utf-8")
    if find_header(out, "Content-Type") is None:
        out["Content-Type"] = JSON_CONTENT_TYPE
    return content, out


def is_json_content_type(content_type: str | None) -> bool:
    if not content_type:
        return False
    media = content_type.split(";", 1)[0].strip().lower()
    return media == JSON_CONTENT_TYPE or media.endswith("+json")


def decode_body(response: httpx.Response) -> Any:
    """Parse a successful response body according to its declared content type."""
    raw = response.content
    if not raw:
        return None
    if not is_json_content_type(response.headers.get("content-type")):
        return raw
    try:
        return json.loads(raw)
    except ValueError as e:
        # Claimed JSON but isn't; hand back text rather than failing the call.
        logger.warning(f"PARSE_ERROR decoding JSON body status={response.status_code}: {e}")
        return response.text


def status_text(response: httpx.Response) -> str:
    return response.reason_phrase or "Request failed"


def parse_error_body(response: httpx.Response) -> tuple[str, Any]:
    """Return (message, details) for a non-2xx response. Never raises."""
    fallback = status_text(response)
    raw = response.content
    if not raw:
        return fallback, None
    try:
        text = raw.decode(response.encoding or "utf-8", errors="replace")
    except LookupError:
        text = raw.decode("utf-8", errors="replace")
    try:
        body = json.loads(text)
    except ValueError:
        return (text.strip() or fallback), None
    if isinstance(body, dict):
        for key in ("message", "detail"):
            value = body.get(key)
            # scalars only; nested objects stay in details
            if isinstance(value, (str, int, float)) and value != "":
                return str(value), body
        return fallback, body
    return (text.strip() or fallback), body
