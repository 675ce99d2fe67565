from .client import ApiClient
from .codec import FormFile, MultipartForm, decode_body, encode_body
from .env import load_settings_from_env
from .errors import ApiError, ErrorKind
from .interceptors import (
    InterceptorPipeline,
    logging_request_interceptor,
    logging_response_interceptor,
)
from .refresh import RefreshCoordinator
from .signals import CancellationSignal
from .tokens import TokenStore
from .transports import AiohttpTransport, HttpxTransport, Transport
from .types import ApiResponse, ClientSettings, RequestConfig, RequestSpec, Tokens

__all__ = [
    "ApiClient",
    "ApiResponse",
    "ApiError",
    "ErrorKind",
    "ClientSettings",
    "RequestConfig",
    "RequestSpec",
    "Tokens",
    "TokenStore",
    "RefreshCoordinator",
    "CancellationSignal",
    "InterceptorPipeline",
    "logging_request_interceptor",
    "logging_response_interceptor",
    "MultipartForm",
    "FormFile",
    "encode_body",
    "decode_body",
    "Transport",
    "HttpxTransport",
    "AiohttpTransport",
    "load_settings_from_env",
]
