"""restfall -- a REST API client that falls back to cached responses when offline.

Callers describe requests with :class:`RequestSpec`; an :class:`ApiClient`
merges them with its :class:`ClientConfiguration` (host, API path, headers,
authorization, language, serializers), sends them concurrently over
:mod:`httpx`, and delivers one :class:`ResponseResult` per request on a
chosen completion context. With ``CacheManagement.OFFLINE`` successful
responses are stored and replayed when the network cannot be reached.

Typical use::

    from restfall import ApiClient, CacheManagement, ClientConfiguration, RequestSpec

    client = ApiClient(ClientConfiguration(
        host="https://api.example.com",
        cache_management=CacheManagement.OFFLINE,
    ))
    client.perform(RequestSpec("GET", "users"), lambda result: print(result.body))

Modules:
    client: The request pipeline and the :class:`ApiClient` facade.
    cache: Cache keys and response stores.
    models: Pydantic configuration models and enumerations.
    config: Configuration store, files and precedence resolution.
    context: Completion contexts.
    hooks: Error-customisation and error-notification hooks.
    exceptions: Exception hierarchy.
    output: Diagnostic output on stderr.
"""

from restfall.cache import CachedEntry, CacheStore, DiskCacheStore, MemoryCacheStore
from restfall.client import (
    ApiClient,
    ProgressSample,
    RequestSpec,
    RequestTask,
    ResolvedRequest,
    ResponseResult,
    UploadPayload,
)
from restfall.context import (
    AsyncioContext,
    CompletionContext,
    ExecutorContext,
    InlineContext,
    SerialContext,
)
from restfall.exceptions import (
    ConfigurationError,
    ConnectivityError,
    ProtocolError,
    RequestCancelledError,
    RestfallError,
    SerializationError,
    ValidationError,
)
from restfall.hooks import ClientHooks
from restfall.models import (
    CacheManagement,
    ClientConfiguration,
    LogLevel,
    RequestOverrides,
    RequestSerializer,
    ResponseSerializer,
)

__version__ = "0.1.0"

__all__ = [
    "ApiClient",
    "AsyncioContext",
    "CacheManagement",
    "CacheStore",
    "CachedEntry",
    "ClientConfiguration",
    "ClientHooks",
    "CompletionContext",
    "ConfigurationError",
    "ConnectivityError",
    "DiskCacheStore",
    "ExecutorContext",
    "InlineContext",
    "LogLevel",
    "MemoryCacheStore",
    "ProgressSample",
    "ProtocolError",
    "RequestCancelledError",
    "RequestOverrides",
    "RequestSerializer",
    "RequestSpec",
    "RequestTask",
    "ResolvedRequest",
    "ResponseResult",
    "ResponseSerializer",
    "RestfallError",
    "SerialContext",
    "SerializationError",
    "UploadPayload",
    "ValidationError",
]
