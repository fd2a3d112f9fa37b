"""API client with offline cache fallback.

:class:`ApiClient` is the facade of the library. For every call it:

1. takes the current configuration snapshot and resolves the
   :class:`~restfall.client.builder.RequestSpec` (build errors are raised
   immediately, nothing is sent);
2. runs the exchange on its worker pool, one request per worker;
3. on a connectivity failure under ``CacheManagement.OFFLINE``, serves the
   stored response for the same cache key if there is one;
4. processes the response (content type, decoding, error hook);
5. stores successful responses when offline caching is enabled (uploads
   are never stored or served from the cache);
6. delivers the :class:`~restfall.client.response.ResponseResult` exactly
   once on the completion context.

Requests are independent: no ordering holds between two requests, but each
request's own steps run strictly in sequence. Retries are left to the
caller.

Example::

    from restfall import ApiClient, CacheManagement, ClientConfiguration, RequestSpec

    config = ClientConfiguration(
        host="https://api.example.com",
        api_path="/v1",
        cache_management=CacheManagement.OFFLINE,
    )
    with ApiClient(config) as client:
        result = client.execute(RequestSpec("GET", "users", {"page": 2}))
        users = result.raise_for_error()
"""

from __future__ import annotations

import asyncio
import base64
import dataclasses
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Optional

import httpx

from restfall.cache.cache import CachedEntry, CacheStore, MemoryCacheStore
from restfall.client.builder import RequestSpec, ResolvedRequest, resolve
from restfall.client.dispatch import Completion, Dispatcher, ProgressCallback, RequestTask
from restfall.client.response import (
    ResponseResult,
    process_cached_entry,
    process_response,
    process_transport_error,
)
from restfall.client.transport import ProgressSample, TransportExecutor, UploadProgress
from restfall.config import ConfigurationStore
from restfall.context import AsyncioContext, CompletionContext, default_completion_context
from restfall.exceptions import (
    ConfigurationError,
    ConnectivityError,
    ProtocolError,
    RequestCancelledError,
)
from restfall.hooks import ClientHooks, ErrorHook, ErrorListener, HookRunner
from restfall.models import (
    CacheManagement,
    ClientConfiguration,
    Configurator,
    LogLevel,
    RequestOverrides,
)
from restfall.output import get_output, log_request, log_response


def _ignore_result(result: ResponseResult) -> None:
    pass


class ApiClient:
    """REST API client with offline cache fallback.

    Must be closed after use, preferably as a context manager, so the
    worker pool, the HTTP connection pool and the cache are released.

    Args:
        configuration: Initial client configuration.
        cache: Store used for offline fallback. Defaults to an in-memory
            :class:`~restfall.cache.cache.MemoryCacheStore`.
        transport: Optional :class:`httpx.BaseTransport` (e.g. a
            :class:`httpx.MockTransport` in tests).
        error_hook: Error-customisation strategy, see :mod:`restfall.hooks`.
        on_error: Notification for every failed result.
        max_workers: Size of the request worker pool.
    """

    def __init__(
        self,
        configuration: Optional[ClientConfiguration] = None,
        *,
        cache: Optional[CacheStore] = None,
        transport: Optional[httpx.BaseTransport] = None,
        error_hook: Optional[ErrorHook] = None,
        on_error: Optional[ErrorListener] = None,
        max_workers: Optional[int] = None,
    ) -> None:
        self._store = ConfigurationStore(configuration)
        self._cache = cache if cache is not None else MemoryCacheStore()
        self._transport = TransportExecutor(transport=transport)
        hooks = ClientHooks()
        if error_hook is not None:
            hooks = dataclasses.replace(hooks, error_for_response=error_hook)
        if on_error is not None:
            hooks = dataclasses.replace(hooks, did_receive_error=on_error)
        self._hooks = HookRunner(hooks)
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="restfall-request")
        self._dispatcher = Dispatcher()
        self._closed = False

    @classmethod
    def from_host(cls, host: str, api_path: Optional[str] = None, **kwargs: Any) -> ApiClient:
        """Create a client from just a host and an optional API path."""
        return cls(ClientConfiguration(host=host, api_path=api_path), **kwargs)

    @classmethod
    def configured(cls, configurator: Callable[[Configurator], None], **kwargs: Any) -> ApiClient:
        """Create a client whose configuration is filled in by *configurator*.

        Example::

            def setup(c):
                c.host = "https://api.example.com"
                c.cache_management = CacheManagement.OFFLINE

            client = ApiClient.configured(setup)
        """
        draft = Configurator()
        configurator(draft)
        return cls(draft.build(), **kwargs)

    # ------------------------------------------------------------------ #
    # Context manager
    # ------------------------------------------------------------------ #

    def __enter__(self) -> ApiClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def close(self) -> None:
        """Wait for in-flight requests, then release pools and the cache."""
        if self._closed:
            return
        self._closed = True
        self._pool.shutdown(wait=True)
        self._transport.close()
        self._cache.close()

    # ------------------------------------------------------------------ #
    # Configuration
    # ------------------------------------------------------------------ #

    @property
    def configuration(self) -> ClientConfiguration:
        """The current configuration snapshot."""
        return self._store.snapshot()

    @property
    def host(self) -> Optional[str]:
        return self.configuration.host

    @property
    def api_path(self) -> Optional[str]:
        return self.configuration.api_path

    @property
    def cache_management(self) -> CacheManagement:
        return self.configuration.cache_management

    @property
    def completion_context(self) -> CompletionContext:
        """Where results are delivered unless a request overrides it."""
        return self.configuration.completion_context or default_completion_context()

    @property
    def log_level(self) -> LogLevel:
        return self.configuration.log_level

    @log_level.setter
    def log_level(self, value: LogLevel) -> None:
        self.reconfigure(log_level=value)

    @property
    def cache(self) -> CacheStore:
        return self._cache

    @property
    def hooks(self) -> ClientHooks:
        return self._hooks.hooks

    @hooks.setter
    def hooks(self, hooks: ClientHooks) -> None:
        # Requests already submitted keep the runner they started with.
        self._hooks = HookRunner(hooks)

    def reconfigure(
        self,
        configuration: Optional[ClientConfiguration] = None,
        **changes: Any,
    ) -> ClientConfiguration:
        """Atomically install a new configuration.

        Pass a complete :class:`ClientConfiguration` to replace the current
        one, or keyword *changes* to derive a copy. Requests already in
        flight keep the snapshot they started with.

        Raises:
            ConfigurationError: If the changes produce an invalid configuration.
        """
        if configuration is not None:
            return self._store.replace(configuration, **changes)
        return self._store.update(**changes)

    def configure(self, configurator: Callable[[Configurator], None]) -> ClientConfiguration:
        """Edit a draft of the current configuration and install it atomically."""
        return self._store.configure(configurator)

    # ------------------------------------------------------------------ #
    # Authorization
    # ------------------------------------------------------------------ #

    def set_bearer_token(self, token: Optional[str]) -> None:
        """Send ``Authorization: Bearer <token>``; ``None`` removes the header."""
        self.reconfigure(authorization_header=f"Bearer {token}" if token else None)

    def set_basic_auth(self, username: Optional[str], password: Optional[str]) -> None:
        """Send HTTP Basic credentials; if either value is ``None`` the header is removed."""
        if username is None or password is None:
            self.remove_authorization_headers()
            return
        encoded = base64.b64encode(f"{username}:{password}".encode("utf-8")).decode("ascii")
        self.reconfigure(authorization_header=f"Basic {encoded}")

    def remove_authorization_headers(self) -> None:
        self.reconfigure(authorization_header=None)

    # ------------------------------------------------------------------ #
    # Requests
    # ------------------------------------------------------------------ #

    def resolve(self, spec: RequestSpec) -> ResolvedRequest:
        """Resolve *spec* against the current configuration without sending it."""
        return resolve(spec, self._store.snapshot())

    def perform(self, spec: RequestSpec, completion: Completion) -> RequestTask:
        """Submit a request; *completion* receives the result on the completion context.

        Raises:
            ConfigurationError: If the request cannot be built.
            SerializationError: If the request body cannot be encoded.
        """
        return self._submit(spec, completion, None)

    def perform_upload(
        self,
        spec: RequestSpec,
        completion: Completion,
        progress: Optional[ProgressCallback] = None,
    ) -> RequestTask:
        """Submit a multipart upload.

        Progress samples are available from ``task.progress`` and, when
        *progress* is given, are also delivered to it on the completion
        context.
        """
        if not spec.is_upload:
            raise ConfigurationError("perform_upload requires a RequestSpec with an upload payload")
        return self._submit(spec, completion, progress)

    def execute(self, spec: RequestSpec, timeout: Optional[float] = None) -> ResponseResult:
        """Send *spec* and block until its result is available.

        Raises:
            TimeoutError: If no result arrives within *timeout*; the request
                is cancelled first.
        """
        task = self.perform(spec, _ignore_result)
        try:
            return task.result(timeout)
        except TimeoutError:
            task.cancel()
            raise

    async def fetch(self, spec: RequestSpec) -> ResponseResult:
        """Await the result of *spec* from within an asyncio loop.

        The result is delivered on the running loop. Cancelling the awaiting
        coroutine cancels the request.
        """
        loop = asyncio.get_running_loop()
        future: asyncio.Future[ResponseResult] = loop.create_future()

        def complete(result: ResponseResult) -> None:
            if not future.done():
                future.set_result(result)

        context = AsyncioContext(loop)
        overrides = (spec.overrides or RequestOverrides()).model_copy(
            update={"completion_context": context}
        )
        task = self.perform(dataclasses.replace(spec, overrides=overrides), complete)
        try:
            return await future
        except asyncio.CancelledError:
            task.cancel()
            raise

    def get(self, path: str, completion: Completion = _ignore_result, **kwargs: Any) -> RequestTask:
        """Submit a GET request. Extra keyword arguments go to :class:`RequestSpec`."""
        return self.perform(RequestSpec("GET", path, **kwargs), completion)

    def post(self, path: str, completion: Completion = _ignore_result, **kwargs: Any) -> RequestTask:
        """Submit a POST request."""
        return self.perform(RequestSpec("POST", path, **kwargs), completion)

    def put(self, path: str, completion: Completion = _ignore_result, **kwargs: Any) -> RequestTask:
        """Submit a PUT request."""
        return self.perform(RequestSpec("PUT", path, **kwargs), completion)

    def patch(self, path: str, completion: Completion = _ignore_result, **kwargs: Any) -> RequestTask:
        """Submit a PATCH request."""
        return self.perform(RequestSpec("PATCH", path, **kwargs), completion)

    def delete(self, path: str, completion: Completion = _ignore_result, **kwargs: Any) -> RequestTask:
        """Submit a DELETE request."""
        return self.perform(RequestSpec("DELETE", path, **kwargs), completion)

    # ------------------------------------------------------------------ #
    # Cache maintenance
    # ------------------------------------------------------------------ #

    def invalidate_cache(self, spec: RequestSpec) -> None:
        """Drop the stored response for *spec*, if any."""
        self._cache.invalidate(self.resolve(spec).cache_key)

    def clear_cache(self) -> None:
        self._cache.clear()

    # ------------------------------------------------------------------ #
    # Pipeline
    # ------------------------------------------------------------------ #

    def _submit(
        self,
        spec: RequestSpec,
        completion: Completion,
        progress: Optional[ProgressCallback],
    ) -> RequestTask:
        if self._closed:
            raise RuntimeError("ApiClient is closed")
        request = resolve(spec, self._store.snapshot())
        context = request.configuration.completion_context or default_completion_context()
        task = RequestTask(request, UploadProgress() if request.is_upload else None)
        task.attach(self._pool.submit(self._run, task, self._hooks, context, completion, progress))
        return task

    def _run(
        self,
        task: RequestTask,
        hooks: HookRunner,
        context: CompletionContext,
        completion: Completion,
        progress: Optional[ProgressCallback],
    ) -> None:
        request = task.request
        started = time.monotonic()
        try:
            result = self._exchange(task, hooks, context, progress)
        except RequestCancelledError:
            get_output().debug(f"Cancelled {request.method} {request.url}")
            return
        except Exception as exc:
            result = ResponseResult.failure(request, exc)
        finally:
            if task.progress is not None:
                task.progress.finish()

        if task.cancelled:
            get_output().debug(f"Dropped late result for cancelled {request.method} {request.url}")
            return
        if result.is_failure:
            hooks.run_did_receive_error(result)
        if LogLevel.RESPONSES in request.configuration.log_level:
            log_response(result, time.monotonic() - started)
        task.complete(result)
        self._dispatcher.deliver(task, context, completion, result)

    def _exchange(
        self,
        task: RequestTask,
        hooks: HookRunner,
        context: CompletionContext,
        progress: Optional[ProgressCallback],
    ) -> ResponseResult:
        request = task.request
        config = request.configuration
        if LogLevel.REQUESTS in config.log_level:
            log_request(request)

        on_progress: Optional[Callable[[ProgressSample], None]] = None
        if task.progress is not None:
            upload_progress = task.progress

            def report(sample: ProgressSample) -> None:
                upload_progress.push(sample)
                if progress is not None:
                    self._dispatcher.progress(task, context, progress, sample)

            on_progress = report

        try:
            response = self._transport.execute(request, task.cancel_event, on_progress)
        except ConnectivityError as exc:
            if config.cache_management is CacheManagement.OFFLINE and not request.is_upload:
                entry = self._cache.get(request.cache_key)
                if entry is not None:
                    get_output().debug(f"Offline: serving {request.method} {request.url} from cache")
                    return process_cached_entry(entry, request)
                get_output().debug(f"Offline: no cached response for {request.method} {request.url}")
            return process_transport_error(exc, request, hooks)
        except ProtocolError as exc:
            return process_transport_error(exc, request, hooks)

        result = process_response(response, request, hooks)
        if (
            result.is_success
            and config.cache_management is CacheManagement.OFFLINE
            and not request.is_upload
            and not task.cancelled
        ):
            self._store_response(request, response)
        return result

    def _store_response(self, request: ResolvedRequest, response: httpx.Response) -> None:
        key = request.cache_key
        entry = CachedEntry(
            key=key,
            body=response.content,
            status_code=response.status_code,
            headers=dict(response.headers),
        )
        try:
            self._cache.put(key, entry)
        except Exception as exc:
            get_output().warning(f"Could not cache {request.method} {request.url}: {exc}")
