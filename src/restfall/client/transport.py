"""Transport executor -- sends resolved requests through :mod:`httpx`.

:class:`TransportExecutor` turns a
:class:`~restfall.client.builder.ResolvedRequest` into an
:class:`httpx.Request`, sends it, and either returns the fully read
:class:`httpx.Response` or raises one of two normalised failures:

* :class:`~restfall.exceptions.ConnectivityError` -- the host could not be
  reached at all (DNS, refused connection, connect timeout, proxy down).
  Only this category is eligible for offline cache fallback.
* :class:`~restfall.exceptions.ProtocolError` -- everything else that goes
  wrong at the transport level (read timeouts, broken responses).

HTTP status codes are *not* interpreted here; a 500 is a successful
transport exchange and is judged by the response processor.

Uploads stream their multipart body through :class:`_ProgressStream`, which
reports ``(bytes_sent, total_bytes)`` after every chunk and stops writing
as soon as the request is cancelled.
"""

from __future__ import annotations

import queue
import threading
from typing import Any, Callable, Iterator, NamedTuple, Optional

import httpx

from restfall.client.builder import ResolvedRequest, form_pairs
from restfall.exceptions import ConnectivityError, ProtocolError, RequestCancelledError

CONNECTIVITY_ERRORS = (httpx.ConnectError, httpx.ConnectTimeout, httpx.ProxyError)


class ProgressSample(NamedTuple):
    """One upload progress report."""

    bytes_sent: int
    total_bytes: Optional[int]


class UploadProgress:
    """Finite, single-pass sequence of :class:`ProgressSample` for one upload.

    Iterating blocks until the next sample arrives and stops once the upload
    has finished, failed or been cancelled. Once exhausted it stays
    exhausted.

    Example::

        task = client.perform_upload(spec, on_done)
        for sample in task.progress:
            print(f"{sample.bytes_sent}/{sample.total_bytes}")
    """

    _END = object()

    def __init__(self) -> None:
        self._queue: queue.SimpleQueue[Any] = queue.SimpleQueue()
        self._exhausted = False
        self._finished = False
        self._lock = threading.Lock()

    def push(self, sample: ProgressSample) -> None:
        with self._lock:
            if not self._finished:
                self._queue.put(sample)

    def finish(self) -> None:
        """Close the sequence; later samples are discarded."""
        with self._lock:
            if not self._finished:
                self._finished = True
                self._queue.put(self._END)

    def __iter__(self) -> Iterator[ProgressSample]:
        return self

    def __next__(self) -> ProgressSample:
        if self._exhausted:
            raise StopIteration
        item = self._queue.get()
        if item is self._END:
            self._exhausted = True
            raise StopIteration
        return item


class _ProgressStream(httpx.SyncByteStream):
    """Wraps a request body stream to report progress and honour cancellation."""

    def __init__(
        self,
        inner: httpx.SyncByteStream,
        total: Optional[int],
        on_progress: Callable[[ProgressSample], None],
        cancel_event: threading.Event,
    ) -> None:
        self._inner = inner
        self._total = total
        self._on_progress = on_progress
        self._cancel_event = cancel_event

    def __iter__(self) -> Iterator[bytes]:
        sent = 0
        for chunk in self._inner:
            if self._cancel_event.is_set():
                raise RequestCancelledError("Upload cancelled")
            sent += len(chunk)
            yield chunk
            self._on_progress(ProgressSample(sent, self._total))

    def close(self) -> None:
        self._inner.close()


class TransportExecutor:
    """Sends resolved requests over a shared :class:`httpx.Client`.

    The underlying client is safe to share between the worker threads of an
    :class:`~restfall.client.client.ApiClient`.

    Args:
        transport: Optional :class:`httpx.BaseTransport`, e.g. an
            :class:`httpx.MockTransport` in tests.
        client: An already configured :class:`httpx.Client` to use instead
            of creating one. It is closed by :meth:`close`.
    """

    def __init__(
        self,
        transport: Optional[httpx.BaseTransport] = None,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._client = client or httpx.Client(transport=transport, follow_redirects=True)

    def execute(
        self,
        request: ResolvedRequest,
        cancel_event: Optional[threading.Event] = None,
        on_progress: Optional[Callable[[ProgressSample], None]] = None,
    ) -> httpx.Response:
        """Send *request* and return the fully read response.

        Args:
            request: The resolved request.
            cancel_event: When set, no further I/O is started and uploads
                stop between chunks.
            on_progress: Upload progress callback (uploads only).

        Raises:
            ConnectivityError: The host could not be reached.
            ProtocolError: Any other transport failure.
            RequestCancelledError: The request was cancelled.
        """
        cancel_event = cancel_event or threading.Event()
        if cancel_event.is_set():
            raise RequestCancelledError("Request cancelled before sending")

        http_request = self._build(request)
        if request.is_upload and on_progress is not None:
            length = http_request.headers.get("Content-Length")
            http_request.stream = _ProgressStream(
                http_request.stream,  # type: ignore[arg-type]
                int(length) if length else None,
                on_progress,
                cancel_event,
            )

        try:
            return self._client.send(http_request)
        except RequestCancelledError:
            raise
        except CONNECTIVITY_ERRORS as exc:
            raise ConnectivityError(f"Cannot reach {request.url}: {exc}") from exc
        except httpx.HTTPError as exc:
            raise ProtocolError(f"Transport failure for {request.url}: {exc}") from exc

    def _build(self, request: ResolvedRequest) -> httpx.Request:
        timeout = httpx.Timeout(request.configuration.timeout)
        if request.upload is not None:
            upload = request.upload
            return self._client.build_request(
                request.method,
                request.full_url,
                headers=dict(request.headers),
                data=_multipart_fields(request),
                files={upload.field_name: (upload.filename, upload.data, upload.mime_type)},
                timeout=timeout,
            )
        return self._client.build_request(
            request.method,
            request.full_url,
            headers=dict(request.headers),
            content=request.content,
            timeout=timeout,
        )

    def close(self) -> None:
        self._client.close()


def _multipart_fields(request: ResolvedRequest) -> dict[str, Any]:
    fields: dict[str, Any] = {}
    for name, value in form_pairs(request.form_fields):
        if name in fields:
            existing = fields[name]
            fields[name] = existing + [value] if isinstance(existing, list) else [existing, value]
        else:
            fields[name] = value
    return fields
