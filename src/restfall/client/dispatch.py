"""Result delivery -- request handles and the dispatcher.

A :class:`RequestTask` is returned for every submitted request. It lets the
caller cancel, wait for the result, and follow upload progress.

The :class:`Dispatcher` hands results to the request's
:class:`~restfall.context.CompletionContext`. Delivery is claimed on the
context itself, right before the callback runs, so:

* each task's completion callback runs **at most once**;
* a task cancelled after its result was scheduled, but before the callback
  ran, is still suppressed.
"""

from __future__ import annotations

import threading
from concurrent.futures import Future
from typing import TYPE_CHECKING, Callable, Optional

from restfall.client.builder import ResolvedRequest
from restfall.client.transport import ProgressSample, UploadProgress
from restfall.context import CompletionContext
from restfall.exceptions import RequestCancelledError
from restfall.output import get_output

if TYPE_CHECKING:
    from restfall.client.response import ResponseResult

Completion = Callable[["ResponseResult"], None]
ProgressCallback = Callable[[ProgressSample], None]


class RequestTask:
    """Handle on one in-flight request.

    Args:
        request: The resolved request being executed.
        progress: Upload progress sequence (uploads only).
    """

    def __init__(self, request: ResolvedRequest, progress: Optional[UploadProgress] = None) -> None:
        self._request = request
        self._progress = progress
        self._cancel_event = threading.Event()
        self._finished = threading.Event()
        self._lock = threading.Lock()
        self._result: Optional[ResponseResult] = None
        self._delivered = False
        self._future: Optional[Future[None]] = None

    @property
    def request(self) -> ResolvedRequest:
        return self._request

    @property
    def progress(self) -> Optional[UploadProgress]:
        return self._progress

    @property
    def cancel_event(self) -> threading.Event:
        return self._cancel_event

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    @property
    def delivered(self) -> bool:
        return self._delivered

    def done(self) -> bool:
        """``True`` once a result exists or the task was cancelled."""
        return self._finished.is_set()

    def cancel(self) -> bool:
        """Cancel the request.

        No further I/O is started, nothing is written to the cache and the
        completion callback will not run.

        Returns:
            ``False`` if the callback has already been delivered, ``True``
            otherwise.
        """
        with self._lock:
            if self._delivered:
                return False
            self._cancel_event.set()
        if self._future is not None:
            self._future.cancel()
        if self._progress is not None:
            self._progress.finish()
        self._finished.set()
        return True

    def result(self, timeout: Optional[float] = None) -> ResponseResult:
        """Block until the result is available and return it.

        Raises:
            RequestCancelledError: If the task was cancelled.
            TimeoutError: If *timeout* elapsed first.
        """
        if not self._finished.wait(timeout):
            raise TimeoutError(f"No result for {self._request.method} {self._request.url} yet")
        if self.cancelled or self._result is None:
            raise RequestCancelledError(f"{self._request.method} {self._request.url} was cancelled")
        return self._result

    def attach(self, future: Future[None]) -> None:
        self._future = future

    def complete(self, result: ResponseResult) -> None:
        self._result = result
        self._finished.set()

    def claim_delivery(self) -> bool:
        """Mark the task delivered; ``False`` if cancelled or already delivered."""
        with self._lock:
            if self._delivered or self._cancel_event.is_set():
                return False
            self._delivered = True
            return True


class Dispatcher:
    """Delivers results and progress samples on completion contexts."""

    def deliver(
        self,
        task: RequestTask,
        context: CompletionContext,
        completion: Completion,
        result: ResponseResult,
    ) -> None:
        try:
            context.submit(lambda: self._run_completion(task, completion, result))
        except Exception as exc:
            get_output().error(
                f"Could not schedule completion for {task.request.method} {task.request.url}: {exc!r}"
            )

    def progress(
        self,
        task: RequestTask,
        context: CompletionContext,
        callback: ProgressCallback,
        sample: ProgressSample,
    ) -> None:
        try:
            context.submit(lambda: self._run_progress(task, callback, sample))
        except Exception as exc:
            get_output().error(f"Could not schedule progress for {task.request.method} {task.request.url}: {exc!r}")

    def _run_completion(self, task: RequestTask, completion: Completion, result: ResponseResult) -> None:
        if not task.claim_delivery():
            get_output().debug(f"Suppressed delivery for {task.request.method} {task.request.url}")
            return
        try:
            completion(result)
        except Exception as exc:
            get_output().error(f"Completion callback for {task.request.method} {task.request.url} raised: {exc!r}")

    def _run_progress(self, task: RequestTask, callback: ProgressCallback, sample: ProgressSample) -> None:
        if task.cancelled or task.delivered:
            return
        try:
            callback(sample)
        except Exception as exc:
            get_output().error(f"Progress callback raised: {exc!r}")
