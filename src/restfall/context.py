"""Completion contexts -- where request results are delivered.

A :class:`CompletionContext` answers one question: *on which thread or loop
should this callback run?* Network work happens on the client's worker pool;
the result is then handed to the configured context, so callers see their
callbacks serialised on a context of their choosing.

Available contexts:

* :class:`SerialContext` -- a single dedicated thread; callbacks run one at
  a time in submission order. The process-wide instance returned by
  :func:`main_context` plays the role of a UI main queue.
* :class:`AsyncioContext` -- schedules callbacks on an asyncio event loop
  with :meth:`~asyncio.AbstractEventLoop.call_soon_threadsafe`.
* :class:`ExecutorContext` -- submits callbacks to any
  :class:`concurrent.futures.Executor`.
* :class:`InlineContext` -- runs callbacks immediately on the worker thread.
"""

from __future__ import annotations

import asyncio
import threading
from abc import ABC, abstractmethod
from concurrent.futures import Executor, ThreadPoolExecutor
from typing import Callable, Optional


class CompletionContext(ABC):
    """Abstract execution context for completion callbacks."""

    @abstractmethod
    def submit(self, fn: Callable[[], None]) -> None:
        """Schedule *fn* to run on this context."""

    def close(self) -> None:
        """Release any resources owned by the context."""


class InlineContext(CompletionContext):
    """Run callbacks synchronously on the calling (worker) thread."""

    def submit(self, fn: Callable[[], None]) -> None:
        fn()


class SerialContext(CompletionContext):
    """Run callbacks one at a time, in order, on a dedicated thread.

    Args:
        name: Thread name prefix, visible in debuggers and thread dumps.
    """

    def __init__(self, name: str = "restfall-completion") -> None:
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=name)

    def submit(self, fn: Callable[[], None]) -> None:
        self._executor.submit(fn)

    def close(self) -> None:
        self._executor.shutdown(wait=True)


class ExecutorContext(CompletionContext):
    """Deliver callbacks through an existing executor (not owned, never shut down)."""

    def __init__(self, executor: Executor) -> None:
        self._executor = executor

    def submit(self, fn: Callable[[], None]) -> None:
        self._executor.submit(fn)


class AsyncioContext(CompletionContext):
    """Deliver callbacks on an asyncio event loop.

    Args:
        loop: Target loop. Defaults to the loop running in the current thread.

    Raises:
        RuntimeError: If no loop is given and none is running.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop or asyncio.get_running_loop()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._loop

    def submit(self, fn: Callable[[], None]) -> None:
        self._loop.call_soon_threadsafe(fn)


_main_context: Optional[SerialContext] = None
_main_lock = threading.Lock()


def main_context() -> SerialContext:
    """Return the process-wide serial context, creating it lazily."""
    global _main_context
    with _main_lock:
        if _main_context is None:
            _main_context = SerialContext(name="restfall-main")
        return _main_context


def default_completion_context() -> CompletionContext:
    """The caller's ambient context.

    Inside a running asyncio loop that loop is used; otherwise the
    process-wide :func:`main_context`.
    """
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        return main_context()
    return AsyncioContext(loop)
