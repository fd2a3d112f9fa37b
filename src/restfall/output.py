"""Diagnostic output for restfall.

All diagnostics (request/response logs, cache decisions, warnings) go to
**stderr** through a :class:`OutputManager` backed by a Rich
:class:`~rich.console.Console`. Nothing is ever written to stdout, so a
host application's own output stays clean.

* **Colour control** -- respects ``NO_COLOR`` and ``TERM=dumb``.
* **quiet / verbose** -- ``quiet`` suppresses informational messages,
  ``verbose`` enables ``debug``.

The module exposes two layers:

1. :class:`OutputManager` -- a stateful object holding the console and the
   quiet/verbose flags, installed globally via :func:`set_output`.
2. :func:`log_request` and :func:`log_response` -- the formatters used by
   the client when :class:`~restfall.models.LogLevel` asks for request or
   response logs.
"""

from __future__ import annotations

import json
import os
import shlex
import sys
from typing import TYPE_CHECKING, Any, Optional

from rich.console import Console
from rich.markup import escape

if TYPE_CHECKING:
    from restfall.client.builder import ResolvedRequest
    from restfall.client.response import ResponseResult

_BODY_PREVIEW_LIMIT = 2048


class OutputManager:
    """Central manager for diagnostic output on stderr.

    Args:
        no_color: Disable all colour and Rich markup.
        quiet: Suppress informational messages (warnings and errors still show).
        verbose: Enable debug-level messages.
        file: Stream to write to. Defaults to ``sys.stderr``.
    """

    def __init__(
        self,
        no_color: bool = False,
        quiet: bool = False,
        verbose: bool = False,
        file: Optional[Any] = None,
    ) -> None:
        self._no_color = no_color or _should_disable_color()
        self._quiet = quiet
        self._verbose = verbose
        self._file = file
        self._stderr = Console(
            file=file or sys.stderr,
            no_color=self._no_color,
            stderr=file is None,
            highlight=False,
        )

    @property
    def is_quiet(self) -> bool:
        """Whether quiet mode is enabled."""
        return self._quiet

    @property
    def is_verbose(self) -> bool:
        """Whether verbose mode is enabled."""
        return self._verbose

    def info(self, message: str) -> None:
        """Print an informational message. Suppressed by ``quiet``."""
        if not self._quiet:
            self._emit(message, "")

    def warning(self, message: str) -> None:
        """Print a warning. Never suppressed."""
        self._emit(f"Warning: {message}", "yellow")

    def error(self, message: str) -> None:
        """Print an error. Never suppressed."""
        self._emit(f"Error: {message}", "bold red")

    def debug(self, message: str) -> None:
        """Print a debug message. Only shown when ``verbose`` is set."""
        if self._verbose:
            self._emit(f"[debug] {message}", "dim")

    def _emit(self, message: str, style: str) -> None:
        if self._no_color:
            print(message, file=self._file or sys.stderr, flush=True)
        elif style:
            self._stderr.print(f"[{style}]{escape(message)}[/{style}]")
        else:
            self._stderr.print(escape(message))


# ------------------------------------------------------------------ #
# Request / response logging
# ------------------------------------------------------------------ #


def curl_command(request: ResolvedRequest) -> str:
    """Render *request* as an equivalent ``curl`` command line."""
    parts = ["curl", "-X", request.method, shlex.quote(request.full_url)]
    for key, value in request.headers.items():
        parts += ["-H", shlex.quote(f"{key}: {value}")]
    body = request.encoded_body()
    if body:
        parts += ["-d", shlex.quote(body.decode("utf-8", errors="replace"))]
    return " ".join(parts)


def log_request(request: ResolvedRequest) -> None:
    """Log an outgoing request, including a reproducible ``curl`` command."""
    output = get_output()
    output.info(f"--> {request.method} {request.full_url}")
    output.info(f"    {curl_command(request)}")


def log_response(result: ResponseResult, elapsed: float) -> None:
    """Log a completed exchange: status, origin, timing and a body preview."""
    output = get_output()
    origin = "cache" if result.from_cache else "network"
    status = result.status_code if result.status_code is not None else "---"
    output.info(
        f"<-- {status} {result.request.method} {result.request.full_url} "
        f"({origin}, {elapsed * 1000:.0f} ms)"
    )
    if result.body is not None:
        output.info(f"    {_preview(result.body)}")
    if result.error is not None:
        output.info(f"    error: {type(result.error).__name__}: {result.error}")


def _preview(body: Any) -> str:
    if isinstance(body, (bytes, bytearray)):
        text = bytes(body[:_BODY_PREVIEW_LIMIT]).decode("utf-8", errors="replace")
    elif isinstance(body, str):
        text = body
    else:
        text = json.dumps(body, ensure_ascii=False, default=str)
    if len(text) > _BODY_PREVIEW_LIMIT:
        return text[:_BODY_PREVIEW_LIMIT] + "..."
    return text


# ------------------------------------------------------------------ #
# Helpers
# ------------------------------------------------------------------ #


def _should_disable_color() -> bool:
    """Return True when NO_COLOR is set (any value) or TERM=dumb."""
    if os.environ.get("NO_COLOR") is not None:
        return True
    if os.environ.get("TERM") == "dumb":
        return True
    return False


# ------------------------------------------------------------------ #
# Global output instance
# ------------------------------------------------------------------ #

_output: Optional[OutputManager] = None


def get_output() -> OutputManager:
    """Return the global :class:`OutputManager`, creating a default one lazily."""
    global _output
    if _output is None:
        _output = OutputManager()
    return _output


def set_output(output: OutputManager) -> None:
    """Install *output* as the global :class:`OutputManager` instance."""
    global _output
    _output = output


def reset_output() -> None:
    """Reset the global :class:`OutputManager` to ``None``.

    Primarily useful in test suites to ensure a clean state between tests.
    """
    global _output
    _output = None
