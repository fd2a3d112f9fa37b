"""Caller-supplied hooks around response processing.

Two hooks exist:

* ``error_for_response(body, http_response, error) -> error | None`` --
  called once for **every** completed exchange, successful or not. It lets
  the caller recognise application-level failures hidden in 2xx responses
  (``{"ok": false}``) or replace a generic error with a domain one. A
  non-``None`` return value supersedes the error computed by the client.
* ``did_receive_error(result)`` -- notification fired once for every
  failed result, just before it is dispatched.

Both default to no-ops, so the pipeline never has to test for their
presence. :class:`HookRunner` executes them.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Optional

import httpx

from restfall.output import get_output

if TYPE_CHECKING:
    from restfall.client.response import ResponseResult

ErrorHook = Callable[[Any, Optional[httpx.Response], Optional[Exception]], Optional[Exception]]
ErrorListener = Callable[["ResponseResult"], None]


def no_error_override(
    body: Any, http_response: Optional[httpx.Response], error: Optional[Exception]
) -> Optional[Exception]:
    """Default :data:`ErrorHook`: keep whatever the client computed."""
    return None


def ignore_error(result: ResponseResult) -> None:
    """Default :data:`ErrorListener`."""


@dataclass(frozen=True)
class ClientHooks:
    """The pair of hooks a client runs.

    Attributes:
        error_for_response: Error-customisation strategy, see module docs.
        did_receive_error: Failure notification, see module docs.
    """

    error_for_response: ErrorHook = no_error_override
    did_receive_error: ErrorListener = ignore_error


class HookRunner:
    """Executes a :class:`ClientHooks` pair.

    Args:
        hooks: The hooks to run. Defaults to no-ops.
    """

    def __init__(self, hooks: Optional[ClientHooks] = None) -> None:
        self._hooks = hooks or ClientHooks()

    @property
    def hooks(self) -> ClientHooks:
        return self._hooks

    def run_error_for_response(
        self,
        body: Any,
        http_response: Optional[httpx.Response],
        error: Optional[Exception],
    ) -> Optional[Exception]:
        """Ask the error hook for an overriding error.

        Returns:
            The hook's error when it returned one, otherwise *error*.

        Raises:
            TypeError: If the hook returns something that is not an exception.
        """
        override = self._hooks.error_for_response(body, http_response, error)
        if override is None:
            return error
        if not isinstance(override, Exception):
            raise TypeError(
                f"error_for_response must return an Exception or None, got {type(override).__name__}"
            )
        return override

    def run_did_receive_error(self, result: ResponseResult) -> None:
        """Notify the error listener.

        If the listener itself raises, that secondary exception is logged
        and swallowed so it cannot mask the original failure.
        """
        try:
            self._hooks.did_receive_error(result)
        except Exception as exc:
            get_output().debug(f"did_receive_error hook failed: {exc}")
