"""Response processing -- from raw exchanges to :class:`ResponseResult`.

Every request ends in exactly one :class:`ResponseResult`, produced by one
of three functions:

* :func:`process_response` -- a response was received. Steps:

  1. A non-2xx status becomes a :class:`~restfall.exceptions.ProtocolError`.
  2. Otherwise, if ``acceptable_content_types`` is configured and the
     response media type is not in that set, the result is a
     :class:`~restfall.exceptions.ValidationError`. Only an empty body with
     no ``Content-Type`` at all skips this check. Either way a body of an
     unacceptable type is not decoded.
  3. The body is decoded with the configured response serializer; failure
     becomes a :class:`~restfall.exceptions.SerializationError`.
  4. The error hook sees ``(body, response, error)`` and may supersede the
     error -- including on 2xx responses that encode an application error.

* :func:`process_transport_error` -- no usable response; the hook still runs
  with ``(None, None, error)``.
* :func:`process_cached_entry` -- an offline fallback hit. No exchange took
  place, so the hook is not consulted.

A result with an error is a failure even when a body was decoded; the body
is kept so callers can inspect application error payloads.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

import httpx

from restfall.cache.cache import CachedEntry
from restfall.client.builder import ResolvedRequest
from restfall.exceptions import ProtocolError, SerializationError, ValidationError
from restfall.hooks import HookRunner
from restfall.models import ResponseSerializer


@dataclass(frozen=True)
class ResponseResult:
    """The outcome of one request.

    Attributes:
        request: The resolved request this result answers.
        status_code: HTTP status, or ``None`` when no response arrived.
        headers: Response headers (empty when no response arrived).
        body: Decoded body (``bytes`` for the raw serializer).
        error: The final error, ``None`` on success.
        from_cache: ``True`` when served from the offline cache.
        http_response: The underlying :class:`httpx.Response`, if any.
    """

    request: ResolvedRequest
    status_code: Optional[int] = None
    headers: Mapping[str, str] = field(default_factory=dict)
    body: Any = None
    error: Optional[Exception] = None
    from_cache: bool = False
    http_response: Optional[httpx.Response] = field(default=None, repr=False, compare=False)

    @property
    def is_success(self) -> bool:
        return self.error is None

    @property
    def is_failure(self) -> bool:
        return self.error is not None

    def raise_for_error(self) -> Any:
        """Return the body on success, raise the error on failure."""
        if self.error is not None:
            raise self.error
        return self.body

    @classmethod
    def failure(cls, request: ResolvedRequest, error: Exception) -> ResponseResult:
        return cls(request=request, error=error)


def process_response(
    response: httpx.Response,
    request: ResolvedRequest,
    hooks: HookRunner,
) -> ResponseResult:
    """Validate, decode and hook-check a received response."""
    config = request.configuration
    content = response.content
    error: Optional[Exception] = None
    body: Any = None

    media_type = media_type_of(response.headers.get("content-type"))
    acceptable = config.acceptable_content_types
    # An empty body without a Content-Type has nothing to validate.
    content_type_ok = not acceptable or (media_type is None and not content) or media_type in acceptable

    if not response.is_success:
        error = ProtocolError(
            f"HTTP {response.status_code} {response.reason_phrase}".rstrip(),
            status_code=response.status_code,
        )
    elif not content_type_ok:
        error = ValidationError(media_type, acceptable)

    if content_type_ok:
        try:
            body = deserialize(content, config.response_serializer)
        except SerializationError as exc:
            if error is None:
                error = exc

    error = hooks.run_error_for_response(body, response, error)
    return ResponseResult(
        request=request,
        status_code=response.status_code,
        headers=dict(response.headers),
        body=body,
        error=error,
        http_response=response,
    )


def process_transport_error(
    error: Exception,
    request: ResolvedRequest,
    hooks: HookRunner,
) -> ResponseResult:
    """Build the failure result for a request that got no usable response."""
    final = hooks.run_error_for_response(None, None, error)
    return ResponseResult.failure(request, final if final is not None else error)


def process_cached_entry(entry: CachedEntry, request: ResolvedRequest) -> ResponseResult:
    """Build the result for an offline cache hit."""
    error: Optional[Exception] = None
    body: Any = None
    try:
        body = deserialize(entry.body, request.configuration.response_serializer)
    except SerializationError as exc:
        error = exc
    return ResponseResult(
        request=request,
        status_code=entry.status_code,
        headers=dict(entry.headers),
        body=body,
        error=error,
        from_cache=True,
    )


def deserialize(content: bytes, serializer: ResponseSerializer) -> Any:
    """Decode *content* according to *serializer*.

    The JSON serializer maps an empty body to ``None``.

    Raises:
        SerializationError: If the body is not valid JSON.
    """
    if serializer is ResponseSerializer.RAW:
        return content
    if not content.strip():
        return None
    try:
        return json.loads(content)
    except ValueError as exc:
        raise SerializationError(f"Response body is not valid JSON: {exc}") from exc


def media_type_of(content_type: Optional[str]) -> Optional[str]:
    """``"application/json; charset=utf-8"`` -> ``"application/json"``."""
    if not content_type:
        return None
    return content_type.split(";", 1)[0].strip().lower() or None
