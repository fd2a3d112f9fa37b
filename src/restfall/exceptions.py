"""Exception hierarchy for restfall.

All exceptions inherit from :class:`RestfallError`. Only
:class:`ConfigurationError` is ever raised at the caller: it is detected
while a request is being built, before any task is created. Every other
category travels inside a :class:`~restfall.client.response.ResponseResult`
and may be replaced by the client's error hook.

Subclass hierarchy::

    RestfallError
    +-- ConfigurationError     (bad client setup or malformed path)
    +-- ConnectivityError      (no network path; triggers offline fallback)
    +-- ProtocolError          (non-2xx status or non-connectivity transport failure)
    +-- ValidationError        (response content type not acceptable)
    +-- SerializationError     (body could not be decoded / encoded)
    +-- RequestCancelledError  (task cancelled before delivery)
"""

from __future__ import annotations

from typing import Iterable, Optional


class RestfallError(Exception):
    """Base exception for all restfall errors.

    Args:
        message: Human-readable error description.
    """

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigurationError(RestfallError):
    """Raised for malformed client setup (missing host, bad API path, bad config file)."""


class ConnectivityError(RestfallError):
    """The host could not be reached (DNS failure, connection refused, offline)."""


class ProtocolError(RestfallError):
    """The exchange completed but failed at the HTTP level.

    Covers non-2xx status codes as well as transport failures that are not
    about reachability (read timeouts, malformed responses).

    Args:
        message: Human-readable error description.
        status_code: The HTTP status, when a response was received.
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ValidationError(RestfallError):
    """The response ``Content-Type`` is not one of the acceptable types.

    Args:
        content_type: The media type the server sent (``None`` if absent).
        acceptable: The configured acceptable media types.
    """

    def __init__(self, content_type: Optional[str], acceptable: Iterable[str]):
        self.content_type = content_type
        self.acceptable = frozenset(acceptable)
        expected = ", ".join(sorted(self.acceptable))
        super().__init__(
            f"Unacceptable content type '{content_type or '<missing>'}' (expected one of: {expected})"
        )


class SerializationError(RestfallError):
    """A body could not be decoded (or encoded) with the configured serializer."""


class RequestCancelledError(RestfallError):
    """Raised by :meth:`~restfall.client.dispatch.RequestTask.result` for a cancelled task."""
