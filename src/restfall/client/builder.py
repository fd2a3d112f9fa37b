"""Request specifications and their resolution against a configuration.

A caller describes *what* to send with a :class:`RequestSpec`. The
:func:`resolve` function folds a :class:`~restfall.models.ClientConfiguration`
snapshot into it and produces a :class:`ResolvedRequest`: absolute URL,
merged parameters, final headers and the encoded body, ready for the
transport. Resolution never touches the configuration it reads.

Merge rules, lowest to highest precedence:

* **Parameters** -- global parameters, then the language parameter (when
  ``insert_language_as_parameter`` is set), then per-request parameters.
* **Headers** -- ``header_parameters``, computed ``Accept`` /
  ``Accept-Language``, ``Authorization``, then per-request headers.

Parameter placement follows the usual REST convention: GET, HEAD and DELETE
carry parameters in the query string; other methods encode them as the body
with the configured request serializer, unless the spec brings its own
``body`` (parameters then go to the query string) or is an upload
(parameters become multipart form fields).
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from functools import cached_property
from types import MappingProxyType
from typing import IO, Any, Mapping, Optional, Union
from urllib.parse import urlencode

import httpx

from restfall.cache.keys import cache_key_for
from restfall.exceptions import ConfigurationError, SerializationError
from restfall.models import (
    ClientConfiguration,
    RequestOverrides,
    RequestSerializer,
    ResponseSerializer,
)

URI_PARAMETER_METHODS = frozenset({"GET", "HEAD", "DELETE"})
MAX_ACCEPT_LANGUAGES = 6

_METHOD_RE = re.compile(r"^[A-Z]+$")
_FORM_CONTENT_TYPE = "application/x-www-form-urlencoded; charset=utf-8"


@dataclass(frozen=True)
class UploadPayload:
    """A file to send as one part of a ``multipart/form-data`` body.

    Attributes:
        data: The file content, as bytes or a binary file object.
        filename: File name reported to the server.
        field_name: Form field the file is attached to.
        mime_type: Content type of the part.
    """

    data: Union[bytes, IO[bytes]]
    filename: str
    field_name: str = "file"
    mime_type: str = "application/octet-stream"


@dataclass(frozen=True)
class RequestSpec:
    """Immutable description of one API call.

    Attributes:
        method: HTTP method (upper-cased on creation).
        path: Path relative to ``host`` + ``api_path``, e.g. ``"users/42"``.
        parameters: Request parameters, see module docs for placement.
        body: Optional explicit body: ``bytes`` are sent verbatim, any other
            object is encoded with the request serializer.
        headers: Extra headers for this request only.
        overrides: Configuration fields replaced for this request only.
        upload: File to upload; makes the request a multipart upload.
    """

    method: str
    path: str
    parameters: Mapping[str, Any] = field(default_factory=dict)
    body: Any = None
    headers: Mapping[str, str] = field(default_factory=dict)
    overrides: Optional[RequestOverrides] = None
    upload: Optional[UploadPayload] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "method", self.method.upper())
        object.__setattr__(self, "parameters", MappingProxyType(dict(self.parameters)))
        object.__setattr__(self, "headers", MappingProxyType(dict(self.headers)))

    @property
    def is_upload(self) -> bool:
        return self.upload is not None


@dataclass(frozen=True, eq=False)
class ResolvedRequest:
    """A request after merging with the client configuration.

    Two resolved requests are equal (and hash alike) when they share a
    cache key: same method, URL, parameter set and body. Headers do not take
    part in identity.

    Attributes:
        method: Upper-case HTTP method.
        url: ``scheme://host/api_path/path`` without a query string.
        parameters: All merged parameters (the cache-relevant set).
        query: Parameters placed in the query string.
        headers: Final request headers.
        content: Encoded request body, or ``None``.
        body: The caller's explicit body, as given.
        form_fields: Multipart form fields (uploads only).
        upload: The file of an upload request.
        configuration: The effective configuration snapshot for this request.
    """

    method: str
    url: str
    parameters: Mapping[str, Any]
    query: Mapping[str, Any]
    headers: Mapping[str, str]
    configuration: ClientConfiguration
    content: Optional[bytes] = None
    body: Any = None
    form_fields: Mapping[str, Any] = field(default_factory=dict)
    upload: Optional[UploadPayload] = None

    @cached_property
    def cache_key(self) -> str:
        return cache_key_for(self)

    @property
    def full_url(self) -> str:
        """The URL including the encoded query string."""
        if not self.query:
            return self.url
        return f"{self.url}?{urlencode(form_pairs(self.query))}"

    @property
    def is_upload(self) -> bool:
        return self.upload is not None

    def encoded_body(self) -> Optional[bytes]:
        """The body as sent, for logging. Uploads are summarised, not read."""
        if self.upload is not None:
            return f"<multipart upload: {self.upload.filename}>".encode("utf-8")
        return self.content

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ResolvedRequest):
            return NotImplemented
        return self.cache_key == other.cache_key

    def __hash__(self) -> int:
        return hash(self.cache_key)


# ------------------------------------------------------------------ #
# Resolution
# ------------------------------------------------------------------ #


def resolve(spec: RequestSpec, configuration: ClientConfiguration) -> ResolvedRequest:
    """Merge *spec* with *configuration* into a :class:`ResolvedRequest`.

    Args:
        spec: What the caller wants to send.
        configuration: The client snapshot; per-request overrides from
            ``spec.overrides`` are applied on a copy.

    Returns:
        The fully resolved request.

    Raises:
        ConfigurationError: If the host is unset or invalid, or the method
            or path is malformed.
        SerializationError: If the body cannot be encoded.
    """
    config = configuration.with_overrides(spec.overrides)
    base = _base_url(config)
    url = _join_path(base, spec.path)

    if not _METHOD_RE.match(spec.method):
        raise ConfigurationError(f"Malformed HTTP method: {spec.method!r}")

    parameters: dict[str, Any] = dict(config.global_parameters)
    if config.insert_language_as_parameter and config.languages:
        parameters[config.language_parameter_name] = primary_language(config.languages[0])
    parameters.update(spec.parameters)

    query: dict[str, Any] = {}
    form_fields: dict[str, Any] = {}
    content: Optional[bytes] = None
    content_type: Optional[str] = None

    if spec.upload is not None:
        form_fields = parameters
    elif spec.body is not None:
        query = parameters
        content, content_type = _encode_body(spec.body, config.request_serializer)
    elif spec.method in URI_PARAMETER_METHODS:
        query = parameters
    elif parameters:
        content, content_type = _encode_body(parameters, config.request_serializer)

    headers = _merge_headers(config, spec, content_type)

    return ResolvedRequest(
        method=spec.method,
        url=url,
        parameters=MappingProxyType(parameters),
        query=MappingProxyType(query),
        headers=MappingProxyType(headers),
        configuration=config,
        content=content,
        body=spec.body,
        form_fields=MappingProxyType(form_fields),
        upload=spec.upload,
    )


def _base_url(config: ClientConfiguration) -> str:
    if not config.host:
        raise ConfigurationError("Client host is not configured")
    try:
        parsed = httpx.URL(config.host)
    except httpx.InvalidURL as exc:
        raise ConfigurationError(f"Invalid host {config.host!r}: {exc}") from exc
    if parsed.scheme not in ("http", "https") or not parsed.host:
        raise ConfigurationError(
            f"Invalid host {config.host!r}: expected an absolute http(s) URL"
        )
    return config.host + (config.api_path or "")


def _join_path(base: str, path: str) -> str:
    if "://" in path or any(ch in path for ch in "?# \t\r\n"):
        raise ConfigurationError(f"Malformed request path: {path!r}")
    relative = path.lstrip("/")
    if "//" in relative:
        raise ConfigurationError(f"Malformed request path: {path!r}")
    if not relative:
        return base or "/"
    return f"{base}/{relative}"


def _merge_headers(
    config: ClientConfiguration,
    spec: RequestSpec,
    content_type: Optional[str],
) -> dict[str, str]:
    headers: dict[str, str] = dict(config.header_parameters)
    headers["Accept"] = accept_header(config)
    if config.insert_accept_language_header and config.languages:
        headers["Accept-Language"] = accept_language_header(config.languages)
    if config.authorization_header:
        headers["Authorization"] = config.authorization_header
    if content_type is not None:
        headers["Content-Type"] = content_type

    # Per-request headers win; compare case-insensitively so they replace
    # rather than duplicate the computed ones.
    lowered = {key.lower(): key for key in headers}
    for key, value in spec.headers.items():
        existing = lowered.get(key.lower())
        if existing is not None:
            del headers[existing]
        headers[key] = value
        lowered[key.lower()] = key
    return headers


def _encode_body(body: Any, serializer: RequestSerializer) -> tuple[bytes, Optional[str]]:
    if isinstance(body, (bytes, bytearray)):
        return bytes(body), None
    if serializer is RequestSerializer.JSON:
        try:
            return json.dumps(body, separators=(",", ":")).encode("utf-8"), "application/json"
        except (TypeError, ValueError) as exc:
            raise SerializationError(f"Request body is not JSON serialisable: {exc}") from exc
    if serializer is RequestSerializer.FORM_URLENCODED:
        if not isinstance(body, Mapping):
            raise SerializationError(
                f"Form-encoded bodies must be mappings, got {type(body).__name__}"
            )
        return urlencode(form_pairs(body)).encode("utf-8"), _FORM_CONTENT_TYPE
    raise SerializationError(f"Unsupported request serializer: {serializer}")


# ------------------------------------------------------------------ #
# Encoding helpers
# ------------------------------------------------------------------ #


def form_pairs(parameters: Mapping[str, Any], prefix: str = "") -> list[tuple[str, str]]:
    """Flatten *parameters* into ``key=value`` pairs, sorted by key.

    Nested mappings become ``outer[inner]`` and sequences ``key[]``.
    """
    pairs: list[tuple[str, str]] = []
    for key in sorted(parameters, key=str):
        value = parameters[key]
        name = f"{prefix}[{key}]" if prefix else str(key)
        if isinstance(value, Mapping):
            pairs.extend(form_pairs(value, name))
        elif isinstance(value, (list, tuple, set, frozenset)):
            items = sorted(value, key=str) if isinstance(value, (set, frozenset)) else value
            for item in items:
                if isinstance(item, Mapping):
                    pairs.extend(form_pairs(item, f"{name}[]"))
                else:
                    pairs.append((f"{name}[]", _scalar(item)))
        else:
            pairs.append((name, _scalar(value)))
    return pairs


def _scalar(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def accept_header(config: ClientConfiguration) -> str:
    """``Accept`` value: the acceptable types, or the serializer's default."""
    if config.acceptable_content_types:
        return ", ".join(sorted(config.acceptable_content_types))
    if config.response_serializer is ResponseSerializer.JSON:
        return "application/json"
    return "*/*"


def accept_language_header(languages: list[str]) -> str:
    """Build ``Accept-Language`` with decreasing quality values.

    Example::

        >>> accept_language_header(["en-US", "es", "fr"])
        'en-US, es;q=0.9, fr;q=0.8'
    """
    parts = []
    for index, language in enumerate(languages[:MAX_ACCEPT_LANGUAGES]):
        if index == 0:
            parts.append(language)
        else:
            parts.append(f"{language};q={1 - index / 10:.1f}")
    return ", ".join(parts)


def primary_language(language: str) -> str:
    """Primary subtag of a language tag: ``"en-US"`` -> ``"en"``."""
    return language.replace("_", "-").split("-")[0].lower()
