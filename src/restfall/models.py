"""Canonical Pydantic models for client configuration.

This is the single source of truth for configuration shapes. The models fall
into three groups:

**Enumerations** -- :class:`CacheManagement`, :class:`RequestSerializer`,
:class:`ResponseSerializer` and the :class:`LogLevel` flag set.

**Client configuration** -- :class:`ClientConfiguration` is a frozen
snapshot owned by a :class:`~restfall.config.ConfigurationStore`. It is never
mutated in place: reconfiguring produces a new snapshot, so requests already
in flight keep reading the one they started with.

**Drafts and overrides** -- :class:`Configurator` is the mutable draft handed
to configurator functions, and :class:`RequestOverrides` carries the subset
of fields a single request replaces.
"""

from __future__ import annotations

import enum
import locale
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from restfall.context import CompletionContext


class CacheManagement(str, enum.Enum):
    """Whether stored responses may stand in for an unreachable network."""

    DEFAULT = "default"
    OFFLINE = "offline"


class RequestSerializer(str, enum.Enum):
    """How request parameters are encoded into a body."""

    JSON = "json"
    FORM_URLENCODED = "form_urlencoded"


class ResponseSerializer(str, enum.Enum):
    """How response bodies are decoded."""

    JSON = "json"
    RAW = "raw"


class LogLevel(enum.IntFlag):
    """Debug log switches. Combine with ``|``."""

    NONE = 0
    REQUESTS = 1 << 0
    RESPONSES = 1 << 1


def _default_languages() -> list[str]:
    """Preferred languages derived from the process locale (``en_US`` -> ``en-US``)."""
    try:
        code = locale.getlocale()[0]
    except ValueError:
        code = None
    if not code or code in ("C", "POSIX"):
        return ["en"]
    return [code.split(".")[0].replace("_", "-")]


def _coerce_log_level(value: Any) -> Any:
    if isinstance(value, LogLevel):
        return value
    if isinstance(value, int):
        return LogLevel(value)
    if isinstance(value, str):
        value = [part for part in value.replace("|", ",").split(",") if part.strip()]
    if isinstance(value, (list, tuple, set, frozenset)):
        level = LogLevel.NONE
        for name in value:
            try:
                level |= LogLevel[str(name).strip().upper()]
            except KeyError:
                raise ValueError(f"Unknown log level: {name}") from None
        return level
    return value


class _ConfigurationFields(BaseModel):
    """Fields and validation shared by the snapshot and its mutable draft."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    host: Optional[str] = Field(
        default=None, description="Scheme and host, e.g. https://api.example.com"
    )
    api_path: Optional[str] = Field(
        default=None, description="Route prefix inserted between host and request path"
    )
    request_serializer: RequestSerializer = RequestSerializer.JSON
    response_serializer: ResponseSerializer = ResponseSerializer.JSON
    timeout: float = Field(default=60.0, gt=0, description="Request timeout in seconds")
    completion_context: Optional[CompletionContext] = Field(
        default=None,
        exclude=True,
        description="Where completions run; None selects the default context",
    )
    acceptable_content_types: frozenset[str] = Field(default_factory=frozenset)
    global_parameters: dict[str, Any] = Field(default_factory=dict)
    header_parameters: dict[str, str] = Field(default_factory=dict)
    authorization_header: Optional[str] = None
    cache_management: CacheManagement = CacheManagement.DEFAULT
    log_level: LogLevel = LogLevel.NONE
    insert_accept_language_header: bool = True
    insert_language_as_parameter: bool = False
    language_parameter_name: str = "language"
    languages: list[str] = Field(default_factory=_default_languages)

    @field_validator("host")
    @classmethod
    def _strip_host(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip().rstrip("/")
        return value or None

    @field_validator("api_path")
    @classmethod
    def _check_api_path(cls, value: Optional[str]) -> Optional[str]:
        if not value:
            return None
        if not value.startswith("/"):
            raise ValueError("api_path must be prefixed with '/'")
        return value.rstrip("/")

    @field_validator("acceptable_content_types", mode="before")
    @classmethod
    def _normalise_content_types(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = [value]
        if isinstance(value, (list, tuple, set, frozenset)):
            return frozenset(str(v).strip().lower() for v in value)
        return value

    @field_validator("log_level", mode="before")
    @classmethod
    def _parse_log_level(cls, value: Any) -> Any:
        return _coerce_log_level(value)

    @field_serializer("acceptable_content_types")
    def _dump_content_types(self, value: frozenset[str]) -> list[str]:
        return sorted(value)

    @field_serializer("log_level")
    def _dump_log_level(self, value: LogLevel) -> list[str]:
        return [flag.name.lower() for flag in (LogLevel.REQUESTS, LogLevel.RESPONSES) if flag in value]


class ClientConfiguration(_ConfigurationFields):
    """Client-wide defaults applied to every request.

    Instances are frozen. Use :meth:`evolve` (or the client's
    ``reconfigure``) to obtain a modified copy.

    Example::

        config = ClientConfiguration(
            host="https://api.example.com",
            api_path="/v2",
            cache_management=CacheManagement.OFFLINE,
        )
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    def evolve(self, **changes: Any) -> ClientConfiguration:
        """Return a validated copy with *changes* applied."""
        return ClientConfiguration.model_validate({**dict(self), **changes})

    def with_overrides(self, overrides: Optional[RequestOverrides]) -> ClientConfiguration:
        """Return the effective configuration for one request."""
        if overrides is None:
            return self
        changes = overrides.changes()
        if not changes:
            return self
        return self.evolve(**changes)


class Configurator(_ConfigurationFields):
    """Mutable configuration draft passed to configurator functions.

    Assignments are validated immediately; :meth:`build` freezes the draft
    into a :class:`ClientConfiguration`.
    """

    model_config = ConfigDict(validate_assignment=True, arbitrary_types_allowed=True)

    def build(self) -> ClientConfiguration:
        return ClientConfiguration.model_validate(dict(self))


class RequestOverrides(BaseModel):
    """Per-request replacements for :class:`ClientConfiguration` fields.

    Only fields that are set to a non-``None`` value take effect.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    host: Optional[str] = None
    api_path: Optional[str] = None
    request_serializer: Optional[RequestSerializer] = None
    response_serializer: Optional[ResponseSerializer] = None
    timeout: Optional[float] = Field(default=None, gt=0)
    completion_context: Optional[CompletionContext] = None
    acceptable_content_types: Optional[frozenset[str]] = None
    global_parameters: Optional[dict[str, Any]] = None
    header_parameters: Optional[dict[str, str]] = None
    authorization_header: Optional[str] = None
    cache_management: Optional[CacheManagement] = None
    log_level: Optional[LogLevel] = None
    insert_accept_language_header: Optional[bool] = None
    insert_language_as_parameter: Optional[bool] = None
    language_parameter_name: Optional[str] = None
    languages: Optional[list[str]] = None

    @field_validator("log_level", mode="before")
    @classmethod
    def _parse_log_level(cls, value: Any) -> Any:
        if value is None:
            return None
        return _coerce_log_level(value)

    def changes(self) -> dict[str, Any]:
        """The overridden fields as a ``{name: value}`` mapping."""
        return {name: value for name, value in self if value is not None}
