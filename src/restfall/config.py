"""Configuration storage, files and precedence resolution.

This module handles everything about *where configuration comes from*:

* **Configuration store** -- :class:`ConfigurationStore` owns the client's
  current :class:`~restfall.models.ClientConfiguration` snapshot and swaps
  it atomically on reconfiguration (copy-on-write).
* **Files** -- :func:`load_configuration` / :func:`save_configuration` read
  and write JSON files; writes use a temp-file-then-rename strategy
  (:func:`_atomic_write`).
* **Precedence resolution** -- :func:`resolve_configuration` merges keyword
  overrides, ``RESTFALL_*`` environment variables, a configuration file and
  defaults.
* **Directory layout** -- :func:`get_cache_dir` is XDG compliant on
  Linux/BSD and falls back to ``~/.restfall/cache`` elsewhere.
"""

from __future__ import annotations

import json
import os
import platform
import tempfile
import threading
from pathlib import Path
from typing import Any, Callable, Optional

from pydantic import ValidationError as PydanticValidationError

from restfall.exceptions import ConfigurationError
from restfall.models import ClientConfiguration, Configurator

_APP_NAME = "restfall"
_PROJECT_CONFIG_FILENAME = "restfall.json"

_ENV_FIELDS = {
    "RESTFALL_HOST": "host",
    "RESTFALL_API_PATH": "api_path",
    "RESTFALL_TIMEOUT": "timeout",
    "RESTFALL_CACHE_MANAGEMENT": "cache_management",
    "RESTFALL_LOG_LEVEL": "log_level",
}


# --- Configuration store ---


class ConfigurationStore:
    """Holds the current configuration snapshot and replaces it atomically.

    Readers call :meth:`snapshot` once per request and keep using that
    object; writers never mutate it but install a new one, so a request
    observes a single consistent configuration from start to finish.

    Args:
        configuration: The initial snapshot.
    """

    def __init__(self, configuration: Optional[ClientConfiguration] = None) -> None:
        self._configuration = configuration or ClientConfiguration()
        self._lock = threading.Lock()

    def snapshot(self) -> ClientConfiguration:
        """Return the current (immutable) configuration."""
        with self._lock:
            return self._configuration

    def replace(self, configuration: ClientConfiguration, **changes: Any) -> ClientConfiguration:
        """Install *configuration*, with optional *changes* applied, as the new snapshot.

        Raises:
            ConfigurationError: If the changes produce an invalid configuration.
        """
        with self._lock:
            if changes:
                try:
                    configuration = configuration.evolve(**changes)
                except PydanticValidationError as exc:
                    raise ConfigurationError(f"Invalid configuration: {exc}") from exc
            self._configuration = configuration
            return configuration

    def update(self, **changes: Any) -> ClientConfiguration:
        """Install a copy of the current snapshot with *changes* applied.

        Raises:
            ConfigurationError: If the resulting configuration is invalid.
        """
        with self._lock:
            try:
                self._configuration = self._configuration.evolve(**changes)
            except PydanticValidationError as exc:
                raise ConfigurationError(f"Invalid configuration: {exc}") from exc
            return self._configuration

    def configure(self, configurator: Callable[[Configurator], None]) -> ClientConfiguration:
        """Run *configurator* on a mutable draft of the current snapshot and install the result."""
        with self._lock:
            try:
                draft = Configurator.model_validate(dict(self._configuration))
                configurator(draft)
                self._configuration = draft.build()
            except PydanticValidationError as exc:
                raise ConfigurationError(f"Invalid configuration: {exc}") from exc
            return self._configuration


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform supports XDG Base Directory spec (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def get_cache_dir() -> Path:
    """Return the cache directory, creating it if necessary.

    On Linux/BSD: ``$XDG_CACHE_HOME/restfall/`` (default ``~/.cache/restfall/``).
    On macOS/Windows: ``~/.restfall/cache/``.
    """
    if _is_xdg_platform():
        env_value = os.environ.get("XDG_CACHE_HOME", "")
        base = Path(env_value) if env_value else Path.home() / ".cache"
        path = base / _APP_NAME
    else:
        path = Path.home() / f".{_APP_NAME}" / "cache"
    path.mkdir(parents=True, exist_ok=True)
    return path


# --- Atomic file writes ---


def _atomic_write(path: Path, data: str) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file is created in the same directory as *path* so that
    ``os.replace`` is an atomic rename on POSIX systems. On any failure the
    temp file is removed.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None  # prevent double-close below
        os.replace(tmp_path, path)
    except BaseException:
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


# --- Configuration files ---


def _read_json(path: Path) -> dict[str, Any]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Invalid configuration file at {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration file at {path} must contain a JSON object")
    return data


def load_configuration(path: str | Path) -> ClientConfiguration:
    """Load and validate a configuration file.

    Raises:
        ConfigurationError: If the file is missing, is not valid JSON, or
            fails validation.
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigurationError(f"Configuration file not found: {path}")
    data = _read_json(path)
    try:
        return ClientConfiguration.model_validate(data)
    except PydanticValidationError as exc:
        raise ConfigurationError(f"Invalid configuration file at {path}: {exc}") from exc


def save_configuration(configuration: ClientConfiguration, path: str | Path) -> None:
    """Persist *configuration* atomically as JSON.

    The completion context is a runtime object and is not written.
    """
    data = configuration.model_dump(mode="json")
    _atomic_write(Path(path), json.dumps(data, indent=2) + "\n")


# --- Precedence resolution ---


def _environment_values() -> dict[str, Any]:
    values: dict[str, Any] = {}
    for var, field_name in _ENV_FIELDS.items():
        value = os.environ.get(var)
        if value:
            values[field_name] = value
    return values


def resolve_configuration(
    path: Optional[str | Path] = None,
    **overrides: Any,
) -> ClientConfiguration:
    """Resolve a configuration with the full precedence chain.

    Precedence (high to low):
        1. Keyword *overrides*
        2. Environment variables (``RESTFALL_HOST``, ``RESTFALL_API_PATH``,
           ``RESTFALL_TIMEOUT``, ``RESTFALL_CACHE_MANAGEMENT``,
           ``RESTFALL_LOG_LEVEL``)
        3. The file at *path*, or ``./restfall.json`` when *path* is ``None``
        4. Defaults

    Raises:
        ConfigurationError: If a file is invalid or the merged values fail
            validation.
    """
    data: dict[str, Any] = {}
    if path is not None:
        if not Path(path).is_file():
            raise ConfigurationError(f"Configuration file not found: {path}")
        data.update(_read_json(Path(path)))
    else:
        project = Path.cwd() / _PROJECT_CONFIG_FILENAME
        if project.is_file():
            data.update(_read_json(project))

    data.update(_environment_values())
    data.update({key: value for key, value in overrides.items() if value is not None})

    try:
        return ClientConfiguration.model_validate(data)
    except PydanticValidationError as exc:
        raise ConfigurationError(f"Invalid configuration: {exc}") from exc
