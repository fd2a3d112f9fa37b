"""Shared test fixtures for restfall.

Provides configuration snapshots, mock-transport clients and output
isolation. These fixtures are discovered automatically by pytest.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Iterator

import httpx
import pytest

from restfall.client import ApiClient
from restfall.context import InlineContext
from restfall.models import ClientConfiguration
from restfall.output import OutputManager, reset_output, set_output

Handler = Callable[[httpx.Request], httpx.Response]


# ---------------------------------------------------------------------------
# Output isolation
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _quiet_output_between_tests() -> Iterator[None]:
    """Install a quiet, colourless OutputManager and reset it afterwards."""
    set_output(OutputManager(no_color=True, quiet=True))
    yield
    reset_output()


# ---------------------------------------------------------------------------
# Configuration fixtures
# ---------------------------------------------------------------------------


def _make_config(**kwargs: Any) -> ClientConfiguration:
    """A configuration for https://api.example.com/v1 with inline delivery."""
    defaults: dict[str, Any] = {
        "host": "https://api.example.com",
        "api_path": "/v1",
        "languages": ["en-US", "es"],
        "completion_context": InlineContext(),
    }
    defaults.update(kwargs)
    return ClientConfiguration(**defaults)


@pytest.fixture
def make_config() -> Callable[..., ClientConfiguration]:
    return _make_config


@pytest.fixture
def config() -> ClientConfiguration:
    return _make_config()


# ---------------------------------------------------------------------------
# Client fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def make_client() -> Iterator[Callable[..., ApiClient]]:
    """Factory for ApiClients backed by an httpx.MockTransport.

    Usage: ``make_client(handler, cache_management=CacheManagement.OFFLINE)``.
    Keyword arguments that name configuration fields are applied to the
    configuration, the rest are passed to :class:`ApiClient`.
    """
    clients: list[ApiClient] = []

    def factory(handler: Handler, **kwargs: Any) -> ApiClient:
        client_kwargs = {
            key: kwargs.pop(key)
            for key in ("cache", "error_hook", "on_error", "max_workers")
            if key in kwargs
        }
        client = ApiClient(
            _make_config(**kwargs),
            transport=httpx.MockTransport(handler),
            **client_kwargs,
        )
        clients.append(client)
        return client

    yield factory
    for client in clients:
        client.close()


@pytest.fixture
def isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point XDG_CACHE_HOME into tmp_path, clear RESTFALL_* variables and chdir there."""
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path / "cache"))
    for var in (
        "RESTFALL_HOST",
        "RESTFALL_API_PATH",
        "RESTFALL_TIMEOUT",
        "RESTFALL_CACHE_MANAGEMENT",
        "RESTFALL_LOG_LEVEL",
    ):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path
