"""Tests for diagnostic output.

Covers:
- NO_COLOR / TERM=dumb color disabling
- stderr-only discipline
- Quiet mode suppression rules
- Verbose mode debug output
- curl rendering and request/response log lines
- Global instance management
"""

from __future__ import annotations

from io import StringIO

import pytest

from restfall.client.builder import RequestSpec, UploadPayload, resolve
from restfall.client.response import ResponseResult
from restfall.exceptions import ConnectivityError
from restfall.models import ClientConfiguration
from restfall.output import (
    OutputManager,
    _should_disable_color,
    curl_command,
    get_output,
    log_request,
    log_response,
    reset_output,
    set_output,
)


# ------------------------------------------------------------------ #
# Colour
# ------------------------------------------------------------------ #


class TestColor:
    def test_no_color_env_disables_color(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("NO_COLOR", "1")
        assert _should_disable_color() is True

    def test_no_color_env_any_value(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("NO_COLOR", "")
        assert _should_disable_color() is True

    def test_term_dumb_disables_color(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("NO_COLOR", raising=False)
        monkeypatch.setenv("TERM", "dumb")
        assert _should_disable_color() is True

    def test_normal_term_keeps_color(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("NO_COLOR", raising=False)
        monkeypatch.setenv("TERM", "xterm-256color")
        assert _should_disable_color() is False


# ------------------------------------------------------------------ #
# Streams and modes
# ------------------------------------------------------------------ #


class TestStreams:
    def test_everything_goes_to_stderr(self, capfd: pytest.CaptureFixture[str]) -> None:
        out = OutputManager(no_color=True, verbose=True)
        out.info("hello")
        out.warning("careful")
        out.error("broken")
        out.debug("details")
        captured = capfd.readouterr()
        assert captured.out == ""
        assert "hello" in captured.err
        assert "Warning: careful" in captured.err
        assert "Error: broken" in captured.err
        assert "[debug] details" in captured.err

    def test_quiet_suppresses_info_only(self, capfd: pytest.CaptureFixture[str]) -> None:
        out = OutputManager(no_color=True, quiet=True)
        out.info("hidden")
        out.warning("shown")
        captured = capfd.readouterr()
        assert "hidden" not in captured.err
        assert "Warning: shown" in captured.err
        assert out.is_quiet

    def test_debug_hidden_by_default(self, capfd: pytest.CaptureFixture[str]) -> None:
        OutputManager(no_color=True).debug("secret")
        assert capfd.readouterr().err == ""

    def test_file_redirection(self) -> None:
        buf = StringIO()
        out = OutputManager(no_color=True, file=buf)
        out.info("to file")
        assert buf.getvalue() == "to file\n"

    def test_rich_markup_is_escaped(self) -> None:
        buf = StringIO()
        out = OutputManager(file=buf)
        out.info("[bold]literal[/bold]")
        assert "[bold]literal[/bold]" in buf.getvalue()


# ------------------------------------------------------------------ #
# Request / response logging
# ------------------------------------------------------------------ #


class TestRequestLogging:
    def test_curl_for_get(self, config: ClientConfiguration) -> None:
        request = resolve(RequestSpec("GET", "users", {"q": "a b"}), config)
        line = curl_command(request)
        assert line.startswith("curl -X GET 'https://api.example.com/v1/users?q=a+b'")
        assert "-H 'Accept: application/json'" in line
        assert " -d " not in line

    def test_curl_for_post_includes_body(self, config: ClientConfiguration) -> None:
        request = resolve(RequestSpec("POST", "users", {"name": "Ann"}), config)
        line = curl_command(request)
        assert "-H 'Content-Type: application/json'" in line
        assert line.endswith("""-d '{"name":"Ann"}'""")

    def test_curl_for_upload_is_summarised(self, config: ClientConfiguration) -> None:
        upload = UploadPayload(b"\x00" * 10, "a.bin")
        request = resolve(RequestSpec("POST", "files", upload=upload), config)
        assert "<multipart upload: a.bin>" in curl_command(request)

    def test_log_request(self, config: ClientConfiguration) -> None:
        buf = StringIO()
        set_output(OutputManager(no_color=True, file=buf))
        log_request(resolve(RequestSpec("DELETE", "users/1"), config))
        lines = buf.getvalue().splitlines()
        assert lines[0] == "--> DELETE https://api.example.com/v1/users/1"
        assert lines[1].startswith("    curl -X DELETE")

    def test_log_response_success(self, config: ClientConfiguration) -> None:
        buf = StringIO()
        set_output(OutputManager(no_color=True, file=buf))
        request = resolve(RequestSpec("GET", "users"), config)
        log_response(ResponseResult(request=request, status_code=200, body={"n": 1}), 0.0123)
        text = buf.getvalue()
        assert "<-- 200 GET https://api.example.com/v1/users (network, 12 ms)" in text
        assert '{"n": 1}' in text

    def test_log_response_failure_without_status(self, config: ClientConfiguration) -> None:
        buf = StringIO()
        set_output(OutputManager(no_color=True, file=buf))
        request = resolve(RequestSpec("GET", "users"), config)
        log_response(ResponseResult.failure(request, ConnectivityError("down")), 0.001)
        text = buf.getvalue()
        assert "<-- --- GET" in text
        assert "error: ConnectivityError: down" in text

    def test_long_body_is_truncated(self, config: ClientConfiguration) -> None:
        buf = StringIO()
        set_output(OutputManager(no_color=True, file=buf))
        request = resolve(RequestSpec("GET", "users"), config)
        log_response(ResponseResult(request=request, status_code=200, body="x" * 5000), 0.0)
        preview = buf.getvalue().splitlines()[1]
        assert preview.endswith("...")
        assert len(preview) < 2100


# ------------------------------------------------------------------ #
# Global instance
# ------------------------------------------------------------------ #


class TestGlobalInstance:
    def test_get_output_creates_default(self) -> None:
        reset_output()
        out = get_output()
        assert isinstance(out, OutputManager)
        assert get_output() is out

    def test_set_and_reset(self) -> None:
        custom = OutputManager(no_color=True)
        set_output(custom)
        assert get_output() is custom
        reset_output()
        assert get_output() is not custom
