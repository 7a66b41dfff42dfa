"""Tests for the output formatting system.

Covers:
- OutputFormat resolution (auto -> rich/plain based on TTY)
- NO_COLOR / TERM=dumb color disabling
- stdout vs stderr discipline
- Quiet and verbose modes
- format_response and print_table in JSON and plain modes
- Escaping of provider text in diagnostics
- Global instance management
"""

from __future__ import annotations

import json

import pytest

from loopauth import output as output_module
from loopauth.output import (
    OutputFormat,
    OutputManager,
    _should_disable_color,
    get_output,
    reset_output,
    set_output,
)


# ------------------------------------------------------------------ #
# Fixtures
# ------------------------------------------------------------------ #


@pytest.fixture()
def non_tty(monkeypatch):
    """Patch stdout.isatty() to return False."""
    monkeypatch.setattr("loopauth.output._is_tty", lambda: False)


@pytest.fixture()
def tty(monkeypatch):
    """Patch stdout.isatty() to return True."""
    monkeypatch.setattr("loopauth.output._is_tty", lambda: True)


@pytest.fixture()
def color_env(monkeypatch):
    monkeypatch.delenv("NO_COLOR", raising=False)
    monkeypatch.setenv("TERM", "xterm-256color")


# ------------------------------------------------------------------ #
# OutputFormat resolution
# ------------------------------------------------------------------ #


class TestOutputFormatResolution:
    def test_auto_resolves_to_plain_when_not_tty(self, non_tty):
        assert OutputManager().format == OutputFormat.PLAIN

    def test_auto_resolves_to_rich_when_tty(self, tty, color_env):
        assert OutputManager().format == OutputFormat.RICH

    def test_auto_resolves_to_plain_when_tty_but_no_color(self, tty, color_env):
        assert OutputManager(no_color=True).format == OutputFormat.PLAIN

    def test_explicit_json_stays_json(self, tty, color_env):
        assert OutputManager(format=OutputFormat.JSON).format == OutputFormat.JSON


class TestColorDisabling:
    def test_no_color_env_any_value(self, monkeypatch):
        monkeypatch.setenv("NO_COLOR", "")
        assert _should_disable_color() is True

    def test_term_dumb_disables_color(self, monkeypatch):
        monkeypatch.delenv("NO_COLOR", raising=False)
        monkeypatch.setenv("TERM", "dumb")
        assert _should_disable_color() is True

    def test_normal_term_keeps_color(self, color_env):
        assert _should_disable_color() is False


# ------------------------------------------------------------------ #
# stdout vs stderr discipline
# ------------------------------------------------------------------ #


class TestStdoutStderrDiscipline:
    def test_format_response_goes_to_stdout(self, capfd, non_tty):
        mgr = OutputManager(format=OutputFormat.JSON, no_color=True)
        mgr.format_response({"access_token": "a...b"})
        captured = capfd.readouterr()
        assert json.loads(captured.out) == {"access_token": "a...b"}
        assert captured.err == ""

    @pytest.mark.parametrize("method", ["info", "success", "warning", "error", "suggest"])
    def test_diagnostics_go_to_stderr(self, capfd, non_tty, method):
        mgr = OutputManager(format=OutputFormat.PLAIN, no_color=True)
        getattr(mgr, method)("Sign-in URL: http://localhost:1/signin")
        captured = capfd.readouterr()
        assert captured.out == ""
        assert "Sign-in URL: http://localhost:1/signin" in captured.err

    def test_prefixes_without_color(self, capfd, non_tty):
        mgr = OutputManager(format=OutputFormat.PLAIN, no_color=True, verbose=True)
        mgr.warning("w")
        mgr.error("e")
        mgr.debug("d")
        err = capfd.readouterr().err
        assert "Warning: w" in err
        assert "Error: e" in err
        assert "[debug] d" in err


# ------------------------------------------------------------------ #
# Quiet and verbose
# ------------------------------------------------------------------ #


class TestQuietAndVerbose:
    def test_quiet_suppresses_informational(self, capfd, non_tty):
        mgr = OutputManager(format=OutputFormat.PLAIN, no_color=True, quiet=True)
        mgr.info("info")
        mgr.success("success")
        mgr.suggest("suggest")
        assert capfd.readouterr().err == ""

    def test_quiet_keeps_warnings_errors_and_data(self, capfd, non_tty):
        mgr = OutputManager(format=OutputFormat.PLAIN, no_color=True, quiet=True)
        mgr.warning("careful")
        mgr.error("broken")
        mgr.format_response({"token_type": "Bearer"})
        captured = capfd.readouterr()
        assert "careful" in captured.err
        assert "broken" in captured.err
        assert captured.out == "token_type\tBearer\n"

    def test_debug_hidden_by_default(self, capfd, non_tty):
        mgr = OutputManager(format=OutputFormat.PLAIN, no_color=True)
        mgr.debug("hidden")
        assert capfd.readouterr().err == ""

    def test_quiet_does_not_hide_debug(self, capfd, non_tty):
        mgr = OutputManager(format=OutputFormat.PLAIN, no_color=True, quiet=True, verbose=True)
        mgr.debug("tenant=contoso")
        assert "[debug] tenant=contoso" in capfd.readouterr().err


class TestMarkupEscaping:
    def test_provider_text_is_not_rich_markup(self, capfd, non_tty, color_env):
        mgr = OutputManager(format=OutputFormat.PLAIN)
        mgr.error("AADSTS50011: [red]redirect[/red] mismatch")
        err = capfd.readouterr().err
        assert "Error: AADSTS50011: [red]redirect[/red] mismatch" in err


# ------------------------------------------------------------------ #
# Data formats
# ------------------------------------------------------------------ #


class TestDataFormats:
    def test_plain_dict_is_tab_separated(self, capfd, non_tty):
        mgr = OutputManager(format=OutputFormat.PLAIN, no_color=True)
        mgr.format_response({"token_type": "Bearer", "expires_in": 3599})
        assert capfd.readouterr().out == "token_type\tBearer\nexpires_in\t3599\n"

    def test_plain_nested_and_empty_values(self, capfd, non_tty):
        mgr = OutputManager(format=OutputFormat.PLAIN, no_color=True)
        mgr.format_response({"adfs": None, "timeouts": {"port": 5.0, "code": 300.0}})
        assert capfd.readouterr().out == (
            'adfs\t\ntimeouts\t{"port":5.0,"code":300.0}\n'
        )

    def test_json_keeps_nesting(self, capfd, non_tty):
        mgr = OutputManager(format=OutputFormat.JSON, no_color=True)
        mgr.format_response({"adfs": None, "timeouts": {"port": 5.0}})
        assert json.loads(capfd.readouterr().out) == {"adfs": None, "timeouts": {"port": 5.0}}

    def test_table_json(self, capfd, non_tty):
        mgr = OutputManager(format=OutputFormat.JSON, no_color=True)
        mgr.print_table(["name", "authority"], [["AzureCloud", "https://login/"]])
        records = json.loads(capfd.readouterr().out)
        assert records == [{"name": "AzureCloud", "authority": "https://login/"}]

    def test_table_plain(self, capfd, non_tty):
        mgr = OutputManager(format=OutputFormat.PLAIN, no_color=True)
        mgr.print_table(["a", "b"], [["1", "2"]])
        assert capfd.readouterr().out == "a\tb\n1\t2\n"


# ------------------------------------------------------------------ #
# Global instance
# ------------------------------------------------------------------ #


class TestGlobalInstance:
    def test_get_output_creates_default(self, non_tty):
        reset_output()
        assert isinstance(get_output(), OutputManager)
        assert get_output() is get_output()

    def test_set_output_is_used_by_convenience_functions(self, capfd, non_tty):
        set_output(OutputManager(format=OutputFormat.JSON, no_color=True))
        output_module.format_response({"ok": True})
        output_module.info("hello")
        captured = capfd.readouterr()
        assert json.loads(captured.out) == {"ok": True}
        assert "hello" in captured.err
