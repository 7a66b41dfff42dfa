"""Tests for the loopauth CLI -- root callback, commands, and entry point."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Optional

import pytest

from loopauth import __version__
from loopauth.app import _write_crash_log, app, main
from loopauth.commands.login import TerminalHost
from loopauth.config import load_config
from loopauth.exceptions import CodeTimeoutError, PortBindError, ProviderError
from loopauth.login.flow import LoginFlow
from loopauth.models import AzureEnvironment, TokenResponse


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class FakeLogin:
    """Replacement for :meth:`LoginFlow.login` recording its arguments."""

    def __init__(self, error: Optional[Exception] = None, stall: bool = False) -> None:
        self.error = error
        self.stall = stall
        self.calls: list[dict[str, Any]] = []

    def install(self, monkeypatch: pytest.MonkeyPatch) -> None:
        fake = self

        async def login(
            self: LoginFlow,
            client_id: str,
            environment: AzureEnvironment,
            tenant: str = "common",
            *,
            adfs: Optional[bool] = None,
            on_redirect_stall: Any = None,
        ) -> TokenResponse:
            fake.calls.append(
                {
                    "client_id": client_id,
                    "environment": environment,
                    "tenant": tenant,
                    "adfs": adfs,
                    "timeouts": self.timeouts,
                }
            )
            if fake.stall and on_redirect_stall is not None:
                on_redirect_stall()
            if fake.error is not None:
                raise fake.error
            return TokenResponse(
                access_token="at-1234567890",
                refresh_token="rt-1234567890",
                expires_in=3599,
            )

        monkeypatch.setattr(LoginFlow, "login", login)


# ---------------------------------------------------------------------------
# Root callback
# ---------------------------------------------------------------------------


class TestRoot:
    def test_version(self, cli_runner) -> None:
        result = cli_runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert f"loopauth {__version__}" in result.output

    def test_environments_json(self, cli_runner) -> None:
        result = cli_runner.invoke(app, ["--json", "environments"])
        assert result.exit_code == 0
        names = [row["name"] for row in json.loads(result.stdout)]
        assert names == ["AzureCloud", "AzureChinaCloud", "AzureUSGovernment", "AzureGermanCloud"]

    def test_environments_plain(self, cli_runner) -> None:
        result = cli_runner.invoke(app, ["--plain", "environments"])
        assert result.exit_code == 0
        assert result.stdout.splitlines()[0] == "name\tauthority\tresource"


# ---------------------------------------------------------------------------
# login
# ---------------------------------------------------------------------------


class TestLoginCommand:
    def test_success_masks_tokens(
        self, cli_runner, isolated_config: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        fake = FakeLogin()
        fake.install(monkeypatch)

        result = cli_runner.invoke(app, ["--json", "--quiet", "login", "--tenant", "contoso"])

        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["access_token"] == "at-1...7890"
        assert data["refresh_token"] == "rt-1...7890"
        assert data["expires_in"] == 3599
        assert fake.calls[0]["tenant"] == "contoso"
        assert fake.calls[0]["environment"].name == "AzureCloud"
        assert fake.calls[0]["adfs"] is None

    def test_show_token(
        self, cli_runner, isolated_config: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        FakeLogin().install(monkeypatch)
        result = cli_runner.invoke(app, ["--json", "--quiet", "login", "--show-token"])
        assert json.loads(result.stdout)["access_token"] == "at-1234567890"

    def test_uses_resolved_config(
        self, cli_runner, isolated_config: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        (isolated_config / "loopauth.json").write_text(
            json.dumps({"environment": "AzureChinaCloud", "timeouts": {"code": 42}}),
            encoding="utf-8",
        )
        monkeypatch.setenv("LOOPAUTH_CLIENT_ID", "env-client")
        fake = FakeLogin()
        fake.install(monkeypatch)

        result = cli_runner.invoke(app, ["--quiet", "login", "--adfs"])

        assert result.exit_code == 0, result.output
        call = fake.calls[0]
        assert call["client_id"] == "env-client"
        assert call["environment"].name == "AzureChinaCloud"
        assert call["adfs"] is True
        assert call["timeouts"].code == 42

    def test_failure_exit_code(
        self, cli_runner, isolated_config: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        FakeLogin(error=ProviderError("User declined")).install(monkeypatch)
        result = cli_runner.invoke(app, ["login"])
        assert result.exit_code == 3
        assert "User declined" in result.output
        assert "→" not in result.output

    @pytest.mark.parametrize(
        "failure, exit_code, hint",
        [
            (CodeTimeoutError("Timeout waiting for code"), 4, "loopauth check-redirect"),
            (PortBindError("Timeout waiting for port"), 5, "adfs_port"),
        ],
    )
    def test_failure_hint(
        self,
        cli_runner,
        isolated_config: Path,
        monkeypatch: pytest.MonkeyPatch,
        failure: Exception,
        exit_code: int,
        hint: str,
    ) -> None:
        FakeLogin(error=failure).install(monkeypatch)
        result = cli_runner.invoke(app, ["--no-color", "login"])
        assert result.exit_code == exit_code
        assert str(failure) in result.output
        assert hint in result.output

    def test_stall_warning(
        self, cli_runner, isolated_config: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        FakeLogin(stall=True).install(monkeypatch)
        result = cli_runner.invoke(app, ["--no-color", "login"])
        assert result.exit_code == 0, result.output
        assert "did not connect" in result.output

    def test_unknown_environment(self, cli_runner, isolated_config: Path) -> None:
        result = cli_runner.invoke(app, ["login", "--environment", "Mars"])
        assert result.exit_code == 1
        assert "Unknown environment" in result.output


class TestTerminalHost:
    @pytest.mark.asyncio
    async def test_declined_confirmation_cancels(self, monkeypatch: pytest.MonkeyPatch) -> None:
        opened: list[str] = []
        monkeypatch.setattr("typer.confirm", lambda *args, **kwargs: False)
        host = TerminalHost(confirm=True, opener=opened.append)

        assert await host.open_external("http://localhost:1/signin") is False
        assert opened == []
        assert host.last_url == "http://localhost:1/signin"

    @pytest.mark.asyncio
    async def test_accepted_confirmation_opens(self, monkeypatch: pytest.MonkeyPatch) -> None:
        opened: list[str] = []
        monkeypatch.setattr("typer.confirm", lambda *args, **kwargs: True)

        def opener(url: str) -> bool:
            opened.append(url)
            return True

        host = TerminalHost(confirm=True, opener=opener)
        assert await host.open_external("http://localhost:1/signin") is None
        assert opened == ["http://localhost:1/signin"]


# ---------------------------------------------------------------------------
# check-redirect
# ---------------------------------------------------------------------------


class TestCheckRedirectCommand:
    @pytest.mark.parametrize("reachable, exit_code", [(True, 0), (False, 6)])
    def test_exit_code(
        self,
        cli_runner,
        isolated_config: Path,
        monkeypatch: pytest.MonkeyPatch,
        reachable: bool,
        exit_code: int,
    ) -> None:
        calls: list[tuple[bool, str]] = []

        async def fake_check(adfs: bool, redirect_url: str) -> bool:
            calls.append((adfs, redirect_url))
            return reachable

        monkeypatch.setattr("loopauth.login.probe.check_redirect_server", fake_check)
        result = cli_runner.invoke(app, ["check-redirect"])

        assert result.exit_code == exit_code
        assert calls == [(False, load_config().redirect_url)]


# ---------------------------------------------------------------------------
# config
# ---------------------------------------------------------------------------


class TestConfigCommands:
    def test_show(self, cli_runner, isolated_config: Path) -> None:
        result = cli_runner.invoke(app, ["--json", "--quiet", "config", "show"])
        assert result.exit_code == 0
        assert json.loads(result.stdout)["tenant"] == "common"

    def test_set_string(self, cli_runner, isolated_config: Path) -> None:
        result = cli_runner.invoke(app, ["config", "set", "tenant", "contoso"])
        assert result.exit_code == 0, result.output
        assert load_config().tenant == "contoso"

    def test_set_nested_float(self, cli_runner, isolated_config: Path) -> None:
        result = cli_runner.invoke(app, ["config", "set", "timeouts.code", "60"])
        assert result.exit_code == 0, result.output
        assert load_config().timeouts.code == 60.0

    def test_set_and_clear_optional(self, cli_runner, isolated_config: Path) -> None:
        cli_runner.invoke(app, ["config", "set", "adfs", "true"])
        assert load_config().adfs is True
        cli_runner.invoke(app, ["config", "set", "adfs", "null"])
        assert load_config().adfs is None

    @pytest.mark.parametrize(
        "key, value",
        [("nope", "x"), ("timeouts.nope", "1"), ("timeouts", "1"), ("timeouts.code", "soon")],
    )
    def test_set_rejects(self, cli_runner, isolated_config: Path, key: str, value: str) -> None:
        result = cli_runner.invoke(app, ["config", "set", key, value])
        assert result.exit_code == 2
        assert load_config().timeouts.code == 300.0

    def test_reset_with_force(self, cli_runner, isolated_config: Path) -> None:
        cli_runner.invoke(app, ["config", "set", "tenant", "contoso"])
        result = cli_runner.invoke(app, ["--force", "config", "reset"])
        assert result.exit_code == 0
        assert load_config().tenant == "common"

    def test_reset_declined(self, cli_runner, isolated_config: Path) -> None:
        cli_runner.invoke(app, ["config", "set", "tenant", "contoso"])
        result = cli_runner.invoke(app, ["config", "reset"], input="n\n")
        assert result.exit_code == 0
        assert "Cancelled." in result.output
        assert load_config().tenant == "contoso"


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


class TestMain:
    @pytest.fixture(autouse=True)
    def _no_signal_handlers(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("loopauth.app._setup_signal_handlers", lambda: None)

    def test_loopauth_error_exit_code(self, monkeypatch: pytest.MonkeyPatch) -> None:
        def boom() -> None:
            raise ProviderError("nope")

        monkeypatch.setattr("loopauth.app.app", boom)
        with pytest.raises(SystemExit) as exc_info:
            main()
        assert exc_info.value.code == 3

    def test_unexpected_error_writes_crash_log(
        self, isolated_config: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        def boom() -> None:
            raise RuntimeError("kaboom")

        monkeypatch.setattr("loopauth.app.app", boom)
        with pytest.raises(SystemExit) as exc_info:
            main()
        assert exc_info.value.code == 1

        logs = list((isolated_config / "data" / "loopauth" / "logs").glob("crash-*.log"))
        assert len(logs) == 1
        assert "RuntimeError: kaboom" in logs[0].read_text()

    def test_crash_log_contains_traceback(self, isolated_config: Path) -> None:
        try:
            raise ValueError("bad value")
        except ValueError as exc:
            path = _write_crash_log(exc)
        text = Path(path).read_text()
        assert text.startswith(f"loopauth {__version__} on Python ")
        assert "argv: " in text
        assert "ValueError: bad value" in text
