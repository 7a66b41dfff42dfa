"""Shared test fixtures for loopauth.

Provides reusable fixtures for isolated config environments, output state,
fake hosts, mock token endpoints, and running CLI commands. These fixtures
are automatically discovered by pytest and available to all test modules
without explicit imports.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Optional

import httpx
import pytest

from loopauth.models import AzureEnvironment, FlowTimeouts
from loopauth.output import OutputFormat, OutputManager, reset_output, set_output


_TOKEN_PAYLOAD: dict[str, Any] = {
    "access_token": "at-1234567890",
    "refresh_token": "rt-1234567890",
    "token_type": "Bearer",
    "expires_in": "3599",
    "resource": "https://management.core.windows.net/",
}


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    The OutputManager caches references to sys.stdout/sys.stderr at
    creation time. When Typer's CliRunner redirects those streams during
    a test and the test finishes, the cached references become stale.
    """
    yield
    reset_output()


# ---------------------------------------------------------------------------
# Config isolation fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate configuration to a temporary directory.

    Sets XDG_CONFIG_HOME and XDG_DATA_HOME to subdirectories of tmp_path,
    forces XDG path resolution, clears all LOOPAUTH_* environment variables
    and changes the working directory to tmp_path.

    Returns:
        The tmp_path root directory for additional file creation.
    """
    monkeypatch.setattr("loopauth.config._is_xdg_platform", lambda: True)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))

    for var in ["LOOPAUTH_CLIENT_ID", "LOOPAUTH_TENANT", "LOOPAUTH_ENVIRONMENT"]:
        monkeypatch.delenv(var, raising=False)

    monkeypatch.chdir(tmp_path)
    return tmp_path


# ---------------------------------------------------------------------------
# Output fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def quiet_output() -> OutputManager:
    """Install a PLAIN-format, quiet OutputManager for the test."""
    output = OutputManager(format=OutputFormat.PLAIN, quiet=True)
    set_output(output)
    yield output
    reset_output()


# ---------------------------------------------------------------------------
# Login fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def environment() -> AzureEnvironment:
    return AzureEnvironment(
        name="TestCloud",
        active_directory_endpoint_url="https://login.example.com/",
        active_directory_resource_id="https://management.example.com/",
    )


@pytest.fixture
def fast_timeouts() -> FlowTimeouts:
    """Timeouts short enough for tests, with no close grace period."""
    return FlowTimeouts(port=2, redirect_stall=5, code=5, login=5, close_delay=0)


@pytest.fixture
def token_payload() -> dict[str, Any]:
    """A successful token endpoint response body."""
    return dict(_TOKEN_PAYLOAD)


@pytest.fixture
def token_transport(token_payload: dict[str, Any]) -> Callable[..., httpx.MockTransport]:
    """Factory for mock transports answering every request with a token payload.

    Keyword arguments: ``payload`` (defaults to :func:`token_payload`),
    ``status_code``, and ``seen``, a list that collects the requests.
    """

    def factory(
        payload: Optional[Any] = None,
        status_code: int = 200,
        seen: Optional[list[httpx.Request]] = None,
    ) -> httpx.MockTransport:
        def handler(request: httpx.Request) -> httpx.Response:
            if seen is not None:
                seen.append(request)
            return httpx.Response(
                status_code, json=token_payload if payload is None else payload
            )

        return httpx.MockTransport(handler)

    return factory


# ---------------------------------------------------------------------------
# CLI runner fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    from typer.testing import CliRunner

    return CliRunner()
