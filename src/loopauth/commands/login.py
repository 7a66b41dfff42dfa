"""Login commands -- run the interactive login from a terminal.

Provides the ``loopauth login``, ``loopauth check-redirect`` and
``loopauth environments`` commands. ``login`` drives
:class:`~loopauth.login.flow.LoginFlow` with a terminal-aware host: the
sign-in URL is echoed to stderr so it can be opened by hand when no browser
starts, and ``--confirm`` asks before the browser is opened.

Typical workflow::

    loopauth check-redirect        # is the redirect service reachable?
    loopauth login --tenant contoso.onmicrosoft.com
"""

from __future__ import annotations

import asyncio
import webbrowser
from typing import Any, Callable, Optional

import typer

from loopauth.commands import report_error
from loopauth.exceptions import LoopauthError
from loopauth.exit_codes import EXIT_CONNECTION_ERROR
from loopauth.login.host import DesktopHost
from loopauth.models import TokenResponse
from loopauth.output import (
    debug,
    error,
    format_response,
    info,
    print_table,
    success,
    suggest,
    warning,
)

_SECRET_FIELDS = ("access_token", "refresh_token", "id_token")


class TerminalHost(DesktopHost):
    """Desktop host that reports the sign-in URL and can ask before opening it.

    Args:
        confirm: Ask on the terminal before opening the browser. Declining
            cancels the login.
        opener: Callable used to open URLs.
    """

    def __init__(
        self,
        confirm: bool = False,
        opener: Callable[[str], bool] = webbrowser.open,
    ) -> None:
        super().__init__(opener=opener)
        self._confirm = confirm
        self.last_url: Optional[str] = None

    async def open_external(self, url: str) -> Optional[bool]:
        self.last_url = url
        info(f"Sign-in URL: {url}")
        if self._confirm:
            accepted = await asyncio.to_thread(
                typer.confirm, "Open the browser to sign in?", default=True
            )
            if not accepted:
                return False
        return await super().open_external(url)


def _mask(token: dict[str, Any]) -> dict[str, Any]:
    masked = dict(token)
    for name in _SECRET_FIELDS:
        value = masked.get(name)
        if isinstance(value, str) and len(value) > 8:
            masked[name] = f"{value[:4]}...{value[-4:]}"
    return masked


def login_command(
    tenant: Optional[str] = typer.Option(
        None, "--tenant", "-t", help="Tenant id or domain (default: common)."
    ),
    client_id: Optional[str] = typer.Option(
        None, "--client-id", help="Public client id to sign in with."
    ),
    environment: Optional[str] = typer.Option(
        None, "--environment", "-e", help="Cloud environment name, or 'custom'."
    ),
    adfs: Optional[bool] = typer.Option(
        None, "--adfs/--no-adfs", help="Force or disable the ADFS variant."
    ),
    confirm: bool = typer.Option(
        False, "--confirm", help="Ask before opening the browser."
    ),
    show_token: bool = typer.Option(
        False, "--show-token", help="Print tokens unmasked."
    ),
) -> None:
    """Sign in through the browser and print the token response.

    Resolves the effective configuration (flags, environment variables,
    ``./loopauth.json``, user config), starts the loopback server, opens the
    browser, and waits for the identity provider to redirect back.

    Raises:
        typer.Exit: With the failing error's exit code.

    Example::

        loopauth login
        loopauth login --tenant contoso.onmicrosoft.com --json
    """
    from loopauth.config import resolve_config, resolve_environment
    from loopauth.login.flow import LoginFlow

    try:
        config = resolve_config(
            cli_client_id=client_id,
            cli_tenant=tenant,
            cli_environment=environment,
            cli_adfs=adfs,
        )
        env = resolve_environment(config)
    except LoopauthError as exc:
        raise typer.Exit(code=report_error(exc)) from None

    debug(
        f"Authority {env.active_directory_endpoint_url}, tenant {config.tenant}, "
        f"client {config.client_id}"
    )
    host = TerminalHost(confirm=confirm)
    flow = LoginFlow(
        host,
        timeouts=config.timeouts,
        redirect_url=config.redirect_url,
        adfs_port=config.adfs_port,
        extension_id=config.extension_id,
    )

    def on_stall() -> None:
        warning(
            "Browser did not connect to the local server within "
            f"{config.timeouts.redirect_stall:g} seconds."
        )
        if host.last_url:
            suggest(f"Open this URL in your browser: {host.last_url}")

    async def run() -> TokenResponse:
        try:
            return await flow.login(
                config.client_id,
                env,
                config.tenant,
                adfs=config.adfs,
                on_redirect_stall=on_stall,
            )
        finally:
            await flow.drain()

    try:
        token = asyncio.run(run())
    except LoopauthError as exc:
        raise typer.Exit(code=report_error(exc)) from None

    success(f"Signed in to {env.name} ({config.tenant}).")
    data = token.model_dump(mode="json", exclude_none=True)
    format_response(data if show_token else _mask(data))


def check_redirect_command(
    adfs: bool = typer.Option(False, "--adfs", help="Check for an ADFS login."),
) -> None:
    """Check that the redirect service used by the login is reachable.

    Raises:
        typer.Exit: With code 6 when the service is unreachable.

    Example::

        loopauth check-redirect
    """
    from loopauth.config import resolve_config
    from loopauth.login.probe import check_redirect_server

    try:
        config = resolve_config()
    except LoopauthError as exc:
        raise typer.Exit(code=report_error(exc)) from None

    if asyncio.run(check_redirect_server(adfs, config.redirect_url)):
        success(f"Redirect service reachable: {config.redirect_url}")
        return

    error(f"Redirect service not reachable: {config.redirect_url}")
    suggest("Check proxy settings, or sign in with a different login mode.")
    raise typer.Exit(code=EXIT_CONNECTION_ERROR)


def environments_command() -> None:
    """List the built-in cloud environments."""
    from loopauth.models import BUILTIN_ENVIRONMENTS

    rows = [
        [env.name, env.active_directory_endpoint_url, env.active_directory_resource_id]
        for env in BUILTIN_ENVIRONMENTS.values()
    ]
    print_table(["name", "authority", "resource"], rows, title="Environments")
