"""loopauth -- interactive OAuth2 authorization code login over a loopback server.

This package performs the browser-based authorization code grant for a
desktop application running inside a host process. A short-lived HTTP server
bound to ``127.0.0.1`` receives the identity provider's redirect; hosts that
cannot bind local sockets fall back to delivering the redirect URI through a
host-provided channel.

Typical usage::

    from loopauth.login import DesktopHost, LoginFlow

    flow = LoginFlow(DesktopHost())
    token = await flow.login(client_id, environment, tenant="common")

Modules:
    app: Typer application and CLI entry point.
    models: Pydantic models shared across the package.
    config: XDG-aware configuration and precedence resolution.
    exceptions: Exception hierarchy with exit-code mapping.
    exit_codes: Numeric exit codes following clig.dev conventions.
    output: stdout/stderr formatting with Rich support.
    login: The login protocol itself (server, state codec, flow).
"""

__version__ = "0.3.0"
