"""The authorization code login protocol.

This package holds everything between "the user wants to sign in" and
"here is a token response":

- :class:`LoginFlow` -- orchestrates one login attempt (loopback or
  no-local-server variant).
- :class:`LoopbackServer` -- the ``127.0.0.1`` server receiving the
  browser's ``/signin`` and ``/callback`` requests.
- :mod:`~loopauth.login.state` -- nonce and ``state`` parameter codec.
- :func:`authorize_url` -- identity provider sign-in URL builder.
- :func:`exchange_code` -- token endpoint call.
- :func:`check_redirect_server` -- redirect service reachability probe.
- :class:`DesktopHost` / :class:`UriChannel` -- host collaborators.

Typical usage::

    from loopauth.login import DesktopHost, LoginFlow

    flow = LoginFlow(DesktopHost())
    token = await flow.login(client_id, environment, tenant)
"""

from loopauth.login.exchange import exchange_code
from loopauth.login.flow import FlowState, FlowVariant, LoginFlow, SessionRegistry
from loopauth.login.host import DesktopHost, Host, UriChannel
from loopauth.login.probe import check_redirect_server
from loopauth.login.server import LoopbackServer
from loopauth.login.urls import authorize_url, is_adfs

__all__ = [
    "DesktopHost",
    "FlowState",
    "FlowVariant",
    "Host",
    "LoginFlow",
    "LoopbackServer",
    "SessionRegistry",
    "UriChannel",
    "authorize_url",
    "check_redirect_server",
    "exchange_code",
    "is_adfs",
]
