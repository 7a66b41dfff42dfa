"""Built-in CLI sub-commands for loopauth.

* :mod:`~loopauth.commands.login` -- sign in, check the redirect service,
  and list the built-in environments.
* :mod:`~loopauth.commands.config` -- view and modify login defaults.

Commands report a :class:`~loopauth.exceptions.LoopauthError` through
:func:`report_error` and exit with the code it returns.
"""

from __future__ import annotations

from loopauth.exceptions import LoopauthError
from loopauth.exit_codes import (
    EXIT_CONNECTION_ERROR,
    EXIT_SERVER_ERROR,
    EXIT_TIMEOUT,
)
from loopauth.output import error, suggest

# Next steps for failures the user can usually do something about.
_HINTS = {
    EXIT_TIMEOUT: "Run `loopauth check-redirect` to see whether the redirect service is reachable.",
    EXIT_SERVER_ERROR: (
        "Another process may hold the loopback port. Retry, or change it with "
        "`loopauth config set adfs_port <port>`."
    ),
    EXIT_CONNECTION_ERROR: "Check proxy settings for the token endpoint.",
}


def report_error(exc: LoopauthError) -> int:
    """Print *exc* and a hint for its kind of failure; return its exit code."""
    error(str(exc))
    hint = _HINTS.get(exc.exit_code)
    if hint is not None:
        suggest(hint)
    return exc.exit_code
