"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~loopauth.exceptions.LoopauthError` subclass.
Wrapper scripts can inspect the exit code to tell a rejected login from a
timeout or a local server problem without parsing stderr.

Example::

    $ loopauth login
    $ echo $?
    3   # EXIT_AUTH_FAILURE -- the identity provider rejected the login
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""The command was invoked with invalid arguments or missing required parameters."""

EXIT_AUTH_FAILURE = 3
"""The login was rejected (provider error, state mismatch, token exchange failure)."""

EXIT_TIMEOUT = 4
"""The user did not complete the login in time."""

EXIT_SERVER_ERROR = 5
"""The local loopback server could not be started or was closed early."""

EXIT_CONNECTION_ERROR = 6
"""A network-level error occurred while talking to the identity provider."""

EXIT_CANCELED = 130
"""The user declined to continue."""
